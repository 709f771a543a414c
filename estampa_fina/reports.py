"""Dashboard numbers, the period report, CSV exports and the quote PDF."""
from __future__ import annotations

import csv
import io
from collections import Counter, defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Iterable, Mapping, Optional, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .schemas import AppSettings, Client, Order, OrderStatus, Product, Quote
from .store import parse_timestamp

PENDING_STATUSES = (OrderStatus.AWAITING_PAYMENT.value, OrderStatus.REQUESTED.value)
TOP_N = 5


def brl(value) -> str:
    try:
        v = float(value or 0)
    except (TypeError, ValueError):
        v = 0.0
    s = f"{v:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")
    return f"R$ {s}"


def _completed(orders: Iterable[Mapping[str, Any]]) -> list[Order]:
    return [
        o for o in (Order.model_validate(d) for d in orders)
        if o.status == OrderStatus.COMPLETED.value
    ]


def _when(o: Order) -> Optional[datetime]:
    return parse_timestamp(o.date)


def dashboard_metrics(
    users: Sequence[Mapping[str, Any]],
    products: Sequence[Mapping[str, Any]],
    orders: Sequence[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> dict:
    now = now or datetime.now(timezone.utc)
    start_of_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
    completed = _completed(orders)

    monthly_revenue = sum(
        o.total_value for o in completed
        if _when(o) is not None and _when(o) >= start_of_month
    )
    pending_orders = sum(1 for d in orders if d.get("status") in PENDING_STATUSES)

    sales_last_7_days = []
    for i in range(6, -1, -1):
        day = (now - timedelta(days=i)).date()
        total = sum(o.total_value for o in completed if _when(o) is not None and _when(o).date() == day)
        sales_last_7_days.append({"day": day.strftime("%d/%m"), "total": round(total, 2)})

    new_users = sum(
        1 for u in users
        if parse_timestamp(u.get("createdAt")) is not None and parse_timestamp(u.get("createdAt")) >= start_of_month
    )
    role_counts = Counter(u.get("role") or "customer" for u in users)

    dated = [d for d in orders if parse_timestamp(d.get("date")) is not None]
    dated.sort(key=lambda d: parse_timestamp(d.get("date")), reverse=True)

    return {
        "monthly_revenue": round(monthly_revenue, 2),
        "pending_orders": pending_orders,
        "new_users": new_users,
        "total_products": len(products),
        "sales_last_7_days": sales_last_7_days,
        "role_counts": dict(role_counts),
        "recent_orders": dated[:TOP_N],
    }


@dataclass
class PeriodReport:
    start: date
    end: date
    total_revenue: float = 0.0
    number_of_sales: int = 0
    average_ticket: float = 0.0
    total_cost: float = 0.0
    total_profit: float = 0.0
    sales_by_day: list[dict] = field(default_factory=list)
    top_products: list[dict] = field(default_factory=list)
    top_clients: list[dict] = field(default_factory=list)
    total_stock_value: float = 0.0
    low_stock_count: int = 0


def period_report(
    orders: Sequence[Mapping[str, Any]],
    products: Sequence[Mapping[str, Any]],
    clients: Sequence[Mapping[str, Any]],
    start: date,
    end: date,
) -> PeriodReport:
    lo = datetime.combine(start, time.min, tzinfo=timezone.utc)
    hi = datetime.combine(end, time.max, tzinfo=timezone.utc)  # whole last day
    catalogue = {p.id: p for p in (Product.model_validate(d) for d in products)}
    client_names = {c.get("id"): c.get("name") or "" for c in clients}

    selected = [o for o in _completed(orders) if _when(o) is not None and lo <= _when(o) <= hi]

    report = PeriodReport(start=start, end=end)
    report.total_revenue = round(sum(o.total_value for o in selected), 2)
    report.number_of_sales = len(selected)
    if selected:
        report.average_ticket = round(report.total_revenue / len(selected), 2)

    cost = 0.0
    by_day: dict[date, float] = defaultdict(float)
    qty_by_product: Counter = Counter()
    value_by_client: dict[str, float] = defaultdict(float)
    for o in selected:
        by_day[_when(o).date()] += o.total_value
        value_by_client[o.client_id] += o.total_value
        for it in o.items:
            p = catalogue.get(it.product_id)
            cost += (p.cost_price if p else 0) * it.quantity
            qty_by_product[it.product_id] += it.quantity

    report.total_cost = round(cost, 2)
    report.total_profit = round(report.total_revenue - cost, 2)
    report.sales_by_day = [
        {"day": d.strftime("%d/%m/%Y"), "total": round(v, 2)} for d, v in sorted(by_day.items())
    ]
    report.top_products = [
        {"name": catalogue[pid].name if pid in catalogue else "Desconhecido", "quantity": q}
        for pid, q in qty_by_product.most_common(TOP_N)
    ]
    report.top_clients = [
        {"name": client_names.get(cid) or "Desconhecido", "value": round(v, 2)}
        for cid, v in sorted(value_by_client.items(), key=lambda kv: kv[1], reverse=True)[:TOP_N]
    ]
    report.total_stock_value = round(sum(p.current_stock * p.sale_price for p in catalogue.values()), 2)
    report.low_stock_count = sum(1 for p in catalogue.values() if p.current_stock <= p.min_stock)
    return report


def to_csv(header: Sequence[str], rows: Iterable[Sequence[Any]]) -> bytes:
    out = io.StringIO()
    w = csv.writer(out)
    w.writerow(header)
    for r in rows:
        w.writerow(r)
    return out.getvalue().encode("utf-8-sig")


def sales_csv(orders: Iterable[Mapping[str, Any]]) -> bytes:
    rows = []
    for d in orders:
        o = Order.model_validate(d)
        when = _when(o)
        rows.append([o.id, when.isoformat() if when else "", o.customer_name, o.status, o.payment_method, f"{o.total_value:.2f}"])
    return to_csv(["id", "data", "cliente", "status", "pagamento", "total"], rows)


def products_csv(products: Iterable[Mapping[str, Any]]) -> bytes:
    rows = []
    for d in sorted(products, key=lambda p: (p.get("name") or "").lower()):
        p = Product.model_validate(d)
        rows.append([p.name, p.sku, f"{p.current_stock:g}", f"{p.min_stock:g}", f"{p.cost_price:.2f}", f"{p.sale_price:.2f}"])
    return to_csv(["nome", "sku", "estoque", "estoque_minimo", "custo", "preco"], rows)


def top_products_csv(report: PeriodReport) -> bytes:
    return to_csv(["produto", "quantidade"], [[r["name"], r["quantity"]] for r in report.top_products])


def top_clients_csv(report: PeriodReport) -> bytes:
    return to_csv(["cliente", "valor"], [[r["name"], f"{r['value']:.2f}"] for r in report.top_clients])


def _header_color(value: str):
    try:
        return colors.HexColor(value or "#1a1a1a")
    except ValueError:
        return colors.HexColor("#1a1a1a")

def quote_pdf(quote: Quote, client: Optional[Client], settings: AppSettings, today: Optional[date] = None) -> bytes:
    """A4 quote sheet: company header, customer block, item table and total."""
    today = today or datetime.now(timezone.utc).date()
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=A4,
        leftMargin=36, rightMargin=36, topMargin=36, bottomMargin=36,
        title=f"Orçamento {quote.id}".strip(),
    )
    styles = getSampleStyleSheet()
    name = (client.name if client else "") or quote.customer_name or "N/A"
    email = (client.email if client else "") or "N/A"

    story = [
        Paragraph(escape(settings.company_name or "Estampa Fina"), styles["Title"]),
        Paragraph("Orçamento", styles["Heading2"]),
        Spacer(1, 6),
        Paragraph(f"Cliente: {escape(name)}", styles["Normal"]),
        Paragraph(f"Email: {escape(email)}", styles["Normal"]),
        Paragraph(f"Data: {today.strftime('%d/%m/%Y')}", styles["Normal"]),
        Spacer(1, 12),
    ]

    rows = [["Produto", "Quantidade", "Preço Unit.", "Subtotal"]]
    for it in quote.items:
        rows.append([it.name, str(it.quantity), brl(it.sale_price), brl(it.sale_price * it.quantity)])
    rows.append(["", "", "Valor Total:", brl(quote.total_value)])

    table = Table(rows, repeatRows=1, colWidths=[doc.width * f for f in (0.46, 0.14, 0.2, 0.2)])
    table.setStyle(TableStyle([
        ("BACKGROUND", (0, 0), (-1, 0), _header_color(settings.primary_color)),
        ("TEXTCOLOR", (0, 0), (-1, 0), colors.white),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTNAME", (0, -1), (-1, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("ALIGN", (1, 0), (-1, -1), "RIGHT"),
        ("GRID", (0, 0), (-1, -2), 0.5, colors.grey),
        ("BOTTOMPADDING", (0, 0), (-1, 0), 6),
    ]))
    story.append(table)
    if quote.notes:
        story += [Spacer(1, 12), Paragraph(f"Observações: {escape(quote.notes)}", styles["Normal"])]

    doc.build(story)
    return buf.getvalue()
