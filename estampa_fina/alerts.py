"""
Operational alerts: low stock, expiry and overdue payments.

``generate_alerts`` is pure. ``run_alert_scan`` loads the snapshots, generates
the list and persists alerts that have no notification yet, keyed by the
alert id so that re-running never duplicates them.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional

from .schemas import AppSettings, OrderStatus, Product
from .store import DocumentStore, StoreError, parse_timestamp

logger = logging.getLogger(__name__)

EXPIRY_WINDOW = timedelta(days=30)
OVERDUE_AFTER = timedelta(days=7)


class Severity(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


SEVERITY_RANK = {Severity.HIGH.value: 1, Severity.MEDIUM.value: 2, Severity.LOW.value: 3}

LOW_STOCK = "low-stock"
EXPIRY = "expiry"
OVERDUE_PAYMENT = "overdue-payment"


class AlertScanError(Exception):
    pass


@dataclass
class Alert:
    id: str
    type: str
    severity: str
    title: str
    details: str
    cta_link: str

    def to_notification(self, now: datetime) -> dict:
        return {
            "title": self.title,
            "message": self.title,
            "type": self.type,
            "severity": self.severity,
            "details": self.details,
            "ctaLink": self.cta_link,
            "read": False,
            "timestamp": now.isoformat(),
        }


@dataclass
class ScanResult:
    alerts: list[Alert]
    created: list[str] = field(default_factory=list)


def _fmt_date(dt: datetime) -> str:
    return dt.strftime("%d/%m/%Y")


def _low_stock(products: list[dict]) -> list[Alert]:
    out = []
    for doc in products:
        # no recorded stock means nothing to compare against
        if doc.get("currentStock") is None:
            continue
        p = Product.model_validate(doc)
        if p.current_stock <= p.min_stock:
            out.append(Alert(
                id=f"stock-{p.id}",
                type=LOW_STOCK,
                severity=Severity.MEDIUM.value,
                title=f"Estoque baixo: {p.name}",
                details=f"Estoque atual: {p.current_stock:g}",
                cta_link=f"/products/{p.id}/edit",
            ))
    return out


def _expiry(products: list[dict], now: datetime) -> list[Alert]:
    out = []
    for doc in products:
        expiry = parse_timestamp(doc.get("expiryDate"))
        if expiry is None:
            continue
        pid, name = doc.get("id", ""), doc.get("name") or ""
        if expiry < now:
            out.append(Alert(
                id=f"expired-{pid}",
                type=EXPIRY,
                severity=Severity.HIGH.value,
                title=f"Produto vencido: {name}",
                details=f"Venceu em: {_fmt_date(expiry)}",
                cta_link=f"/products/{pid}/edit",
            ))
        elif expiry < now + EXPIRY_WINDOW:
            out.append(Alert(
                id=f"expiring-{pid}",
                type=EXPIRY,
                severity=Severity.LOW.value,
                title=f"Vencimento próximo: {name}",
                details=f"Vence em: {_fmt_date(expiry)}",
                cta_link=f"/products/{pid}/edit",
            ))
    return out


def _overdue(orders: list[dict], now: datetime) -> list[Alert]:
    out = []
    for o in orders:
        if o.get("status") != OrderStatus.AWAITING_PAYMENT.value:
            continue
        when = parse_timestamp(o.get("date"))
        if when is None or when >= now - OVERDUE_AFTER:
            continue
        out.append(Alert(
            id=f"overdue-{o.get('id', '')}",
            type=OVERDUE_PAYMENT,
            severity=Severity.HIGH.value,
            title=f"Pagamento atrasado: {o.get('customerName') or ''}",
            details=f"Venda de {_fmt_date(when)} ainda aguarda pagamento.",
            cta_link=f"/sales/{o.get('id', '')}/edit",
        ))
    return out


def sort_alerts(alerts: Iterable[Alert]) -> list[Alert]:
    # stable: equal severities keep discovery order
    return sorted(alerts, key=lambda a: SEVERITY_RANK.get(a.severity, len(SEVERITY_RANK) + 1))


def generate_alerts(
    products: Iterable[Mapping[str, Any]],
    orders: Iterable[Mapping[str, Any]],
    now: Optional[datetime] = None,
) -> list[Alert]:
    now = now or datetime.now(timezone.utc)
    products = [dict(p) for p in products]
    orders = [dict(o) for o in orders]
    found = _low_stock(products) + _expiry(products, now) + _overdue(orders, now)
    return sort_alerts(found)


def _notify_enabled(alert: Alert, settings: Optional[AppSettings]) -> bool:
    if settings is None:
        return True
    if alert.type == LOW_STOCK:
        return settings.notify_low_stock
    if alert.type == EXPIRY:
        return settings.notify_expiry
    if alert.type == OVERDUE_PAYMENT:
        return settings.notify_overdue
    return True


def run_alert_scan(
    store: DocumentStore,
    settings: Optional[AppSettings] = None,
    now: Optional[datetime] = None,
) -> ScanResult:
    now = now or datetime.now(timezone.utc)
    try:
        data = store.fetch_many("products", "orders", "notifications")
    except StoreError as e:
        logger.error(f"Alert scan aborted: {e}")
        raise AlertScanError("Não foi possível gerar os alertas.") from e

    alerts = generate_alerts(data["products"], data["orders"], now)
    existing = {n["id"] for n in data["notifications"]}

    result = ScanResult(alerts=alerts)
    for alert in alerts:
        if alert.id in existing or not _notify_enabled(alert, settings):
            continue
        store.set("notifications", alert.id, alert.to_notification(now))
        existing.add(alert.id)
        result.created.append(alert.id)
    if result.created:
        logger.info(f"Alert scan created {len(result.created)} notification(s)")
    return result
