from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Iterable, Mapping, Optional, Sequence

from .schemas import CREDIT_CARD, PAYMENT_METHODS, OrderStatus
from .store import parse_timestamp

NEW_CLIENT_WINDOW = timedelta(days=7)
PREMIUM_THRESHOLD = 10
VIP_THRESHOLD = 5
MAX_INSTALLMENTS = 6


class ValidationError(ValueError):
    pass


class ClientTier(str, Enum):
    NEW = "New"
    REGULAR = "Regular"
    VIP = "VIP"
    PREMIUM = "Premium"


TIER_LABELS = {
    ClientTier.NEW.value: "Novo",
    ClientTier.REGULAR.value: "Regular",
    ClientTier.VIP.value: "VIP",
    ClientTier.PREMIUM.value: "Premium",
}


def client_status(created_at: Any, completed_orders: int, now: Optional[datetime] = None) -> ClientTier:
    if completed_orders > PREMIUM_THRESHOLD:
        return ClientTier.PREMIUM
    if completed_orders > VIP_THRESHOLD:
        return ClientTier.VIP
    now = now or datetime.now(timezone.utc)
    created = parse_timestamp(created_at)
    if created is not None and created >= now - NEW_CLIENT_WINDOW:
        return ClientTier.NEW
    return ClientTier.REGULAR


def count_completed_orders(orders: Iterable[Mapping[str, Any]], client_id: str) -> int:
    return sum(
        1 for o in orders
        if o.get("clientId") == client_id and o.get("status") == OrderStatus.COMPLETED.value
    )


def order_total(items: Iterable[Mapping[str, Any]]) -> float:
    total = 0.0
    for it in items:
        total += float(it.get("salePrice") or 0) * int(it.get("quantity") or 0)
    return round(total, 2)


def recompute_total(record: Mapping[str, Any]) -> dict:
    """Copy of an order/quote with ``totalValue`` derived from its items."""
    out = dict(record)
    out["totalValue"] = order_total(out.get("items") or [])
    return out


def build_items(
    products_by_id: Mapping[str, Mapping[str, Any]],
    product_ids: Sequence[str],
    quantities: Sequence[Any],
) -> list[dict]:
    """Snapshot name and sale price from the catalogue; blank or unknown ids are skipped."""
    items: list[dict] = []
    n = min(len(product_ids), len(quantities))
    for i in range(n):
        pid = (product_ids[i] or "").strip()
        if not pid or pid not in products_by_id:
            continue
        try:
            q = int(quantities[i] or 1)
        except (TypeError, ValueError):
            q = 1
        if q < 1:
            q = 1
        p = products_by_id[pid]
        items.append({
            "productId": pid,
            "name": p.get("name") or "",
            "quantity": q,
            "salePrice": float(p.get("salePrice") or 0),
        })
    return items


def normalize_payment(method: str, installments: Any = 1) -> dict:
    method = (method or "").strip()
    if method != CREDIT_CARD:
        return {"installments": 1}
    try:
        n = int(installments or 1)
    except (TypeError, ValueError):
        n = 1
    return {"installments": min(max(n, 1), MAX_INSTALLMENTS)}


def validate_sale(
    client_id: str,
    items: Sequence[Mapping[str, Any]],
    payment_method: Optional[str] = None,
) -> None:
    """Quotes pass no payment method."""
    if not (client_id or "").strip():
        raise ValidationError("Selecione um cliente.")
    if not items:
        raise ValidationError("Adicione pelo menos um produto à venda.")
    if payment_method is not None and payment_method not in PAYMENT_METHODS:
        raise ValidationError("Selecione a forma de pagamento.")


_CPF_PUNCTUATION = re.compile(r"[.\-/]")


def match_clients(clients: Iterable[Mapping[str, Any]], term: str) -> list[dict]:
    """Service-mode lookup: name or email (case-insensitive), phone, or CPF ignoring punctuation.

    Terms shorter than two characters match nothing.
    """
    term = (term or "").strip()
    if len(term) < 2:
        return []
    lowered = term.lower()
    digits = _CPF_PUNCTUATION.sub("", term)
    out = []
    for c in clients:
        cpf = _CPF_PUNCTUATION.sub("", c.get("cpf") or "")
        if (
            lowered in (c.get("name") or "").lower()
            or lowered in (c.get("email") or "").lower()
            or term in (c.get("phone") or "")
            or (cpf and digits and digits in cpf)
        ):
            out.append(dict(c))
    return out
