"""Inbound Zoho Inventory item webhooks.

Zoho posts ``{"module": ..., "action": ..., "data": {...}}`` signed with an
HMAC-SHA256 of the raw body. Item events are mirrored onto the ``bag`` table
with the item SKU as the bag QR code.
"""

from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from horizons.logging import get_logger
from horizons.models import Bag, BagSizeCategory, BagStatusLog, HarvestRoom, Strain

log = get_logger("webhook")

UPSERT_ACTIONS = ("created", "edited")
DELETE_ACTIONS = ("deleted",)


class WebhookPayloadError(ValueError):
    pass


@dataclass
class ItemEvent:
    module: str
    action: str
    sku: str
    name: str
    weight: float
    harvest: Optional[str]
    size: Optional[str]
    stock_on_hand: Optional[float]


def sign(secret: str, raw_body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, raw_body: bytes, signature: Optional[str]) -> bool:
    if not secret or not signature:
        return False
    provided = signature.strip()
    if provided.lower().startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = sign(secret, raw_body).encode("ascii")
    return hmac.compare_digest(expected, provided.lower().encode("utf-8", "replace"))


def _to_float(value: Any, default: Optional[float]) -> Optional[float]:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def parse_item_event(raw_body: bytes, harvest_field_id: str, size_field_id: str) -> ItemEvent:
    try:
        payload = json.loads(raw_body)
    except (UnicodeDecodeError, ValueError) as exc:
        raise WebhookPayloadError("Invalid JSON") from exc

    if (
        not isinstance(payload, dict)
        or not isinstance(payload.get("module"), str)
        or not isinstance(payload.get("action"), str)
        or not isinstance(payload.get("data"), dict)
    ):
        raise WebhookPayloadError("Unexpected payload")

    data = payload["data"]
    module = payload["module"]
    sku = str(data.get("sku") or "").strip()
    if module == "items" and not sku:
        raise WebhookPayloadError("Missing SKU")

    # Zoho sends either spelling depending on how the field was created
    weight = _to_float(data.get("Weight", data.get("weight")), 0.0)

    harvest = size = None
    custom_fields = data.get("custom_fields")
    for cf in custom_fields if isinstance(custom_fields, list) else []:
        if not isinstance(cf, dict):
            continue
        field_id = str(cf.get("customfield_id"))
        if field_id == str(harvest_field_id):
            harvest = str(cf.get("value"))
        elif field_id == str(size_field_id):
            size = str(cf.get("value"))

    return ItemEvent(
        module=module,
        action=payload["action"],
        sku=sku,
        name=str(data.get("name") or ""),
        weight=weight,
        harvest=harvest,
        size=size,
        stock_on_hand=_to_float(data.get("stock_on_hand"), None),
    )


def _lookup_id(db: Session, model, name: Optional[str]) -> Optional[int]:
    if not name:
        return None
    return db.scalar(select(model.id).where(model.name == name))


def reconcile_item_event(db: Session, event: ItemEvent, tenant_id: int) -> str:
    """Apply one item event to the bag table without committing.

    Returns ``ignored``, ``deleted``, ``not_found`` or ``upserted``.
    """
    if event.module != "items":
        return "ignored"

    bag = db.scalar(select(Bag).where(Bag.qr_code == event.sku))
    out_of_stock = event.stock_on_hand is not None and event.stock_on_hand <= 0

    if event.action in DELETE_ACTIONS or (event.action in UPSERT_ACTIONS and out_of_stock):
        if bag is None:
            log.info("Webhook %s for unknown sku %s", event.action, event.sku)
            return "not_found"
        db.delete(bag)
        log.info("Webhook removed bag %s (sku=%s)", bag.id, event.sku)
        return "deleted"

    if event.action not in UPSERT_ACTIONS:
        log.info("Webhook action %s ignored for sku %s", event.action, event.sku)
        return "ignored"

    now = datetime.now(timezone.utc)
    room_id = _lookup_id(db, HarvestRoom, event.harvest)
    strain_id = _lookup_id(db, Strain, event.name)
    size_id = _lookup_id(db, BagSizeCategory, event.size)

    if bag is None:
        bag = Bag(tenant_id=tenant_id, qr_code=event.sku, created_at=now)
        db.add(bag)
        old_status = None
    else:
        old_status = bag.current_status

    bag.harvest_room_id = room_id
    bag.strain_id = strain_id
    bag.size_category_id = size_id
    bag.weight = max(event.weight or 0.0, 0.0)
    bag.current_status = "in_inventory"
    bag.updated_at = now
    db.flush()

    if old_status != "in_inventory":
        db.add(
            BagStatusLog(
                bag_id=bag.id,
                old_status=old_status,
                new_status="in_inventory",
                changed_at=now,
            )
        )
    log.info("Webhook %s bag %s (sku=%s)", event.action, bag.id, event.sku)
    return "upserted"
