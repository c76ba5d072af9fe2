import inspect
import json

import pytest

from horizons.config import settings
from horizons.main import zoho_webhook
from horizons.webhook import WebhookPayloadError, parse_item_event, sign, verify_signature

SECRET = "webhook-secret"
URL = "/api/v1/zoho/webhook"


def _item_payload(action: str = "created", sku: str = "SKU-1", **data) -> dict:
    body = {
        "sku": sku,
        "name": "Blue Dream",
        "Weight": "5.5",
        "stock_on_hand": 1,
        "custom_fields": [
            {"customfield_id": settings.zoho_harvest_field_id, "value": "H12"},
            {"customfield_id": settings.zoho_size_field_id, "value": "BIGS"},
        ],
    }
    body.update(data)
    return {"module": "items", "action": action, "data": body}


def _post(client, payload, secret: str = SECRET):
    raw = json.dumps(payload).encode() if not isinstance(payload, bytes) else payload
    return client.post(
        URL,
        content=raw,
        headers={"Content-Type": "application/json", "X-Zoho-Webhook-Signature": sign(secret, raw)},
    )


@pytest.fixture
def webhook_secret(monkeypatch):
    monkeypatch.setattr(settings, "zoho_webhook_secret", SECRET)
    return SECRET


def test_verify_signature() -> None:
    body = b'{"module":"items"}'
    digest = sign("k", body)
    assert verify_signature("k", body, digest)
    assert verify_signature("k", body, f"sha256={digest.upper()}")
    assert not verify_signature("k", body + b" ", digest)
    assert not verify_signature("k", body, None)
    assert not verify_signature("", body, digest)


def test_parse_item_event_reads_custom_fields() -> None:
    raw = json.dumps(
        {
            "module": "items",
            "action": "edited",
            "data": {
                "sku": "abc",
                "name": "OG",
                "weight": 3,
                "custom_fields": [
                    {"customfield_id": 11, "value": "H3"},
                    {"customfield_id": "22", "value": "SMALLS"},
                    "junk",
                ],
            },
        }
    ).encode()
    event = parse_item_event(raw, "11", "22")
    assert (event.sku, event.name, event.weight) == ("abc", "OG", 3.0)
    assert (event.harvest, event.size) == ("H3", "SMALLS")
    assert event.stock_on_hand is None


@pytest.mark.parametrize(
    "raw, message",
    [
        (b"not json", "Invalid JSON"),
        (b"[]", "Unexpected payload"),
        (b'{"module": "items", "action": "created", "data": []}', "Unexpected payload"),
        (b'{"module": "items", "action": "created", "data": {"name": "x"}}', "Missing SKU"),
    ],
)
def test_parse_item_event_rejects_bad_payloads(raw, message) -> None:
    with pytest.raises(WebhookPayloadError, match=message):
        parse_item_event(raw, "1", "2")


def test_webhook_requires_configured_secret(client, monkeypatch) -> None:
    monkeypatch.setattr(settings, "zoho_webhook_secret", None)
    assert _post(client, _item_payload()).status_code == 500


def test_webhook_rejects_bad_signature(client, webhook_secret) -> None:
    resp = _post(client, _item_payload(), secret="wrong")
    assert resp.status_code == 401


def test_webhook_upserts_bag(client, tenant_id, catalog, webhook_secret) -> None:
    created = _post(client, _item_payload("created"))
    assert created.status_code == 200
    assert created.json()["data"] == {"status": "upserted", "sku": "SKU-1"}

    bag = client.get("/api/v1/bags/by-qr/SKU-1").json()["data"]
    assert bag["tenant_id"] == settings.zoho_tenant_id
    assert bag["weight"] == 5.5
    assert bag["harvest_room_id"] == catalog["rooms"]["H12"]
    assert bag["strain_id"] == catalog["strain_id"]
    assert bag["size_category_id"] == catalog["sizes"]["BIGS"]
    assert bag["current_status"] == "in_inventory"

    edited = _post(client, _item_payload("edited", weight=None, Weight="4", name="Unlisted"))
    assert edited.json()["data"]["status"] == "upserted"
    bag = client.get("/api/v1/bags/by-qr/SKU-1").json()["data"]
    assert bag["weight"] == 4.0
    assert bag["strain_id"] is None
    assert len(client.get("/api/v1/bags", params={"tenant_id": tenant_id}).json()["data"]) == 1


def test_webhook_edit_restores_inventory_status(client, tenant_id, catalog, webhook_secret) -> None:
    _post(client, _item_payload("created"))
    bag = client.get("/api/v1/bags/by-qr/SKU-1").json()["data"]
    client.post(f"/api/v1/bags/{bag['bag_id']}/status", json={"status": "missing"})

    _post(client, _item_payload("edited"))
    logs = client.get(
        "/api/v1/bag-status-logs",
        params={"tenant_id": tenant_id, "bag_id": bag["bag_id"]},
    ).json()["data"]
    assert [(e["old_status"], e["new_status"]) for e in logs] == [
        ("missing", "in_inventory"),
        ("in_inventory", "missing"),
        (None, "in_inventory"),
    ]


def test_webhook_deletes_on_zero_stock_or_delete(client, tenant_id, catalog, webhook_secret) -> None:
    _post(client, _item_payload("created", sku="A"))
    _post(client, _item_payload("created", sku="B"))

    emptied = _post(client, _item_payload("edited", sku="A", stock_on_hand=0))
    assert emptied.json()["data"]["status"] == "deleted"
    assert client.get("/api/v1/bags/by-qr/A").status_code == 404

    deleted = _post(client, _item_payload("deleted", sku="B"))
    assert deleted.json()["data"]["status"] == "deleted"
    assert client.get("/api/v1/bags/by-qr/B").status_code == 404

    unknown = _post(client, _item_payload("deleted", sku="C"))
    assert unknown.json()["data"]["status"] == "not_found"


def test_webhook_ignores_other_modules(client, tenant_id, webhook_secret) -> None:
    resp = _post(client, {"module": "contacts", "action": "created", "data": {"contact_name": "Ada"}})
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "ignored", "sku": None}


def test_webhook_rejects_malformed_payloads(client, tenant_id, webhook_secret) -> None:
    assert _post(client, b"{oops").status_code == 400
    missing_sku = _post(client, _item_payload(sku=""))
    assert missing_sku.status_code == 400
    assert missing_sku.json()["detail"] == "Missing SKU"


def test_webhook_handler_runs_off_the_event_loop() -> None:
    assert not inspect.iscoroutinefunction(zoho_webhook)


def test_webhook_accepts_lowercase_signature_header(client, tenant_id, catalog, webhook_secret) -> None:
    raw = json.dumps(_item_payload(sku="SKU-LOWER")).encode()
    resp = client.post(
        URL,
        content=raw,
        headers={"content-type": "application/json", "x-zoho-webhook-signature": sign(SECRET, raw)},
    )
    assert resp.status_code == 200
    assert resp.json()["data"] == {"status": "upserted", "sku": "SKU-LOWER"}
