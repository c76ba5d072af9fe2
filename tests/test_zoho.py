import json
from urllib.parse import parse_qs

import httpx
import pytest

from horizons.main import _zoho_bag_item, app, get_zoho_client
from horizons.models import Bag
from horizons.zoho import ZohoAPIError, ZohoAuthError, ZohoClient, ZohoConfigError, ZohoNetworkError


def _zoho(handler, **overrides) -> ZohoClient:
    kwargs = {
        "client_id": "cid",
        "client_secret": "csecret",
        "refresh_token": "rtoken",
        "organization_id": "org-1",
        "redirect_uri": "http://localhost:8000/api/v1/zoho/callback",
        "harvest_field_id": "HF",
        "size_field_id": "SF",
        "transport": httpx.MockTransport(handler),
    }
    kwargs.update(overrides)
    return ZohoClient(**kwargs)


class FakeZoho:
    """Records requests and answers like Zoho Inventory would."""

    def __init__(self, routes: dict | None = None) -> None:
        self.requests: list[httpx.Request] = []
        self.routes = routes or {}

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.path == "/oauth/v2/token":
            return httpx.Response(200, json={"access_token": "tok-1", "expires_in": 3600})
        key = (request.method, request.url.path.replace("/inventory/v1", "", 1))
        status, body = self.routes.get(key, (200, {"code": 0}))
        return httpx.Response(status, json=body)

    def api_calls(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path != "/oauth/v2/token"]


def _json(request: httpx.Request) -> dict:
    return json.loads(request.content)


def test_token_refresh_is_cached_and_sent() -> None:
    fake = FakeZoho()
    zoho = _zoho(fake)
    zoho.create_item({"name": "OG", "sku": "abc", "rate": 1, "purchase_rate": 0})
    zoho.create_contact({"contact_name": "Ada"})

    token_calls = [r for r in fake.requests if r.url.path == "/oauth/v2/token"]
    assert len(token_calls) == 1
    form = parse_qs(token_calls[0].content.decode())
    assert form["grant_type"] == ["refresh_token"]
    assert form["refresh_token"] == ["rtoken"]

    for call in fake.api_calls():
        assert call.headers["Authorization"] == "Zoho-oauthtoken tok-1"
        assert call.url.params["organization_id"] == "org-1"


def test_missing_credentials_raise_config_error() -> None:
    zoho = _zoho(FakeZoho(), refresh_token=None)
    with pytest.raises(ZohoConfigError):
        zoho.refresh_access_token()
    with pytest.raises(ZohoConfigError):
        _zoho(FakeZoho(), organization_id=None).create_contact({"contact_name": "Ada"})


def test_rejected_refresh_raises_auth_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"error": "invalid_code"})

    with pytest.raises(ZohoAuthError):
        _zoho(handler).refresh_access_token()


def test_transport_failure_raises_network_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(ZohoNetworkError):
        _zoho(handler).refresh_access_token()


def test_update_item_looks_up_sku_then_puts_custom_fields() -> None:
    fake = FakeZoho({("GET", "/items"): (200, {"items": [{"item_id": "991"}]})})
    _zoho(fake).update_item("abc", name="OG", harvest="H12", size="BIGS", rate=450)

    lookup, put = fake.api_calls()
    assert lookup.url.params["sku"] == "abc"
    assert put.method == "PUT"
    assert put.url.path.endswith("/items/991")
    assert _json(put) == {
        "name": "OG",
        "rate": 450,
        "purchase_rate": 0,
        "custom_fields": [
            {"customfield_id": "HF", "value": "H12"},
            {"customfield_id": "SF", "value": "BIGS"},
        ],
    }


def test_update_unknown_item_is_404() -> None:
    fake = FakeZoho({("GET", "/items"): (200, {"items": []})})
    with pytest.raises(ZohoAPIError) as excinfo:
        _zoho(fake).update_item("abc", name="OG", harvest="H12", size="BIGS")
    assert excinfo.value.status_code == 404


def test_delete_item_outcomes() -> None:
    missing = FakeZoho({("GET", "/items"): (200, {"items": []})})
    assert _zoho(missing).delete_item("abc") == {"status": "not_found"}

    gone = FakeZoho(
        {
            ("GET", "/items"): (200, {"items": [{"item_id": "5"}]}),
            ("DELETE", "/items/5"): (404, {"message": "gone"}),
        }
    )
    assert _zoho(gone).delete_item("abc") == {"status": "not_found"}

    deleted = FakeZoho(
        {
            ("GET", "/items"): (200, {"items": [{"item_id": "5"}]}),
            ("DELETE", "/items/5"): (200, {"message": "The item has been deleted."}),
        }
    )
    assert _zoho(deleted).delete_item("abc") == {
        "status": "deleted",
        "detail": {"message": "The item has been deleted."},
    }


def test_authorization_url() -> None:
    url = httpx.URL(_zoho(FakeZoho()).authorization_url("xyz"))
    assert url.path == "/oauth/v2/auth"
    assert url.params["client_id"] == "cid"
    assert url.params["state"] == "xyz"
    assert url.params["access_type"] == "offline"
    assert url.params["prompt"] == "consent"
    assert url.params["response_type"] == "code"


def test_proxy_forwards_zoho_errors(client) -> None:
    fake = FakeZoho({("POST", "/items"): (400, {"code": 1001, "message": "Item already exists"})})
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)

    resp = client.post("/api/v1/zoho/items", json={"name": "OG", "sku": "abc", "rate": 1, "purchase_rate": 0})
    assert resp.status_code == 400
    assert resp.json()["zoho"] == {"code": 1001, "message": "Item already exists"}

    missing = client.post("/api/v1/zoho/items", json={"name": "OG", "sku": "abc"})
    assert missing.status_code == 422


def test_proxy_reports_auth_and_network_failures(client) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"error": "invalid_client"})

    app.dependency_overrides[get_zoho_client] = lambda: _zoho(refuse)
    resp = client.post("/api/v1/zoho/contacts", json={"contact_name": "Ada"})
    assert resp.status_code == 500
    assert resp.json()["detail"] == "authentication failed"

    def down(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    app.dependency_overrides[get_zoho_client] = lambda: _zoho(down)
    resp = client.post("/api/v1/zoho/contacts", json={"contact_name": "Ada"})
    assert resp.status_code == 502


def test_proxy_contact_defaults_company_name(client) -> None:
    fake = FakeZoho()
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    resp = client.post("/api/v1/zoho/contacts", json={"contact_name": "Ada Grower"})
    assert resp.status_code == 200
    body = _json(fake.api_calls()[0])
    assert body == {"contact_name": "Ada Grower", "company_name": "Ada Grower", "contact_type": "customer"}


def test_proxy_sales_order(client) -> None:
    fake = FakeZoho({("POST", "/salesorders"): (201, {"salesorder": {"salesorder_id": "SO-1"}})})
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    resp = client.post(
        "/api/v1/zoho/salesorders",
        json={
            "customer_id": "C-1",
            "date": "2026-01-15",
            "line_items": [{"sku": "abc", "quantity": 1, "rate": 450}],
            "ignore_auto_number_generation": True,
        },
    )
    assert resp.status_code == 200
    call = fake.api_calls()[0]
    assert call.url.params["ignore_auto_number_generation"] == "true"
    assert _json(call)["line_items"] == [{"quantity": 1.0, "rate": 450.0, "sku": "abc"}]


def test_proxy_item_group_payload(client) -> None:
    fake = FakeZoho()
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    resp = client.post(
        "/api/v1/zoho/item-groups",
        json={"items": [{"name": "OG", "sku": "abc", "rate": 450, "purchase_rate": 0, "cf_size": "BIGS"}]},
    )
    assert resp.status_code == 200
    body = _json(fake.api_calls()[0])
    assert body["group_name"] == "Bags"
    assert body["items"][0]["track_inventory"] is True
    assert body["items"][0]["custom_fields"] == [
        {"customfield_id": "HF", "value": "abc"},
        {"customfield_id": "SF", "value": "BIGS"},
    ]


def test_proxy_delete_and_callback(client) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/oauth/v2/token":
            form = parse_qs(request.content.decode())
            if form["grant_type"] == ["authorization_code"]:
                return httpx.Response(200, json={"access_token": "a", "refresh_token": "r"})
            return httpx.Response(200, json={"access_token": "tok"})
        return httpx.Response(200, json={"items": []})

    app.dependency_overrides[get_zoho_client] = lambda: _zoho(handler)
    assert client.delete("/api/v1/zoho/items/abc").json()["data"] == {"status": "not_found"}
    callback = client.get("/api/v1/zoho/callback", params={"code": "grant-1"})
    assert callback.json()["data"]["refresh_token"] == "r"
    assert client.get("/api/v1/zoho/callback").status_code == 400

    redirect = client.get("/api/v1/zoho/authorize", follow_redirects=False)
    assert redirect.status_code == 307
    assert redirect.headers["location"].startswith("https://accounts.zoho.com/oauth/v2/auth?")


def test_bag_creation_syncs_item_group(client, tenant_id, catalog) -> None:
    fake = FakeZoho()
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    resp = client.post(
        "/api/v1/bags",
        json={
            "tenant_id": tenant_id,
            "harvest_room_id": catalog["rooms"]["H12"],
            "strain_id": catalog["strain_id"],
            "size_category_id": catalog["sizes"]["BIGS"],
            "weight": 5,
            "count": 2,
            "sync_to_zoho": True,
        },
    )
    assert resp.status_code == 200
    assert resp.json()["meta"]["warnings"] == []
    call = fake.api_calls()[0]
    assert call.url.path.endswith("/itemgroups")
    items = _json(call)["items"]
    assert [i["sku"] for i in items] == [b["qr_code"] for b in resp.json()["data"]["bags"]]
    assert items[0]["name"] == "Blue Dream"
    assert items[0]["rate"] == 450.0
    assert items[0]["custom_fields"] == [
        {"customfield_id": "HF", "value": "H12"},
        {"customfield_id": "SF", "value": "BIGS"},
    ]


def test_failed_sync_rolls_back_bag_creation(client, tenant_id, catalog) -> None:
    fake = FakeZoho({("POST", "/itemgroups"): (500, {"message": "boom"})})
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    resp = client.post(
        "/api/v1/bags",
        json={
            "tenant_id": tenant_id,
            "harvest_room_id": catalog["rooms"]["H12"],
            "strain_id": catalog["strain_id"],
            "size_category_id": catalog["sizes"]["BIGS"],
            "weight": 5,
            "count": 2,
            "sync_to_zoho": True,
        },
    )
    assert resp.status_code == 500
    assert client.get("/api/v1/bags", params={"tenant_id": tenant_id}).json()["data"] == []


def test_customer_and_sale_sync(client, tenant_id, make_bags) -> None:
    fake = FakeZoho(
        {
            ("POST", "/customers"): (201, {"customer": {"customer_id": "ZC-7"}}),
            ("POST", "/salesorders"): (201, {"salesorder": {"salesorder_id": "SO-9"}}),
        }
    )
    app.dependency_overrides[get_zoho_client] = lambda: _zoho(fake)
    customer_id = client.post(
        "/api/v1/customers",
        json={"tenant_id": tenant_id, "first_name": "Ada", "last_name": "Grower", "business_name": "Ada Farms"},
    ).json()["data"]["customer_id"]
    bags = make_bags(count=2)
    sale_id = client.post(
        "/api/v1/sales",
        json={
            "tenant_id": tenant_id,
            "customer_id": customer_id,
            "bag_ids": [b["bag_id"] for b in bags],
            "total_amount": 900,
            "signature_url": "sig",
        },
    ).json()["data"]["sale_id"]

    unsynced = client.post(f"/api/v1/sales/{sale_id}/zoho-sync")
    assert unsynced.status_code == 400

    synced = client.post(f"/api/v1/customers/{customer_id}/zoho-sync")
    assert synced.json()["data"] == {"customer_id": customer_id, "zoho_customer_id": "ZC-7", "created": True}
    repeat = client.post(f"/api/v1/customers/{customer_id}/zoho-sync")
    assert repeat.json()["data"]["created"] is False
    assert repeat.json()["meta"]["warnings"] == ["already_synced"]
    assert _json(fake.api_calls()[0]) == {"contact_name": "Ada Grower", "company_name": "Ada Farms"}

    order = client.post(f"/api/v1/sales/{sale_id}/zoho-sync")
    assert order.status_code == 200
    assert order.json()["data"]["zoho_salesorder_id"] == "SO-9"
    body = _json(fake.api_calls()[-1])
    assert body["customer_id"] == "ZC-7"
    assert body["discount"] == 0
    assert body["is_inclusive_tax"] is False
    assert [line["name"] for line in body["line_items"]] == [b["qr_code"] for b in bags]
    assert {line["rate"] for line in body["line_items"]} == {450.0}

    assert client.get(f"/api/v1/sales/{sale_id}").json()["data"]["zoho_salesorder_id"] == "SO-9"
    assert len([r for r in fake.api_calls() if r.url.path.endswith("/customers")]) == 1


def test_bag_item_without_room_sends_blank_harvest() -> None:
    bag = Bag(qr_code="qr-1", harvest_room_id=None, strain_id=None, size_category_id=None)
    item = _zoho_bag_item(_zoho(FakeZoho()), bag, ({}, {}, {}), {})
    assert item["sku"] == "qr-1"
    assert item["rate"] == 0
    assert item["custom_fields"] == [
        {"customfield_id": "HF", "value": ""},
        {"customfield_id": "SF", "value": ""},
    ]
