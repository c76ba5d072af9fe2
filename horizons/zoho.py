from __future__ import annotations

from typing import Any, Optional

import httpx

from horizons.logging import get_logger


class ZohoError(Exception):
    """Base class for failures talking to Zoho Inventory."""


class ZohoConfigError(ZohoError):
    pass


class ZohoAuthError(ZohoError):
    pass


class ZohoNetworkError(ZohoError):
    pass


class ZohoAPIError(ZohoError):
    def __init__(self, status_code: int, body: Any, message: str = "zoho request failed") -> None:
        super().__init__(f"{message} (status {status_code})")
        self.status_code = status_code
        self.body = body


class ZohoClient:
    """Thin client for the Zoho Inventory REST API.

    Access tokens come from the OAuth refresh-token grant and are cached for
    the lifetime of the client. Only the endpoints the service uses are
    implemented: items, item groups, contacts/customers and sales orders.
    """

    def __init__(
        self,
        *,
        client_id: Optional[str],
        client_secret: Optional[str],
        refresh_token: Optional[str],
        organization_id: Optional[str],
        accounts_url: str = "https://accounts.zoho.com",
        api_url: str = "https://www.zohoapis.com/inventory/v1",
        redirect_uri: str = "",
        scope: str = "ZohoInventory.fullaccess.all",
        harvest_field_id: str = "",
        size_field_id: str = "",
        timeout: float = 30.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.client_id = client_id
        self.client_secret = client_secret
        self.refresh_token = refresh_token
        self.organization_id = organization_id
        self.accounts_url = accounts_url.rstrip("/")
        self.api_url = api_url.rstrip("/")
        self.redirect_uri = redirect_uri
        self.scope = scope
        self.harvest_field_id = harvest_field_id
        self.size_field_id = size_field_id
        self.log = get_logger("zoho")
        self.http = httpx.Client(timeout=timeout, transport=transport)
        self._access_token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.BaseTransport] = None) -> "ZohoClient":
        return cls(
            client_id=settings.zoho_client_id,
            client_secret=settings.zoho_client_secret,
            refresh_token=settings.zoho_refresh_token,
            organization_id=settings.zoho_organization_id,
            accounts_url=settings.zoho_accounts_url,
            api_url=settings.zoho_api_url,
            redirect_uri=settings.zoho_redirect_uri,
            scope=settings.zoho_scope,
            harvest_field_id=settings.zoho_harvest_field_id,
            size_field_id=settings.zoho_size_field_id,
            timeout=settings.zoho_timeout,
            transport=transport,
        )

    def close(self) -> None:
        self.http.close()

    # ---------- helpers ----------
    @staticmethod
    def _body(response: httpx.Response) -> Any:
        try:
            return response.json()
        except ValueError:
            return {"raw": response.text}

    def _org_id(self) -> str:
        if not self.organization_id:
            raise ZohoConfigError("organization id not configured")
        return self.organization_id

    def _send(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            return self.http.request(method, url, **kwargs)
        except httpx.TransportError as exc:
            self.log.error("%s %s failed: %s", method, url, exc)
            raise ZohoNetworkError(str(exc)) from exc

    def _api(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
        json: Any = None,
        allow_status: tuple[int, ...] = (),
    ) -> tuple[int, Any]:
        query = {"organization_id": self._org_id()}
        if params:
            query.update(params)
        token = self.access_token()
        response = self._send(
            method,
            f"{self.api_url}{path}",
            params=query,
            json=json,
            headers={"Authorization": f"Zoho-oauthtoken {token}"},
        )
        body = self._body(response)
        if response.is_success or response.status_code in allow_status:
            return response.status_code, body
        self.log.error("Zoho %s %s returned %s: %s", method, path, response.status_code, body)
        raise ZohoAPIError(response.status_code, body)

    # ---------- oauth ----------
    def authorization_url(self, state: str = "horizons") -> str:
        params = {
            "scope": self.scope,
            "client_id": self.client_id or "",
            "state": state,
            "response_type": "code",
            "redirect_uri": self.redirect_uri,
            "access_type": "offline",
            "prompt": "consent",
        }
        return str(httpx.URL(f"{self.accounts_url}/oauth/v2/auth", params=params))

    def exchange_code(self, code: str) -> dict:
        """Trade an authorization code for access and refresh tokens."""
        response = self._send(
            "POST",
            f"{self.accounts_url}/oauth/v2/token",
            data={
                "code": code,
                "client_id": self.client_id or "",
                "client_secret": self.client_secret or "",
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        body = self._body(response)
        if not response.is_success or "error" in body:
            raise ZohoAuthError(f"code exchange failed: {body}")
        return body

    def access_token(self) -> str:
        if self._access_token is None:
            self._access_token = self.refresh_access_token()
        return self._access_token

    def refresh_access_token(self) -> str:
        if not (self.client_id and self.client_secret and self.refresh_token):
            raise ZohoConfigError("missing Zoho OAuth credentials")
        response = self._send(
            "POST",
            f"{self.accounts_url}/oauth/v2/token",
            data={
                "refresh_token": self.refresh_token,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "grant_type": "refresh_token",
            },
        )
        body = self._body(response)
        token = body.get("access_token") if isinstance(body, dict) else None
        if not response.is_success or not token:
            self.log.error("Token refresh failed (%s): %s", response.status_code, body)
            raise ZohoAuthError(f"failed to refresh access token: {body}")
        return token

    # ---------- items ----------
    def find_item_id(self, sku: str) -> Optional[str]:
        _, body = self._api("GET", "/items", params={"sku": sku})
        items = body.get("items") if isinstance(body, dict) else None
        if not items:
            return None
        item_id = items[0].get("item_id") if isinstance(items[0], dict) else None
        if item_id is None:
            raise ZohoAPIError(500, body, "malformed item lookup")
        return str(item_id)

    def create_item(self, payload: dict) -> Any:
        self.log.info("Creating Zoho item sku=%s", payload.get("sku"))
        _, body = self._api("POST", "/items", json=payload)
        return body

    def item_custom_fields(self, harvest: str, size: str) -> list[dict]:
        return [
            {"customfield_id": self.harvest_field_id, "value": harvest},
            {"customfield_id": self.size_field_id, "value": size},
        ]

    def update_item(
        self,
        sku: str,
        *,
        name: str,
        harvest: str,
        size: str,
        rate: float = 0,
        purchase_rate: float = 0,
    ) -> Any:
        item_id = self.find_item_id(sku)
        if item_id is None:
            raise ZohoAPIError(404, {"error": "Item not found in Zoho"}, "Item not found in Zoho")
        payload = {
            "name": name,
            "rate": rate,
            "purchase_rate": purchase_rate,
            "custom_fields": self.item_custom_fields(harvest, size),
        }
        self.log.info("Updating Zoho item %s (sku=%s)", item_id, sku)
        _, body = self._api("PUT", f"/items/{item_id}", json=payload)
        return body

    def delete_item(self, sku: str) -> dict:
        item_id = self.find_item_id(sku)
        if item_id is None:
            self.log.warning("No Zoho item found for sku %s", sku)
            return {"status": "not_found"}
        status, body = self._api("DELETE", f"/items/{item_id}", allow_status=(404,))
        if status == 404:
            return {"status": "not_found"}
        self.log.info("Deleted Zoho item %s (sku=%s)", item_id, sku)
        return {"status": "deleted", "detail": body}

    def create_item_group(self, payload: dict) -> Any:
        self.log.info("Creating Zoho item group with %d item(s)", len(payload.get("items", [])))
        _, body = self._api("POST", "/itemgroups", json=payload)
        return body

    # ---------- contacts ----------
    def create_contact(self, payload: dict) -> Any:
        _, body = self._api("POST", "/contacts", json=payload)
        return body

    def create_customer(
        self,
        contact_name: str,
        *,
        company_name: Optional[str] = None,
        email: Optional[str] = None,
        phone: Optional[str] = None,
    ) -> str:
        payload = {
            "contact_name": contact_name,
            "company_name": company_name,
            "email": email,
            "phone": phone,
        }
        payload = {k: v for k, v in payload.items() if v is not None}
        _, body = self._api("POST", "/customers", json=payload)
        customer = body.get("customer") if isinstance(body, dict) else None
        customer_id = customer.get("customer_id") if isinstance(customer, dict) else None
        if not customer_id:
            raise ZohoAPIError(502, body, "missing customer_id")
        return str(customer_id)

    # ---------- sales orders ----------
    def create_sales_order(self, payload: dict, ignore_auto_number_generation: bool = False) -> Any:
        self.log.info(
            "Creating Zoho sales order for customer %s with %d line(s)",
            payload.get("customer_id"),
            len(payload.get("line_items", [])),
        )
        params = {"ignore_auto_number_generation": "true"} if ignore_auto_number_generation else None
        _, body = self._api("POST", "/salesorders", params=params, json=payload)
        return body
