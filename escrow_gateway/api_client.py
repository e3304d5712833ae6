"""
HTTP client for the remote escrow API.

All requests are JSON with a bearer token, except login which is
form-encoded. Nothing else in the gateway talks HTTP to the API.
"""
import logging
from typing import Any, Optional

import requests

from .errors import ApiError, AuthenticationError, TransportError
from .models import Account, AuthTokens, Order, OrderStatus, User

log = logging.getLogger(__name__)


def _detail(resp: requests.Response) -> str:
    try:
        body = resp.json()
    except ValueError:
        return "Request failed"
    detail = body.get("detail") if isinstance(body, dict) else None
    if isinstance(detail, list):
        # validation errors come back as a list of {loc, msg, ...}
        detail = "; ".join(str(d.get("msg", d)) if isinstance(d, dict) else str(d) for d in detail)
    return str(detail) if detail else "Request failed"


class EscrowApiClient:
    def __init__(self, base_url: str, access_token: Optional[str] = None,
                 timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.http = session or requests.Session()

    # ===================== Transport =====================
    def _headers(self, json_body: bool = True) -> dict:
        headers = {}
        if json_body:
            headers["Content-Type"] = "application/json"
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return headers

    def request(self, method: str, path: str, *, json: Any = None, data: Optional[dict] = None) -> Any:
        url = f"{self.base_url}{path}"
        try:
            resp = self.http.request(
                method,
                url,
                json=json,
                data=data,
                headers=self._headers(json_body=data is None),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            log.error("%s %s unreachable: %s", method, path, e)
            raise TransportError(f"Could not reach the escrow service ({e.__class__.__name__})") from e

        if resp.status_code == 401 and data is None:
            # login failures are plain errors, every other 401 ends the session
            log.info("%s %s -> 401, dropping cached token", method, path)
            self.access_token = None
            raise AuthenticationError("Authentication failed")
        if not resp.ok:
            detail = _detail(resp)
            log.error("%s %s -> %s: %s", method, path, resp.status_code, detail)
            raise ApiError(detail, resp.status_code)
        if not resp.content:
            return None
        try:
            return resp.json()
        except ValueError:
            return resp.text

    def get(self, path: str) -> Any:
        return self.request("GET", path)

    def post(self, path: str, payload: Any = None) -> Any:
        return self.request("POST", path, json=payload)

    def put(self, path: str, payload: Any = None) -> Any:
        return self.request("PUT", path, json=payload)

    def patch(self, path: str, payload: Any = None) -> Any:
        return self.request("PATCH", path, json=payload)

    def post_form(self, path: str, form: dict) -> Any:
        return self.request("POST", path, data=form)

    # ===================== Auth =====================
    def login(self, username: str, password: str) -> AuthTokens:
        tokens = AuthTokens.from_dict(self.post_form("/auth/token", {"username": username, "password": password}))
        self.access_token = tokens.access_token
        return tokens

    def register(self, payload: dict) -> User:
        return User.from_dict(self.post("/auth/create-user", payload))

    def current_user(self) -> User:
        return User.from_dict(self.get("/auth/users/me"))

    def update_user(self, payload: dict) -> User:
        return User.from_dict(self.put("/auth/update-user", payload))

    def list_users(self) -> list[User]:
        return [User.from_dict(u) for u in self.get("/auth/users") or []]

    def business_users(self) -> list[User]:
        return [User.from_dict(u) for u in self.get("/auth/business-users") or []]

    def rate_user(self, user_id: int, rating: int) -> None:
        self.post(f"/auth/rate-user/{user_id}", {"rating": rating})

    # ===================== Orders =====================
    def list_orders(self) -> list[Order]:
        return [Order.from_dict(o) for o in self.get("/orders/") or []]

    def get_order(self, order_id: str) -> Order:
        return Order.from_dict(self.get(f"/orders/{order_id}"))

    def order_by_payment_code(self, code: str) -> Order:
        return Order.from_dict(self.get(f"/orders/payment-code/{code}"))

    def create_order(self, payload: dict) -> dict:
        return self.post("/orders/create", payload) or {}

    def join_order(self, order_id: str) -> Any:
        return self.post("/orders/join", {"order_id": order_id})

    def assign_receiver(self, order_pk: int, receiver_id: int) -> Any:
        return self.patch(f"/orders/{order_pk}/assign-receiver", {"receiver_id": receiver_id})

    def set_status(self, order_id: str, status: OrderStatus) -> Any:
        return self.patch(f"/orders/{order_id}/status", {"status": status.value})

    def cancel_order(self, order_id: str) -> Any:
        return self.put(f"/orders/cancel/{order_id}")

    def restore_order(self, order_id: str) -> Any:
        return self.put(f"/orders/restore/{order_id}")

    def mark_in_transit(self, order_id: str) -> Any:
        return self.put(f"/orders/in-transit/{order_id}")

    def mark_delivered(self, order_id: str) -> Any:
        return self.put(f"/orders/deliver/{order_id}")

    def mark_received(self, order_id: str) -> Any:
        return self.put(f"/orders/receive/{order_id}")

    # ===================== Payment / accounts =====================
    def initiate_payment(self, order_id: str) -> str:
        """Provider checkout URL for an order."""
        body = self.get(f"/payment/initiate-payment/{order_id}")
        if isinstance(body, dict):
            body = body.get("payment_url") or body.get("authorization_url")
        if not body:
            raise ApiError("Payment provider returned no checkout URL")
        return str(body)

    def payment_callback(self, reference: str) -> Any:
        return self.post("/payment/payment-callback", {"reference": reference})

    def list_accounts(self) -> list[Account]:
        return [Account.from_dict(a) for a in self.get("/accounts/") or []]
