import pytest

from escrow_gateway.app import create_app
from escrow_gateway.errors import ApiError
from escrow_gateway.models import Order, User


def make_order(**overrides) -> Order:
    data = {
        "id": 7,
        "order_id": "ORD-001",
        "product_title": "iPhone 14 Pro",
        "description": "256GB Space Black",
        "amount": 3500,
        "sender_id": 1,
        "receiver_id": 2,
        "status": "pending",
        "payment_code": "ABC12345",
        "created_at": "2024-01-20T10:30:00Z",
        "updated_at": "2024-01-20T10:30:00Z",
    }
    data.update(overrides)
    return Order.from_dict(data)


def make_user(id=1, **overrides) -> User:
    data = {"id": id, "name": f"User {id}", "email": f"user{id}@example.com", "contact": "+233541234567"}
    data.update(overrides)
    return User.from_dict(data)


class FakeApi:
    """In-memory stand-in for EscrowApiClient; records every call."""

    def __init__(self, viewer=None):
        self.viewer = viewer or make_user(2)
        self.orders: dict[str, Order] = {}
        self.users: list[User] = []
        self.accounts = []
        self.calls: list[tuple] = []
        self.fail_with: Exception | None = None
        self.response_body = None
        self.during_call = None

    def add(self, order: Order) -> Order:
        self.orders[order.order_id] = order
        return order

    def _record(self, *call):
        self.calls.append(call)
        if self.during_call:
            self.during_call()
        if self.fail_with:
            raise self.fail_with

    # auth
    def login(self, username, password):
        from escrow_gateway.models import AuthTokens
        self._record("login", username)
        return AuthTokens(access_token="tok-123")

    def register(self, payload):
        self._record("register", payload)
        return make_user(99, name=payload["name"])

    def current_user(self):
        return self.viewer

    def update_user(self, payload):
        self._record("update_user", payload)
        return make_user(self.viewer.id, **payload)

    def list_users(self):
        return list(self.users)

    def business_users(self):
        return [u for u in self.users if u.is_business]

    def rate_user(self, user_id, rating):
        self._record("rate_user", user_id, rating)

    # orders
    def list_orders(self):
        return list(self.orders.values())

    def get_order(self, order_id):
        if order_id not in self.orders:
            raise ApiError("Order not found", 404)
        return self.orders[order_id]

    def order_by_payment_code(self, code):
        for o in self.orders.values():
            if o.payment_code == code:
                return o
        raise ApiError("Order not found", 404)

    def create_order(self, payload):
        self._record("create_order", payload)
        return {"id": 42, "order_id": "ORD-NEW"}

    def join_order(self, order_id):
        self._record("join_order", order_id)

    def assign_receiver(self, order_pk, receiver_id):
        self._record("assign_receiver", order_pk, receiver_id)

    def set_status(self, order_id, status):
        self._record("set_status", order_id, status)
        return self.response_body

    def cancel_order(self, order_id):
        self._record("cancel_order", order_id)
        return self.response_body

    def restore_order(self, order_id):
        self._record("restore_order", order_id)
        return self.response_body

    def mark_in_transit(self, order_id):
        self._record("mark_in_transit", order_id)
        return self.response_body

    def mark_delivered(self, order_id):
        self._record("mark_delivered", order_id)
        return self.response_body

    def mark_received(self, order_id):
        self._record("mark_received", order_id)
        return self.response_body

    # payment / accounts
    def initiate_payment(self, order_id):
        self._record("initiate_payment", order_id)
        return "https://checkout.example.com/pay/xyz"

    def payment_callback(self, reference):
        self._record("payment_callback", reference)

    def list_accounts(self):
        return list(self.accounts)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def app(api):
    app = create_app({
        "TESTING": True,
        "SECRET_KEY": "test",
        "API_CLIENT_FACTORY": lambda token: api,
    })
    return app


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def logged_in(client):
    with client.session_transaction() as sess:
        sess["auth_tokens"] = {"access_token": "opaque-token", "token_type": "bearer", "refresh_token": None}
    return client
