import time

import jwt
import pytest

from escrow_gateway.errors import ApiError, AuthenticationError, TransportError
from escrow_gateway.models import Account, AccountType, OrderStatus

from .conftest import make_order, make_user


# ===================== Auth =====================
def test_pages_require_login(client):
    r = client.get("/orders/ORD-001")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/login")


def test_login_stores_tokens_and_returns_to_target(client, api):
    client.get("/orders")
    r = client.post("/login", data={"username": "a@b.c", "password": "pw"})
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/orders")
    with client.session_transaction() as sess:
        assert sess["auth_tokens"]["access_token"] == "tok-123"


def test_login_requires_both_fields(client, api):
    r = client.post("/login", data={"username": "", "password": ""})
    assert r.status_code == 200
    assert api.calls == []


def test_logout_clears_tokens(logged_in):
    logged_in.get("/logout")
    with logged_in.session_transaction() as sess:
        assert "auth_tokens" not in sess


def test_api_401_forces_logout(logged_in, api):
    def boom():
        raise AuthenticationError("Authentication failed")
    api.list_orders = boom
    r = logged_in.get("/orders")
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/login")
    with logged_in.session_transaction() as sess:
        assert "auth_tokens" not in sess


def test_expired_jwt_is_dropped_before_calling_api(client):
    token = jwt.encode({"sub": "2", "exp": int(time.time()) - 60}, "a-test-signing-key-that-is-long-enough-for-hs256", algorithm="HS256")
    with client.session_transaction() as sess:
        sess["auth_tokens"] = {"access_token": token, "token_type": "bearer"}
    r = client.get("/orders")
    assert r.status_code == 302
    with client.session_transaction() as sess:
        assert "auth_tokens" not in sess


def test_register_checks_password_confirmation(client, api):
    r = client.post("/register", data={
        "name": "Ama", "email": "ama@example.com", "contact": "024", "password": "a", "confirm_password": "b",
    })
    assert r.status_code == 200
    assert api.calls == []


def test_register_sends_business_fields(client, api):
    r = client.post("/register", data={
        "name": "Ama", "email": "AMA@example.com", "contact": "024", "password": "pw", "confirm_password": "pw",
        "is_business": "1", "business_category": "Services", "instagram": "@ama",
    })
    assert r.status_code == 302
    payload = api.calls[0][1]
    assert payload["email"] == "ama@example.com"
    assert payload["business_category"] == "Services"
    assert payload["social_media_links"] == {"instagram": "@ama"}


# ===================== Orders =====================
def test_dashboard_counts_every_status(logged_in, api):
    api.add(make_order(order_id="A", status="paid"))
    api.add(make_order(order_id="B", status="paid"))
    api.add(make_order(order_id="C", status="disputed"))
    r = logged_in.get("/")
    assert r.status_code == 200
    assert b"Disputed" in r.data and b"Cancelled" in r.data


def test_orders_search_and_status_filter(logged_in, api):
    api.add(make_order(order_id="ORD-1", product_title="MacBook Air", status="paid"))
    api.add(make_order(order_id="ORD-2", product_title="Designer Handbag", status="completed", payment_code="GHI"))
    r = logged_in.get("/orders?q=macbook")
    assert b"MacBook Air" in r.data and b"Designer Handbag" not in r.data
    r = logged_in.get("/orders?status=completed")
    assert b"Designer Handbag" in r.data and b"MacBook Air" not in r.data
    r = logged_in.get("/orders?q=ghi")
    assert b"Designer Handbag" in r.data


def test_order_detail_shows_actions_for_viewer(logged_in, api):
    api.add(make_order(status="paid", sender_id=1, receiver_id=2))
    r = logged_in.get("/orders/ORD-001")
    assert r.status_code == 200
    assert b"Mark as In Transit" in r.data
    assert b"Funds in Hold" in r.data


def test_missing_order_renders_not_found(logged_in):
    r = logged_in.get("/orders/NOPE")
    assert r.status_code == 404
    assert b"Order not found" in r.data


def test_action_post_executes_and_renders_new_status(logged_in, api):
    api.add(make_order(status="paid", sender_id=1, receiver_id=2))
    r = logged_in.post("/orders/ORD-001/actions/in_transit")
    assert r.status_code == 200
    assert api.calls == [("mark_in_transit", "ORD-001")]
    assert b"In Transit" in r.data
    assert b"Delivered" in r.data


def test_action_needing_confirmation_renders_confirm_page(logged_in, api):
    api.add(make_order(status="pending", sender_id=1, receiver_id=2))
    r = logged_in.post("/orders/ORD-001/actions/decline")
    assert b"Decline?" in r.data
    assert api.calls == []
    r = logged_in.post("/orders/ORD-001/actions/decline", data={"confirm": "1"})
    assert api.calls == [("cancel_order", "ORD-001")]


def test_sender_received_in_transit_shows_blocking_dialog(logged_in, api):
    api.viewer = make_user(1)
    api.add(make_order(status="intransit", sender_id=1, receiver_id=2))
    r = logged_in.post("/orders/ORD-001/actions/receive", data={"confirm": "1"})
    assert r.status_code == 200
    assert b"wait for the receiver to confirm delivery" in r.data
    assert b"alertdialog" in r.data
    assert api.calls == []


def test_action_not_offered_is_conflict(logged_in, api):
    api.add(make_order(status="completed"))
    r = logged_in.post("/orders/ORD-001/actions/dispute", data={"confirm": "1"})
    assert r.status_code == 409
    assert api.calls == []


def test_failed_action_keeps_status_and_shows_error(logged_in, api):
    api.add(make_order(status="paid", sender_id=1, receiver_id=2))
    api.fail_with = ApiError("Order is locked", 400)
    r = logged_in.post("/orders/ORD-001/actions/in_transit")
    assert r.status_code == 200
    assert b"Failed to mark as in transit: Order is locked" in r.data
    assert api.orders["ORD-001"].status is OrderStatus.PAID


def test_duplicate_post_while_in_flight_is_refused(app, logged_in, api):
    api.add(make_order(status="paid", sender_id=1, receiver_id=2))
    app.extensions["escrow_inflight"].flag(2, "ORD-001").acquire()
    r = logged_in.post("/orders/ORD-001/actions/in_transit")
    assert r.status_code == 409
    assert api.calls == []


def test_order_view_json(logged_in, api):
    api.add(make_order(status="cancelled", sender_id=1, receiver_id=2))
    data = logged_in.get("/api/orders/ORD-001/view").get_json()
    assert data["role"] == "receiver"
    assert [a["label"] for a in data["actions"]] == ["Restore Order"]
    assert data["milestones"][0] == {"name": "Both Parties Joined", "complete": True, "current": False}


def test_create_order_as_receiver(logged_in, api):
    r = logged_in.post("/orders/new", data={
        "role": "receiver", "product_title": "Shoes", "amount": "250", "other_party_id": "",
    })
    assert r.status_code == 302
    assert r.headers["Location"].endswith("/orders/ORD-NEW")
    payload = api.calls[0][1]
    assert payload["receiver_id"] == 2
    assert payload["sender_id"] is None
    assert payload["amount"] == 250.0


def test_create_order_as_sender_with_manual_receiver(logged_in, api):
    logged_in.post("/orders/new", data={
        "role": "sender", "product_title": "Shoes", "amount": "10.5", "other_party_id": "7",
    })
    payload = api.calls[0][1]
    assert (payload["sender_id"], payload["receiver_id"]) == (2, 7)


def test_create_order_rejects_non_positive_amount(logged_in, api):
    r = logged_in.post("/orders/new", data={"role": "sender", "product_title": "Shoes", "amount": "0"})
    assert b"Amount must be greater than 0" in r.data
    assert api.calls == []


def test_join_order_requires_agreement(logged_in, api):
    api.add(make_order(receiver_id=None))
    r = logged_in.post("/orders/join", data={"order_id": "ORD-001"})
    assert api.calls == []
    r = logged_in.post("/orders/join", data={"order_id": "ORD-001", "agree": "1"})
    assert r.status_code == 302
    assert api.calls == [("join_order", "ORD-001")]


# ===================== Payment =====================
def test_payment_code_page_offers_join_and_pay(logged_in, api):
    api.viewer = make_user(9)
    api.add(make_order(receiver_id=None, payment_code="ABC12345"))
    r = logged_in.get("/pay/ABC12345")
    assert b"Join as receiver" in r.data
    assert b"Pay " in r.data
    logged_in.post("/pay/ABC12345/assign")
    assert api.calls == [("assign_receiver", 7, 9)]


def test_initiate_payment_redirects_to_provider(logged_in, api):
    api.add(make_order(status="pending"))
    r = logged_in.post("/payment/initiate/ORD-001")
    assert r.status_code == 302
    assert r.headers["Location"] == "https://checkout.example.com/pay/xyz"


def test_paid_order_cannot_be_paid_again(logged_in, api):
    api.add(make_order(status="paid"))
    r = logged_in.post("/payment/initiate/ORD-001")
    assert r.status_code == 200
    assert api.calls == []


def test_payment_callback(logged_in, api):
    r = logged_in.get("/payment/callback")
    assert b"No payment reference found." in r.data
    r = logged_in.get("/payment/callback?reference=ref-1")
    assert b"Payment verified successfully!" in r.data
    assert api.calls == [("payment_callback", "ref-1")]


# ===================== Users / profile / accounts =====================
def test_users_excludes_viewer_and_searches(logged_in, api):
    api.users = [make_user(2, name="Me"), make_user(3, name="Kofi", location="Accra"), make_user(4, name="Esi")]
    r = logged_in.get("/users?q=accra")
    assert b"Kofi" in r.data
    assert b"Esi" not in r.data and b"Me</strong>" not in r.data


def test_rating_updates_listed_average(logged_in, api):
    api.users = [make_user(3, name="Kofi", rating=4.0, total_ratings=3)]
    r = logged_in.post("/users/3/rate", data={"rating": "5"})
    assert api.calls == [("rate_user", 3, 5)]
    assert b"4.2" in r.data and b"(4 ratings)" in r.data


def test_cannot_rate_self(logged_in, api):
    logged_in.post("/users/2/rate", data={"rating": "5"})
    assert api.calls == []


def test_marketplace_category_filter(logged_in, api):
    api.users = [
        make_user(3, name="TechHub", is_business=True, business_category="Electronics & Gadgets"),
        make_user(4, name="Fashion Forward", is_business=True, business_category="Fashion & Clothing"),
        make_user(5, name="Private", is_business=False),
    ]
    r = logged_in.get("/marketplace?category=Fashion+%26+Clothing")
    assert b"Fashion Forward" in r.data
    assert b"TechHub" not in r.data and b"Private" not in r.data


def test_profile_update(logged_in, api):
    r = logged_in.post("/profile", data={"name": "New Name", "contact": "024", "twitter": "@me"})
    assert r.status_code == 200
    payload = api.calls[0][1]
    assert payload["social_media_links"] == {"twitter": "@me"}
    assert b"New Name" in r.data


def test_accounts_grouped_by_type(logged_in, api):
    api.accounts = [
        Account(id=1, type=AccountType.BANK, name="GCB Savings", number="001", service_provider="GCB"),
        Account(id=2, type=AccountType.MOMO, name="MTN Wallet", number="024", service_provider="MTN"),
    ]
    r = logged_in.get("/accounts")
    assert b"Bank accounts" in r.data and b"GCB Savings" in r.data
    assert b"Mobile money" in r.data and b"MTN Wallet" in r.data


def test_health(client):
    assert client.get("/health").get_json()["status"] == "ok"


# ===================== Upstream failures =====================
def _raising(exc):
    def call(*args, **kwargs):
        raise exc
    return call


UPSTREAM_FAILURES = [
    (TransportError("down"), b"Could not reach the escrow service."),
    (ApiError("Internal error", 500), b"Internal error"),
]


@pytest.mark.parametrize("path", ["/", "/orders/new", "/users", "/profile", "/pay/ABC12345"])
@pytest.mark.parametrize("exc, message", UPSTREAM_FAILURES)
def test_viewer_lookup_failure_renders_inline_message(logged_in, api, path, exc, message):
    api.current_user = _raising(exc)
    r = logged_in.get(path)
    assert r.status_code == 502
    assert message in r.data
    with logged_in.session_transaction() as sess:
        assert "auth_tokens" in sess


def test_viewer_lookup_failure_on_rating_sends_nothing(logged_in, api):
    api.current_user = _raising(TransportError("down"))
    r = logged_in.post("/users/3/rate", data={"rating": "4"})
    assert r.status_code == 502
    assert api.calls == []


@pytest.mark.parametrize("path", ["/", "/orders"])
@pytest.mark.parametrize("exc", [TransportError("down"), ApiError("Internal error", 500)])
def test_order_list_failure_shows_inline_message(logged_in, api, path, exc):
    api.list_orders = _raising(exc)
    r = logged_in.get(path)
    assert r.status_code == 200
    assert b"Could not load your orders." in r.data


@pytest.mark.parametrize("exc, message", UPSTREAM_FAILURES)
def test_order_detail_load_failure_is_bad_gateway(logged_in, api, exc, message):
    api.get_order = _raising(exc)
    r = logged_in.get("/orders/ORD-001")
    assert r.status_code == 502
    assert message in r.data


def test_order_action_load_failure_is_bad_gateway(logged_in, api):
    api.get_order = _raising(TransportError("down"))
    r = logged_in.post("/orders/ORD-001/actions/deliver")
    assert r.status_code == 502
    assert api.calls == []


def test_order_view_json_reports_unreachable_api(logged_in, api):
    api.current_user = _raising(TransportError("down"))
    r = logged_in.get("/api/orders/ORD-001/view")
    assert r.status_code == 502
    assert r.get_json() == {"error": "escrow_upstream_unreachable"}


# ===================== Marketplace -> create order =====================
def test_marketplace_links_each_seller_to_a_prefilled_order(logged_in, api):
    api.users = [make_user(3, name="TechHub", is_business=True, business_category="Electronics & Gadgets")]
    r = logged_in.get("/marketplace")
    assert b"/orders/new?" in r.data
    assert b"role=sender" in r.data and b"other_party_id=3" in r.data

    r = logged_in.get("/orders/new?role=sender&other_party_id=3")
    assert b'name="other_party_id" value="3"' in r.data
    assert b'value="sender" checked' in r.data
