from collections import Counter
from decimal import Decimal, InvalidOperation

from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from ..auth import current_viewer, get_api, login_required
from ..errors import ApiError, TransportError
from ..models import OrderStatus
from ..services.lifecycle import Role
from ..services.transitions import OrderView, Outcome
from ..utils.formatting import matches
from ..utils.responses import err, ok

bp = Blueprint("orders", __name__)

RECENT_ORDERS = 5


def _load_view(order_id: str) -> OrderView:
    api = get_api()
    viewer = current_viewer()
    order = api.get_order(order_id)
    flag = current_app.extensions["escrow_inflight"].flag(viewer.id, order.order_id)
    return OrderView(order, viewer.id, api, flag=flag)


def _not_found(message: str):
    return render_template("order_missing.html", message=message), 404


# ===================== Dashboard / list =====================
@bp.get("/", endpoint="dashboard")
@login_required
def dashboard():
    viewer = current_viewer()
    try:
        orders = get_api().list_orders()
    except (TransportError, ApiError, ValueError) as e:
        current_app.logger.error("dashboard: cannot load orders: %s", e)
        flash("Could not load your orders.", "error")
        orders = []
    counts = Counter(o.status for o in orders)
    recent = sorted(orders, key=lambda o: o.created_at.timestamp() if o.created_at else 0, reverse=True)
    return render_template(
        "dashboard.html",
        viewer=viewer,
        stats=[(s, counts.get(s, 0)) for s in OrderStatus],
        recent=recent[:RECENT_ORDERS],
    )


@bp.get("/orders", endpoint="list_orders")
@login_required
def list_orders():
    q = request.args.get("q", "").strip()
    status_raw = request.args.get("status", "").strip()
    status = None
    if status_raw:
        try:
            status = OrderStatus.parse(status_raw)
        except ValueError:
            flash(f"Unknown status filter: {status_raw}", "error")

    try:
        orders = get_api().list_orders()
    except (TransportError, ApiError, ValueError) as e:
        current_app.logger.error("orders: cannot load orders: %s", e)
        flash("Could not load your orders.", "error")
        orders = []

    filtered = [
        o for o in orders
        if matches(q, o.product_title, o.order_id, o.payment_code) and (status is None or o.status is status)
    ]
    return render_template(
        "orders.html",
        orders=filtered,
        total=len(orders),
        q=q,
        status=status,
        statuses=list(OrderStatus),
    )


# ===================== Order detail + actions =====================
@bp.get("/orders/<order_id>", endpoint="order_detail")
@login_required
def order_detail(order_id: str):
    try:
        view = _load_view(order_id)
    except ApiError as e:
        if e.status_code == 404:
            return _not_found("The order you're looking for doesn't exist.")
        raise
    except ValueError as e:
        current_app.logger.error("order %s: malformed payload: %s", order_id, e)
        return _not_found("This order could not be displayed.")
    return render_template("order_detail.html", view=view, Role=Role)


@bp.post("/orders/<order_id>/actions/<key>", endpoint="order_action")
@login_required
def order_action(order_id: str, key: str):
    try:
        view = _load_view(order_id)
    except ApiError as e:
        if e.status_code == 404:
            return _not_found("The order you're looking for doesn't exist.")
        raise
    except ValueError:
        return _not_found("This order could not be displayed.")

    result = view.trigger(key, confirmed=request.form.get("confirm") == "1")
    if result.outcome is Outcome.NEEDS_CONFIRMATION:
        return render_template("order_confirm.html", view=view, action=result.action)
    if result.outcome in (Outcome.BUSY, Outcome.NOT_OFFERED):
        view.error = result.message
        return render_template("order_detail.html", view=view, Role=Role), 409
    # executed, failed and blocked all render from the view's state as it is now
    return render_template("order_detail.html", view=view, Role=Role)


@bp.get("/api/orders/<order_id>/view", endpoint="order_view_json")
@login_required
def order_view_json(order_id: str):
    try:
        view = _load_view(order_id)
    except ApiError as e:
        return err(e.detail, e.status_code or 502)
    except TransportError:
        return err("escrow_upstream_unreachable", 502)
    except ValueError as e:
        return err(str(e), 502)
    return ok({
        "order_id": view.order.order_id,
        "status": view.order.status.value,
        "role": view.role.value,
        "in_flight": view.in_flight,
        "actions": [
            {
                "key": a.key,
                "label": a.label,
                "target": a.target.value,
                "requires_confirmation": a.requires_confirmation,
            }
            for a in view.actions
        ],
        "milestones": [{"name": m.name, "complete": m.complete, "current": m.current} for m in view.milestones],
    })


# ===================== Create / join =====================
def _parse_amount(raw: str):
    try:
        amount = Decimal((raw or "").strip())
    except InvalidOperation:
        return None
    return amount if amount.is_finite() else None


def _optional_int(raw: str):
    raw = (raw or "").strip()
    return int(raw) if raw.isdigit() else None


@bp.route("/orders/new", methods=["GET", "POST"], endpoint="create_order")
@login_required
def create_order():
    viewer = current_viewer()
    if request.method == "GET":
        # the marketplace links here with the seller already filled in
        form = {
            "role": request.args.get("role", "receiver"),
            "other_party_id": request.args.get("other_party_id", ""),
        }
        return render_template("create_order.html", form=form)

    form = request.form
    role = form.get("role", "receiver")
    if role not in ("sender", "receiver"):
        flash("Choose whether you are the sender or the receiver.", "error")
        return render_template("create_order.html", form=form)
    title = form.get("product_title", "").strip()
    if not title:
        flash("Product title is required.", "error")
        return render_template("create_order.html", form=form)
    amount = _parse_amount(form.get("amount", ""))
    if amount is None or amount <= 0:
        flash("Amount must be greater than 0", "error")
        return render_template("create_order.html", form=form)

    other_id = _optional_int(form.get("other_party_id", ""))
    payload = {
        "product_title": title,
        "description": form.get("description", "").strip(),
        "amount": float(amount),
        "sender_id": viewer.id if role == "sender" else other_id,
        "receiver_id": viewer.id if role == "receiver" else other_id,
    }
    try:
        created = get_api().create_order(payload)
    except TransportError:
        flash("Could not reach the escrow service.", "error")
        return render_template("create_order.html", form=form)
    except ApiError as e:
        flash(e.detail or "Failed to create order", "error")
        return render_template("create_order.html", form=form)

    new_id = created.get("order_id") or created.get("id")
    current_app.logger.info("order %s created by user %s as %s", new_id, viewer.id, role)
    flash("Order created.", "success")
    if not new_id:
        return redirect(url_for("orders.list_orders"))
    return redirect(url_for("orders.order_detail", order_id=new_id))


@bp.route("/orders/join", methods=["GET", "POST"], endpoint="join_order")
@login_required
def join_order():
    order_id = (request.values.get("order_id") or "").strip()
    if not order_id:
        return render_template("join_order.html", order=None, order_id="")

    api = get_api()
    try:
        order = api.get_order(order_id)
    except (ApiError, ValueError):
        flash("Order not found. Please check the link or code and try again.", "error")
        return render_template("join_order.html", order=None, order_id=order_id)
    except TransportError:
        flash("Could not reach the escrow service.", "error")
        return render_template("join_order.html", order=None, order_id=order_id)

    if request.method == "GET":
        return render_template("join_order.html", order=order, order_id=order_id)

    if request.form.get("agree") not in ("1", "on"):
        flash("Please accept the escrow terms before joining.", "error")
        return render_template("join_order.html", order=order, order_id=order_id)
    try:
        api.join_order(order.order_id)
    except (ApiError, TransportError) as e:
        detail = getattr(e, "detail", None)
        flash(detail or "Failed to join order. Please try again.", "error")
        return render_template("join_order.html", order=order, order_id=order_id)
    flash("You have joined the order.", "success")
    return redirect(url_for("orders.order_detail", order_id=order.order_id))
