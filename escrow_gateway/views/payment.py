from flask import Blueprint, current_app, flash, redirect, render_template, request, url_for

from ..auth import current_viewer, get_api, login_required
from ..errors import ApiError, TransportError
from ..models import OrderStatus, progress_rank
from ..services.lifecycle import resolve_role, Role

bp = Blueprint("payment", __name__)


def _payment_state(order) -> dict:
    rank = progress_rank(order.status)
    return {
        "can_pay": order.status is OrderStatus.PENDING,
        "is_paid": rank is not None and rank >= progress_rank(OrderStatus.PAID),
    }


# ===================== Payment code =====================
@bp.get("/pay/<code>", endpoint="payment_code")
@login_required
def payment_code(code: str):
    viewer = current_viewer()
    try:
        order = get_api().order_by_payment_code(code)
    except (ApiError, ValueError):
        return render_template("order_missing.html", message="No order matches this payment code."), 404
    except TransportError:
        return render_template("order_missing.html", message="Could not reach the escrow service."), 502
    role = resolve_role(order, viewer.id)
    return render_template(
        "payment_code.html",
        order=order,
        code=code,
        can_join=order.receiver_id is None and role is Role.NEITHER,
        **_payment_state(order),
    )


@bp.post("/pay/<code>/assign", endpoint="assign_self")
@login_required
def assign_self(code: str):
    viewer = current_viewer()
    api = get_api()
    try:
        order = api.order_by_payment_code(code)
        if order.id is None:
            raise ApiError("This order cannot be assigned yet.")
        api.assign_receiver(order.id, viewer.id)
    except (ApiError, TransportError, ValueError) as e:
        current_app.logger.error("assign receiver via code %s failed: %s", code, e)
        flash("Failed to assign receiver. Please try again.", "error")
    else:
        flash("You are now the receiver on this order.", "success")
    return redirect(url_for("payment.payment_code", code=code))


# ===================== Initiate payment =====================
@bp.route("/payment/initiate/<order_id>", methods=["GET", "POST"], endpoint="initiate")
@login_required
def initiate(order_id: str):
    api = get_api()
    try:
        order = api.get_order(order_id)
    except (ApiError, ValueError):
        return render_template("order_missing.html", message="The order you're looking for doesn't exist."), 404
    except TransportError:
        return render_template("order_missing.html", message="Could not reach the escrow service."), 502

    state = _payment_state(order)
    if request.method == "POST":
        if not state["can_pay"]:
            flash("This order is no longer awaiting payment.", "error")
        else:
            try:
                checkout_url = api.initiate_payment(order.order_id)
            except (ApiError, TransportError) as e:
                current_app.logger.error("initiate payment for %s failed: %s", order.order_id, e)
                flash("Failed to initiate payment. Please try again.", "error")
            else:
                return redirect(checkout_url)
    return render_template("initiate_payment.html", order=order, **state)


@bp.get("/payment/callback", endpoint="callback")
@login_required
def callback():
    reference = request.args.get("reference", "").strip()
    if not reference:
        return render_template("payment_callback.html", ok=False, message="No payment reference found.")
    try:
        get_api().payment_callback(reference)
    except (ApiError, TransportError) as e:
        current_app.logger.error("payment verification for %s failed: %s", reference, e)
        return render_template("payment_callback.html", ok=False, message="Payment verification failed.")
    return render_template("payment_callback.html", ok=True, message="Payment verified successfully!")
