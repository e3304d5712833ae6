"""
Order lifecycle: who the viewer is on an order and what they may do next.

Everything here is pure; the viewer id is passed in explicitly and no
function touches the network or the Flask session.
"""
from dataclasses import dataclass
from enum import Enum as PyEnum
from typing import Optional

from ..models import Order, OrderStatus


class Role(PyEnum):
    SENDER = "sender"
    RECEIVER = "receiver"
    NEITHER = "neither"


@dataclass(frozen=True)
class OrderAction:
    key: str
    label: str
    target: OrderStatus
    requires_confirmation: bool = False
    style: str = "primary"


DECLINE = OrderAction("decline", "Decline", OrderStatus.CANCELLED, True, "danger")
RESTORE = OrderAction("restore", "Restore Order", OrderStatus.PENDING)
MARK_IN_TRANSIT = OrderAction("in_transit", "Mark as In Transit", OrderStatus.IN_TRANSIT)
DELIVERED = OrderAction("deliver", "Delivered", OrderStatus.DELIVERED, style="success")
RECEIVED = OrderAction("receive", "Received", OrderStatus.COMPLETED, True, "success")
DISPUTED = OrderAction("dispute", "Disputed", OrderStatus.DISPUTED, True, "danger")

ACTIONS_BY_KEY = {a.key: a for a in (DECLINE, RESTORE, MARK_IN_TRANSIT, DELIVERED, RECEIVED, DISPUTED)}

# (status, role) -> actions offered, in display order. Anything missing gets nothing.
TRANSITIONS: dict[tuple[OrderStatus, Role], tuple[OrderAction, ...]] = {
    (OrderStatus.PENDING, Role.SENDER): (DECLINE,),
    (OrderStatus.PENDING, Role.RECEIVER): (DECLINE,),
    (OrderStatus.CANCELLED, Role.RECEIVER): (RESTORE,),
    (OrderStatus.PAID, Role.RECEIVER): (MARK_IN_TRANSIT,),
    (OrderStatus.IN_TRANSIT, Role.RECEIVER): (DELIVERED, DISPUTED),
    (OrderStatus.IN_TRANSIT, Role.SENDER): (RECEIVED, DISPUTED),
    (OrderStatus.DELIVERED, Role.RECEIVER): (DISPUTED,),
    (OrderStatus.DELIVERED, Role.SENDER): (RECEIVED, DISPUTED),
}

WAIT_FOR_DELIVERY = (
    "Please wait for the receiver to confirm delivery first. "
    "You can mark the order as received once it has been delivered."
)


def _same_id(a, b) -> bool:
    if a is None or b is None:
        return False
    return str(a).strip() == str(b).strip()


def resolve_role(order: Order, viewer_id) -> Role:
    # ids arrive as int from one endpoint and str from another; compare as text
    if _same_id(order.sender_id, viewer_id):
        return Role.SENDER
    if _same_id(order.receiver_id, viewer_id):
        return Role.RECEIVER
    return Role.NEITHER


def available_actions(status: OrderStatus, role: Role) -> list[OrderAction]:
    return list(TRANSITIONS.get((status, role), ()))


def actions_for(order: Order, viewer_id) -> list[OrderAction]:
    return available_actions(order.status, resolve_role(order, viewer_id))


def guard_message(action: OrderAction, status: OrderStatus, role: Role) -> Optional[str]:
    """Blocking explanation for an action that is offered but may not run yet.

    Only the sender's "Received" while the order is still in transit is
    guarded: funds are released only after the receiver attests delivery.
    """
    if action is RECEIVED and role is Role.SENDER and status is OrderStatus.IN_TRANSIT:
        return WAIT_FOR_DELIVERY
    return None
