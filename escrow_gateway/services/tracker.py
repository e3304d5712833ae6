from dataclasses import dataclass
from typing import Callable, Optional

from ..models import Order, OrderStatus


@dataclass(frozen=True)
class Milestone:
    name: str
    icon: str
    complete: bool
    current: bool = False

    @property
    def state(self) -> str:
        if self.complete:
            return "complete"
        return "current" if self.current else "pending"


_FUNDED = {OrderStatus.PAID, OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED, OrderStatus.COMPLETED}
_SHIPPED = {OrderStatus.IN_TRANSIT, OrderStatus.DELIVERED, OrderStatus.COMPLETED}
_DELIVERED = {OrderStatus.DELIVERED, OrderStatus.COMPLETED}

# Each milestone tests its own predicate, not a position in the status order.
STEPS: list[tuple[str, str, Callable[[Order], bool]]] = [
    ("Both Parties Joined", "users", lambda o: o.both_parties_joined),
    ("Funds in Hold", "lock", lambda o: o.status in _FUNDED),
    ("In Transit", "move-right", lambda o: o.status in _SHIPPED),
    ("Package Delivered", "truck", lambda o: o.status in _DELIVERED),
    ("Funds Released", "check-circle", lambda o: o.status is OrderStatus.COMPLETED),
]


def current_step_index(order: Order) -> Optional[int]:
    """Index of the first incomplete milestone, or None once all are done."""
    for i, (_, _, done) in enumerate(STEPS):
        if not done(order):
            return i
    return None


def track(order: Order) -> list[Milestone]:
    current = current_step_index(order)
    return [
        Milestone(name=name, icon=icon, complete=done(order), current=(i == current))
        for i, (name, icon, done) in enumerate(STEPS)
    ]
