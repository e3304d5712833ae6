"""
Runs order actions against the escrow API and keeps one order view in step.

An `OrderView` is what a page holds for a single order: the order, the
viewer, the derived role/actions/milestones, the in-flight flag and the
messages shown to the viewer. The in-flight flag is shared by every action
of the view, so while one request is pending any other trigger is a no-op.
"""
import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum as PyEnum
from typing import Any, Callable, Optional

from ..errors import ApiError, TransportError
from ..models import Order, OrderStatus
from .lifecycle import ACTIONS_BY_KEY, OrderAction, Role, available_actions, guard_message, resolve_role
from .tracker import Milestone, current_step_index, track

log = logging.getLogger(__name__)


class Outcome(PyEnum):
    EXECUTED = "executed"
    FAILED = "failed"
    BUSY = "busy"
    BLOCKED = "blocked"
    NEEDS_CONFIRMATION = "needs_confirmation"
    NOT_OFFERED = "not_offered"


@dataclass(frozen=True)
class TransitionResult:
    outcome: Outcome
    action: Optional[OrderAction] = None
    message: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.EXECUTED


# action key -> (API call, message shown when it fails)
_CALLS: dict[str, tuple[Callable[[Any, Order], Any], str]] = {
    "decline": (lambda api, o: api.cancel_order(o.order_id), "Failed to cancel order"),
    "restore": (lambda api, o: api.restore_order(o.order_id), "Failed to restore order"),
    "in_transit": (lambda api, o: api.mark_in_transit(o.order_id), "Failed to mark as in transit"),
    "deliver": (lambda api, o: api.mark_delivered(o.order_id), "Failed to mark as delivered"),
    "receive": (lambda api, o: api.mark_received(o.order_id), "Failed to mark as received"),
    "dispute": (lambda api, o: api.set_status(o.order_id, OrderStatus.DISPUTED), "Failed to update order status"),
}


# ===================== In-flight flags =====================
class InFlightFlag:
    def __init__(self):
        self._busy = False

    @property
    def active(self) -> bool:
        return self._busy

    def acquire(self) -> bool:
        if self._busy:
            return False
        self._busy = True
        return True

    def release(self) -> None:
        self._busy = False


class InFlightRegistry:
    """Process-wide in-flight flags, one per (viewer, order) pair.

    Page requests for the same order view can be served concurrently by the
    WSGI server, so the flag has to outlive a single request.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._keys: set = set()

    def flag(self, viewer_id, order_id) -> "_RegistryFlag":
        return _RegistryFlag(self, (str(viewer_id), str(order_id)))

    def _acquire(self, key) -> bool:
        with self._lock:
            if key in self._keys:
                return False
            self._keys.add(key)
            return True

    def _release(self, key) -> None:
        with self._lock:
            self._keys.discard(key)

    def _active(self, key) -> bool:
        with self._lock:
            return key in self._keys


class _RegistryFlag:
    def __init__(self, registry: InFlightRegistry, key):
        self._registry = registry
        self._key = key

    @property
    def active(self) -> bool:
        return self._registry._active(self._key)

    def acquire(self) -> bool:
        return self._registry._acquire(self._key)

    def release(self) -> None:
        self._registry._release(self._key)


# ===================== Order view =====================
class OrderView:
    def __init__(self, order: Order, viewer_id, api, flag=None, notice: Optional[str] = None):
        self.order = order
        self.viewer_id = viewer_id
        self.api = api
        self.flag = flag or InFlightFlag()
        self.error: Optional[str] = None
        self.notice = notice

    @property
    def role(self) -> Role:
        return resolve_role(self.order, self.viewer_id)

    @property
    def actions(self) -> list[OrderAction]:
        return available_actions(self.order.status, self.role)

    @property
    def in_flight(self) -> bool:
        return self.flag.active

    @property
    def actions_enabled(self) -> bool:
        return not self.in_flight and not self.notice

    @property
    def milestones(self) -> list[Milestone]:
        return track(self.order)

    @property
    def current_step(self) -> Optional[int]:
        return current_step_index(self.order)

    def dismiss_notice(self) -> None:
        self.notice = None

    def dismiss_error(self) -> None:
        self.error = None

    def trigger(self, key: str, confirmed: bool = False) -> TransitionResult:
        if self.in_flight:
            return TransitionResult(Outcome.BUSY, message="Another update for this order is still in progress.")
        if self.notice:
            return TransitionResult(Outcome.BLOCKED, message=self.notice)

        role = self.role
        action = ACTIONS_BY_KEY.get(key)
        if action is None or action not in available_actions(self.order.status, role):
            return TransitionResult(Outcome.NOT_OFFERED, action, "That action is not available for this order.")

        blocked = guard_message(action, self.order.status, role)
        if blocked:
            self.notice = blocked
            return TransitionResult(Outcome.BLOCKED, action, blocked)

        if action.requires_confirmation and not confirmed:
            return TransitionResult(Outcome.NEEDS_CONFIRMATION, action)

        return self._execute(action)

    def _execute(self, action: OrderAction) -> TransitionResult:
        if not self.flag.acquire():
            return TransitionResult(Outcome.BUSY, action, "Another update for this order is still in progress.")
        call, failure = _CALLS[action.key]
        self.error = None
        try:
            body = call(self.api, self.order)
        except ApiError as e:
            self.error = f"{failure}: {e.detail}"
            return TransitionResult(Outcome.FAILED, action, self.error)
        except TransportError:
            self.error = failure
            return TransitionResult(Outcome.FAILED, action, self.error)
        finally:
            self.flag.release()

        self._reconcile(action, body)
        log.info("order %s: %s -> %s", self.order.order_id, action.key, self.order.status.value)
        return TransitionResult(Outcome.EXECUTED, action)

    def _reconcile(self, action: OrderAction, body: Any) -> None:
        # the server's copy of the order wins when it sends one back
        if isinstance(body, dict) and "status" in body and str(body.get("order_id")) == self.order.order_id:
            try:
                self.order = Order.from_dict(body)
                return
            except (KeyError, ValueError):
                log.warning("order %s: unreadable order body in response, keeping local copy", self.order.order_id)
        self.order = replace(self.order, status=action.target)
