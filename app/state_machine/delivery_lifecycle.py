"""
Delivery Lifecycle - legal status transitions and who may perform them

    requested -> accepted -> picked_up -> in_transit -> delivered

Any non-terminal status may also move to ``cancelled``.
``delivered`` and ``cancelled`` are terminal. ``requested -> accepted`` is
reserved for the assignment coordinator; a plain status edit cannot do it.
"""
from typing import Optional

from app.core.auth import Actor
from app.core.exceptions import ForbiddenError, InvalidTransitionError
from app.db.models.delivery import Delivery, DeliveryStatus

TERMINAL_STATUSES = frozenset({DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED})

DELIVERY_TRANSITIONS: dict[DeliveryStatus, list[DeliveryStatus]] = {
    DeliveryStatus.REQUESTED: [DeliveryStatus.ACCEPTED, DeliveryStatus.CANCELLED],
    DeliveryStatus.ACCEPTED: [DeliveryStatus.PICKED_UP, DeliveryStatus.CANCELLED],
    DeliveryStatus.PICKED_UP: [DeliveryStatus.IN_TRANSIT, DeliveryStatus.CANCELLED],
    DeliveryStatus.IN_TRANSIT: [DeliveryStatus.DELIVERED, DeliveryStatus.CANCELLED],
    DeliveryStatus.DELIVERED: [],
    DeliveryStatus.CANCELLED: [],
}

# Transitions that only the assignment coordinator performs
ASSIGNMENT_TRANSITIONS = frozenset({(DeliveryStatus.REQUESTED, DeliveryStatus.ACCEPTED)})

# Statuses an assigned courier may move a delivery into
COURIER_TARGET_STATUSES = frozenset({
    DeliveryStatus.PICKED_UP,
    DeliveryStatus.IN_TRANSIT,
    DeliveryStatus.DELIVERED,
})


def is_terminal(status: DeliveryStatus) -> bool:
    return status in TERMINAL_STATUSES


def is_valid_transition(current: DeliveryStatus, target: DeliveryStatus) -> bool:
    """Whether the transition table allows ``current -> target`` at all"""
    return target in DELIVERY_TRANSITIONS.get(current, [])


def is_owner_or_admin(actor: Actor, delivery: Delivery) -> bool:
    return actor.is_admin or actor.id == delivery.user_id


def ensure_owner_or_admin(actor: Actor, delivery: Delivery, action: str) -> None:
    if not is_owner_or_admin(actor, delivery):
        raise ForbiddenError(actor.id, action, f"delivery {delivery.id}")


def ensure_not_terminal(delivery: Delivery, target: DeliveryStatus) -> None:
    if is_terminal(delivery.status):
        raise InvalidTransitionError(
            delivery.status.value,
            target.value,
            delivery_id=delivery.id,
            reason="delivery is already finished",
        )


def authorize_details_update(actor: Actor, delivery: Delivery) -> None:
    """
    Editing anything other than status.

    Couriers never edit details, not even on deliveries they carry. Owners and
    admins may edit while the delivery is not finished.
    """
    if actor.is_courier:
        raise ForbiddenError(actor.id, "edit details of", f"delivery {delivery.id}")
    ensure_owner_or_admin(actor, delivery, "update")
    ensure_not_terminal(delivery, delivery.status)


def authorize_status_update(
    actor: Actor,
    delivery: Delivery,
    target: DeliveryStatus,
    courier_user_id: Optional[int] = None,
) -> None:
    """
    Check that ``actor`` may move ``delivery`` to ``target``.

    ``courier_user_id`` is the user account behind the assigned courier, if any.
    Raises ForbiddenError for permission problems and InvalidTransitionError
    for an illegal status change.
    """
    owner_or_admin = is_owner_or_admin(actor, delivery)
    assigned_courier = courier_user_id is not None and actor.id == courier_user_id

    if not owner_or_admin and not assigned_courier:
        raise ForbiddenError(actor.id, "update status of", f"delivery {delivery.id}")

    if not owner_or_admin and target not in COURIER_TARGET_STATUSES:
        # Couriers advance a delivery; cancelling is the requester's call
        raise ForbiddenError(actor.id, f"set status '{target.value}' on", f"delivery {delivery.id}")

    ensure_transition(delivery, target)


def ensure_transition(delivery: Delivery, target: DeliveryStatus) -> None:
    """Status-edit transition check (never the assignment path)"""
    current = delivery.status
    ensure_not_terminal(delivery, target)

    if (current, target) in ASSIGNMENT_TRANSITIONS:
        raise InvalidTransitionError(
            current.value,
            target.value,
            delivery_id=delivery.id,
            reason="a courier must be assigned to accept a delivery",
        )

    if not is_valid_transition(current, target):
        raise InvalidTransitionError(current.value, target.value, delivery_id=delivery.id)


def ensure_assignable(delivery: Delivery) -> None:
    """The assignment coordinator's own transition check"""
    if delivery.status != DeliveryStatus.REQUESTED:
        raise InvalidTransitionError(
            delivery.status.value,
            DeliveryStatus.ACCEPTED.value,
            delivery_id=delivery.id,
            reason="only requested deliveries can be assigned",
        )
