"""
Delivery status state machine
"""
from app.state_machine.delivery_lifecycle import (
    DELIVERY_TRANSITIONS,
    TERMINAL_STATUSES,
    authorize_details_update,
    authorize_status_update,
    ensure_assignable,
)

__all__ = [
    "DELIVERY_TRANSITIONS",
    "TERMINAL_STATUSES",
    "authorize_details_update",
    "authorize_status_update",
    "ensure_assignable",
]
