from therapy_booking.core.errors import InvalidTransition

PENDING = "pending"
CONFIRMED = "confirmed"
CANCELLED = "cancelled"
COMPLETED = "completed"
NO_SHOW = "no_show"

# bookings that hold their slot
LIVE_STATUSES = (PENDING, CONFIRMED)

VALID_NEXT = {
    PENDING: {CONFIRMED, CANCELLED},
    CONFIRMED: {COMPLETED, NO_SHOW, CANCELLED},
    CANCELLED: set(),
    COMPLETED: set(),
    NO_SHOW: set(),
}

# requires_approval -> confirm as soon as the visitor is verified
AUTO_CONFIRM = {True: False, False: True}

CANCELLED_BY_THERAPIST = "therapist"
CANCELLED_BY_VISITOR = "visitor"

def auto_confirms(settings) -> bool:
    return AUTO_CONFIRM[bool(settings.requires_approval)]

def ensure_transition(current: str, target: str) -> None:
    if target not in VALID_NEXT.get(current, set()):
        raise InvalidTransition(f"Cannot move a {current} booking to {target}")
