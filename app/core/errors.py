"""Domain errors raised by the scheduling core.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to; ``details`` is merged into the JSON error body.
"""
from typing import Any


class SchedulingError(Exception):
    code = "scheduling_error"
    status_code = 400

    def __init__(self, message: str, **details: Any):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"error": self.code, "message": self.message, **self.details}


class InvalidConfiguration(SchedulingError):
    code = "invalid_configuration"
    status_code = 422


class RangeTooLarge(SchedulingError):
    code = "range_too_large"
    status_code = 400

    def __init__(self, requested_days: int, max_days: int):
        super().__init__(
            f"Date range of {requested_days} days exceeds the maximum of {max_days} days; split the request",
            requested_days=requested_days,
            max_days=max_days,
        )


class SlotUnavailable(SchedulingError):
    code = "slot_unavailable"
    status_code = 409

    def __init__(self, slot_id, status: str | None = None):
        super().__init__("Slot is no longer available", slot_id=str(slot_id), status=status)


class ValidationFailed(SchedulingError):
    code = "validation_failed"
    status_code = 409


class InvalidTransition(SchedulingError):
    code = "invalid_transition"
    status_code = 409

    def __init__(self, entity: str, current: str, requested: str):
        super().__init__(
            f"Cannot move {entity} from '{current}' to '{requested}'",
            current=current,
            requested=requested,
        )


class NotFound(SchedulingError):
    code = "not_found"
    status_code = 404

    def __init__(self, entity: str, entity_id):
        super().__init__(f"{entity} not found", entity=entity, id=str(entity_id))


class TimezoneUnrecognized:
    """Warning value for an unknown zone id; never raised.

    Generation keeps going on the fallback zone and the warning is handed back
    to the caller next to the result.
    """
    code = "timezone_unrecognized"

    def __init__(self, requested: str | None, fallback: str):
        self.requested = requested
        self.fallback = fallback

    @property
    def message(self) -> str:
        return f"Unrecognized timezone '{self.requested}', using '{self.fallback}'"

    def __str__(self) -> str:
        return self.message

    def __repr__(self) -> str:
        return f"TimezoneUnrecognized(requested={self.requested!r}, fallback={self.fallback!r})"

    def __eq__(self, other) -> bool:
        return (
            isinstance(other, TimezoneUnrecognized)
            and other.requested == self.requested
            and other.fallback == self.fallback
        )

    def __hash__(self) -> int:
        return hash((self.requested, self.fallback))
