"""
Error taxonomy shared by the core and the HTTP boundary.

Every error carries a human-readable ``message`` that the boundary passes
to the caller verbatim.
"""


class BoxOfficeError(Exception):
    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationFailed(BoxOfficeError):
    status_code = 400


class Unauthorized(BoxOfficeError):
    status_code = 401


class NotFound(BoxOfficeError):
    status_code = 404


class InsufficientInventory(BoxOfficeError):
    status_code = 409

    def __init__(self, requested: int, available: int | None = None) -> None:
        msg = f"not enough seats: requested {requested}"
        if available is not None:
            msg += f", available {available}"
        super().__init__(msg)
        self.requested = requested
        self.available = available


class PersistenceFault(BoxOfficeError):
    status_code = 500


class DeliveryFailed(BoxOfficeError):
    """Outbound notification could not be delivered. Never surfaced."""
    status_code = 502


class Conflict(BoxOfficeError):
    """The record is still referenced and can not be removed."""
    status_code = 409
