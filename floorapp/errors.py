from __future__ import annotations


class FloorAPIError(RuntimeError):
    """Warehouse server call failed."""

    def __init__(self, message: str, *, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class FloorNotFound(FloorAPIError):
    """Server answered 404."""


class ConnectivityError(FloorAPIError):
    """Server unreachable (timeout, DNS, refused connection)."""


class AuthError(FloorAPIError):
    """Login rejected and no usable offline session."""


class ExportValidationError(ValueError):
    """Export request is incomplete and was not sent."""


class WorkOrderError(ValueError):
    """A Hall-move request does not fit its work order."""


class LotNotOnOrder(WorkOrderError):
    pass


class LotAlreadyQueued(WorkOrderError):
    pass


class MutationNotFound(LookupError):
    """No pending mutation with the given id."""


__all__ = [
    "AuthError",
    "ConnectivityError",
    "ExportValidationError",
    "FloorAPIError",
    "FloorNotFound",
    "LotAlreadyQueued",
    "LotNotOnOrder",
    "MutationNotFound",
    "WorkOrderError",
]
