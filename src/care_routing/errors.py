from __future__ import annotations


class CareRoutingError(Exception):
    """Base class for failures surfaced to API callers."""

    code = "care_routing_error"


class InvalidRequestError(CareRoutingError):
    code = "invalid_request"


class NoFacilityAvailableError(CareRoutingError):
    code = "no_facility"

    def __init__(self, message: str = "No operational hospitals found.") -> None:
        super().__init__(message)


class RequestNotFoundError(CareRoutingError):
    code = "not_found"


class StoreError(CareRoutingError):
    code = "store_error"


class StoreClosedError(StoreError):
    code = "store_closed"


class DuplicateAccountError(InvalidRequestError):
    code = "conflict"
