from care_routing.errors import (
    CareRoutingError,
    DuplicateAccountError,
    InvalidRequestError,
    NoFacilityAvailableError,
    RequestNotFoundError,
    StoreClosedError,
    StoreError,
)
from care_routing.models import (
    Assignment,
    CareRequest,
    Coordinates,
    Criticality,
    Facility,
    FacilityStatus,
    Prescription,
    RequestKind,
    RequestStatus,
)
from care_routing.store import CareStore
from care_routing.system import CareDispatcher

__all__ = [
    "Assignment",
    "CareDispatcher",
    "CareRequest",
    "CareRoutingError",
    "CareStore",
    "Coordinates",
    "Criticality",
    "DuplicateAccountError",
    "Facility",
    "FacilityStatus",
    "InvalidRequestError",
    "NoFacilityAvailableError",
    "Prescription",
    "RequestKind",
    "RequestNotFoundError",
    "RequestStatus",
    "StoreClosedError",
    "StoreError",
]
