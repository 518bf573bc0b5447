from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from care_routing.errors import InvalidRequestError


class Criticality(str, Enum):
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"

    @classmethod
    def normalize(cls, value: Optional[str]) -> "Criticality":
        """Upper-case a caller supplied level; missing or blank means LOW."""
        if value is None or not str(value).strip():
            return cls.LOW
        try:
            return cls(str(value).strip().upper())
        except ValueError as exc:
            raise InvalidRequestError(
                f"Unknown criticality {value!r}; expected one of HIGH, MEDIUM, LOW"
            ) from exc


class RequestKind(str, Enum):
    SOS = "SOS"
    DOCTOR_CONNECT = "DOCTOR_CONNECT"


class RequestStatus(str, Enum):
    PENDING = "PENDING"
    RESOLVED = "RESOLVED"


class FacilityStatus(str, Enum):
    PENDING = "PENDING"
    APPROVED = "APPROVED"


def _as_degrees(name: str, value: Any, limit: float) -> float:
    if value is None:
        raise InvalidRequestError(f"{name} is required")
    if isinstance(value, bool):
        raise InvalidRequestError(f"{name} must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidRequestError(f"{name} must be numeric") from exc
    if not math.isfinite(number) or abs(number) > limit:
        raise InvalidRequestError(f"{name} must be between -{limit:g} and {limit:g}")
    return number


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float

    @classmethod
    def parse(cls, latitude: Any, longitude: Any) -> "Coordinates":
        return cls(
            latitude=_as_degrees("latitude", latitude, 90.0),
            longitude=_as_degrees("longitude", longitude, 180.0),
        )


@dataclass(frozen=True)
class Facility:
    facility_id: int
    name: str
    status: FacilityStatus
    location: Optional[Coordinates] = None

    @property
    def routable(self) -> bool:
        return self.status == FacilityStatus.APPROVED and self.location is not None


@dataclass(frozen=True)
class Assignment:
    facility: Facility
    distance_km: float


@dataclass(frozen=True)
class CareRequest:
    request_id: int
    kind: RequestKind
    requester_name: str
    reason: str
    # Plain string so rows written before validation still load.
    criticality: str
    location: Coordinates
    facility_id: int
    facility_name: str
    distance_km: float
    created_at: datetime
    status: RequestStatus = RequestStatus.PENDING


@dataclass(frozen=True)
class Prescription:
    prescription_id: int
    request_id: int
    requester_name: str
    content: str
    author_name: str
    created_at: datetime
