from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from care_routing import CareRequest, Coordinates, Prescription


class LocationIn(BaseModel):
    # Left loose so Coordinates.parse reports missing or out-of-range values.
    lat: Any = None
    lng: Any = None

    def to_coordinates(self) -> Coordinates:
        return Coordinates.parse(self.lat, self.lng)


class CareRequestIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    patient_name: str = Field(default="", alias="patientName")
    reason: str = ""
    criticality: Optional[str] = None
    location: Optional[LocationIn] = None


class LoginIn(BaseModel):
    username: str
    password: str
    role: str = "hospital"
    location: Optional[LocationIn] = None


class HospitalRegistrationIn(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=6)
    location: Optional[LocationIn] = None

    @field_validator("username")
    @classmethod
    def username_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("username must not be blank")
        return value


class ResolveIn(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    prescription: str
    author_name: Optional[str] = Field(default=None, alias="authorName")


def request_out(r: CareRequest) -> dict:
    return {
        "id": r.request_id,
        "type": r.kind.value,
        "patientName": r.requester_name,
        "reason": r.reason,
        "criticality": r.criticality,
        "location": {"lat": r.location.latitude, "lng": r.location.longitude},
        "hospitalId": r.facility_id,
        "hospitalName": r.facility_name,
        "distance": r.distance_km,
        "timestamp": r.created_at.isoformat(),
        "status": r.status.value,
    }


def prescription_out(p: Prescription) -> dict:
    return {
        "id": p.prescription_id,
        "requestId": p.request_id,
        "patientName": p.requester_name,
        "prescription": p.content,
        "authorName": p.author_name,
        "timestamp": p.created_at.isoformat(),
    }
