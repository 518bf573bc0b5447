from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional

from care_routing.errors import InvalidRequestError, NoFacilityAvailableError
from care_routing.models import (
    Assignment,
    CareRequest,
    Coordinates,
    Criticality,
    Prescription,
    RequestKind,
    RequestStatus,
)
from care_routing.request_queue import order_pending, summarize
from care_routing.routing import NearestFacilityResolver
from care_routing.store import CareStore

logger = logging.getLogger(__name__)

SOS_REASON_PREFIX = "SOS Alert: "
SOS_DEFAULT_REASON = "Unspecified High Criticality Emergency (Quick Tap)"


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CareDispatcher:
    """Routes patient requests to hospitals and manages their queue state."""

    def __init__(self, store: CareStore, clock: Optional[Callable[[], datetime]] = None) -> None:
        self.store = store
        self.resolver = NearestFacilityResolver()
        self.clock = clock or utc_now

    def dispatch(
        self,
        kind: RequestKind,
        requester_name: str,
        reason: Optional[str],
        criticality: Optional[str],
        point: Coordinates,
    ) -> Assignment:
        """Persist a new PENDING request routed to the nearest approved hospital.

        SOS requests are always HIGH, whatever the caller sent. Raises
        ``NoFacilityAvailableError`` when no hospital is operational; the
        caller surfaces it and nothing is retried here.
        """
        kind = RequestKind(kind)
        requester_name = (requester_name or "").strip()
        if not requester_name:
            raise InvalidRequestError("patientName is required")
        reason = (reason or "").strip()

        if kind == RequestKind.SOS:
            level = Criticality.HIGH
            reason = SOS_REASON_PREFIX + (reason or SOS_DEFAULT_REASON)
        else:
            level = Criticality.normalize(criticality)

        facilities = self.store.list_approved_facilities_with_location()
        assignment = self.resolver.find_nearest(point, facilities)
        if assignment is None:
            logger.warning(
                "No operational facility for %s request from %s at (%s, %s)",
                kind.value,
                requester_name,
                point.latitude,
                point.longitude,
            )
            raise NoFacilityAvailableError()

        record = self.store.insert_request(
            kind=kind,
            requester_name=requester_name,
            reason=reason,
            criticality=level.value,
            location=point,
            facility=assignment.facility,
            distance_km=assignment.distance_km,
            created_at=self.clock(),
        )
        logger.info(
            "Dispatched %s request %s (%s) to %s, %.2f km away",
            kind.value,
            record.request_id,
            level.value,
            assignment.facility.name,
            assignment.distance_km,
        )
        return assignment

    def list_pending(self, facility_id: Optional[int] = None) -> List[CareRequest]:
        """Pending requests in queue order; ``facility_id=None`` lists every hospital's."""
        requests = self.store.list_requests(status=RequestStatus.PENDING, facility_id=facility_id)
        return order_pending(requests)

    def queue_summary(self, facility_id: Optional[int] = None) -> Dict[str, int]:
        return summarize(self.store.list_requests(status=RequestStatus.PENDING, facility_id=facility_id))

    def resolve(
        self,
        request_id: int,
        content: str,
        author_name: str,
        facility_id: Optional[int] = None,
    ) -> Optional[Prescription]:
        """Record a prescription and close the request in one transaction.

        Returns ``None`` when the request is unknown, already resolved, or not
        routed to ``facility_id`` (when one is given).
        """
        content = (content or "").strip()
        author_name = (author_name or "").strip()
        if not content:
            raise InvalidRequestError("prescription content is required")
        if not author_name:
            raise InvalidRequestError("authorName is required")

        prescription = self.store.resolve_with_prescription(
            request_id, content, author_name, self.clock(), facility_id=facility_id
        )
        if prescription is None:
            logger.info(
                "Resolve ignored: request %s is unknown, already resolved or routed elsewhere", request_id
            )
            return None
        logger.info("Resolved request %s with prescription %s", request_id, prescription.prescription_id)
        return prescription

    def prescriptions_for(self, requester_name: str, facility_id: Optional[int] = None) -> List[Prescription]:
        return self.store.list_prescriptions(requester_name.strip(), facility_id=facility_id)
