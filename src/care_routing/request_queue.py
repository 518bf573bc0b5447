"""Hospital-facing ordering of pending requests.

The queue is rebuilt by sorting on every read instead of being kept as a heap;
request volume is low and hospitals poll it.
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from care_routing.models import CareRequest, RequestKind, RequestStatus

CRITICALITY_RANK = {"HIGH": 3, "MEDIUM": 2, "LOW": 1}


def criticality_rank(value: Optional[str]) -> int:
    if not value:
        return 0
    return CRITICALITY_RANK.get(str(value).strip().upper(), 0)


def order_pending(requests: Iterable[CareRequest]) -> List[CareRequest]:
    """Return pending requests, most critical first, then oldest first.

    ``sorted`` is stable, so requests with the same level and timestamp keep
    the order the store returned them in.
    """
    pending = [r for r in requests if r.status == RequestStatus.PENDING]
    return sorted(pending, key=lambda r: (-criticality_rank(r.criticality), r.created_at))


def summarize(requests: Iterable[CareRequest]) -> Dict[str, int]:
    pending = order_pending(requests)
    return {
        "pending": len(pending),
        "sos_alerts": sum(1 for r in pending if r.kind == RequestKind.SOS),
        "doctor_queue": sum(1 for r in pending if r.kind == RequestKind.DOCTOR_CONNECT),
        "high_priority": sum(1 for r in pending if criticality_rank(r.criticality) == CRITICALITY_RANK["HIGH"]),
    }
