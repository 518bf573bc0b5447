from __future__ import annotations

import math
from typing import Iterable, Optional

from care_routing.models import Assignment, Coordinates, Facility

EARTH_RADIUS_KM = 6371.0


class NearestFacilityResolver:
    """Routes a request coordinate to the closest approved facility.

    A linear scan is enough for the tens of hospitals the directory holds.
    """

    @staticmethod
    def haversine_km(origin: Coordinates, target: Coordinates) -> float:
        lat1, lon1 = math.radians(origin.latitude), math.radians(origin.longitude)
        lat2, lon2 = math.radians(target.latitude), math.radians(target.longitude)
        dlat = lat2 - lat1
        dlon = lon2 - lon1

        a = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
        # Rounding can push a just past 1.0 for antipodal points.
        a = min(1.0, max(0.0, a))
        c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
        return EARTH_RADIUS_KM * c

    def find_nearest(self, point: Coordinates, candidates: Iterable[Facility]) -> Optional[Assignment]:
        nearest: Optional[Facility] = None
        min_distance = math.inf

        for facility in candidates:
            if not facility.routable:
                continue
            distance = self.haversine_km(point, facility.location)
            # Strict comparison: the first facility seen keeps an exact tie.
            if distance < min_distance:
                min_distance = distance
                nearest = facility

        if nearest is None:
            return None
        return Assignment(facility=nearest, distance_km=min_distance)
