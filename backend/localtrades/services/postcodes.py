"""Postcode normalization and the coarse distance policy used for matching.

Distances are approximations keyed on the postcode area (its two leading
characters). Any object with a ``distance(search_postcode, provider_postcode)``
method can stand in for :class:`PrefixDistancePolicy`, e.g. a geocoding
lookup, without changing :class:`PostcodeMatcher` callers.
"""

from dataclasses import dataclass, field
from typing import Protocol, Tuple

AREA_PREFIX_LENGTH = 2
SAME_AREA_DISTANCE_MILES = 5
OTHER_AREA_DISTANCE_MILES = 15


def normalize_postcode(raw: str) -> str:
    return "".join(raw.split()).upper()


def postcode_area(postcode: str) -> str:
    return normalize_postcode(postcode)[:AREA_PREFIX_LENGTH]


class DistancePolicy(Protocol):
    def distance(self, search_postcode: str, provider_postcode: str) -> int:
        ...


@dataclass(frozen=True)
class PrefixDistancePolicy:
    same_area_miles: int = SAME_AREA_DISTANCE_MILES
    other_area_miles: int = OTHER_AREA_DISTANCE_MILES

    def distance(self, search_postcode: str, provider_postcode: str) -> int:
        if postcode_area(search_postcode) == postcode_area(provider_postcode):
            return self.same_area_miles
        return self.other_area_miles


@dataclass
class PostcodeMatcher:
    policy: DistancePolicy = field(default_factory=PrefixDistancePolicy)

    def distance(self, search_postcode: str, provider_postcode: str) -> int:
        return self.policy.distance(normalize_postcode(search_postcode), normalize_postcode(provider_postcode))

    def eligible(self, search_postcode: str, provider_postcode: str, service_radius: int) -> Tuple[bool, int]:
        miles = self.distance(search_postcode, provider_postcode)
        return miles <= service_radius, miles

