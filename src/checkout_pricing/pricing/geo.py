"""Matching of postal addresses against shipping and tax zones."""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Sequence, TypeVar

from ..utils.logging import get_logger
from .models import Address, GeoZone

logger = get_logger(__name__)

ZoneT = TypeVar("ZoneT", bound=GeoZone)

_INTEGER = re.compile(r"\s*[+-]?\d+\s*")


def _parse_int(value: str) -> Optional[int]:
    if not _INTEGER.fullmatch(value):
        return None
    return int(value)


def matches_postal_pattern(postal_code: str, pattern: str) -> bool:
    """Match a postal code against one zone pattern.

    Three pattern forms are understood:

    - exact: ``"90210"`` (case-insensitive)
    - prefix wildcard: ``"90*"``
    - numeric range: ``"10001-10099"``, inclusive on both ends

    A range whose bounds or postal code do not parse as integers does not
    match. Spaces and dashes are stripped from the postal code before the
    range comparison.
    """
    if not pattern:
        return False

    if pattern.casefold() == postal_code.casefold():
        return True

    if pattern.endswith("*"):
        return postal_code.casefold().startswith(pattern[:-1].casefold())

    if "-" in pattern:
        parts = pattern.split("-")
        if len(parts) == 2:
            low = _parse_int(parts[0])
            high = _parse_int(parts[1])
            code = _parse_int(postal_code.replace(" ", "").replace("-", ""))
            if low is not None and high is not None and code is not None:
                return low <= code <= high
        logger.debug("Postal pattern %r not usable as a range for %r", pattern, postal_code)

    return False


class GeoMatcher:
    """Decides whether an address falls inside a zone.

    Exclusions are evaluated before inclusions. A zone without any inclusion
    criteria only matches when it is the default zone.
    """

    def matches(self, zone: GeoZone, address: Optional[Address]) -> bool:
        if address is None:
            return zone.is_default

        country = address.country_code or ""
        state = address.state_code or ""
        postal_code = address.postal_code or ""
        city = address.city or ""
        state_key = address.state_key

        # Exclusions win over any inclusion
        if country and country in zone.excluded_countries:
            return False
        if state and state_key in zone.excluded_states:
            return False
        if postal_code and postal_code in zone.excluded_postal_codes:
            return False

        if not zone.has_restrictions:
            return zone.is_default

        if country and country in zone.countries:
            return True

        if state and state_key in zone.states:
            return True

        if postal_code and any(matches_postal_pattern(postal_code, p) for p in zone.postal_code_patterns):
            return True

        if city:
            wanted = city.casefold()
            if any(candidate.casefold() == wanted for candidate in zone.cities):
                return True

        return False

    def resolve_shipping_zone(self, zones: Iterable[ZoneT], address: Optional[Address]) -> Optional[ZoneT]:
        """Pick the zone used to ship to ``address``.

        The first active non-default zone (by sort order, then name) that
        matches wins; otherwise the active default zone is used.
        """
        active = _ordered_active(zones)
        for zone in active:
            if not zone.is_default and self.matches(zone, address):
                logger.debug("Address %s resolved to zone %s", address, zone.code or zone.id)
                return zone
        return next((zone for zone in active if zone.is_default), None)

    def matching_tax_zones(self, zones: Iterable[ZoneT], address: Optional[Address]) -> List[ZoneT]:
        """All active non-default zones matching ``address``, or the default zone alone."""
        active = _ordered_active(zones)
        matched = [zone for zone in active if not zone.is_default and self.matches(zone, address)]
        if matched:
            return matched
        default = next((zone for zone in active if zone.is_default), None)
        return [default] if default is not None else []


def _ordered_active(zones: Iterable[ZoneT]) -> Sequence[ZoneT]:
    return sorted((zone for zone in zones if zone.is_active), key=lambda z: (z.sort_order, z.name))
