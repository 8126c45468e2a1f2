"""
Filter/sort engine for normalized listings.

Everything here is pure: inputs are never mutated and the same criteria applied
twice yields the same result, so it is safe to call from any request or task.
"""

from __future__ import annotations

import logging
import math
import unicodedata
from typing import Iterable, Mapping

from nearbuy.domain.models import ALL_SOURCES, FilterCriteria, Listing, SortKey, SourceResult

logger = logging.getLogger(__name__)


def _collation_key(name: str) -> tuple[str, str]:
    # Accent- and case-insensitive primary key, raw string as tie-break.
    decomposed = unicodedata.normalize("NFKD", name)
    base = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return base.casefold(), name


def _distance_key(listing: Listing) -> float:
    return listing.distance_km if listing.distance_km is not None else math.inf


def _passes_filters(listing: Listing, criteria: FilterCriteria) -> bool:
    if criteria.price_min is not None and listing.price < criteria.price_min:
        return False
    if criteria.price_max is not None and listing.price > criteria.price_max:
        return False
    if criteria.category is not None:
        if listing.category is None or listing.category.casefold() != criteria.category.casefold():
            return False
    if criteria.condition is not None and listing.condition != criteria.condition:
        return False
    # Unknown distance is never assumed to be within range.
    if criteria.max_distance_km is not None:
        if listing.distance_km is None or listing.distance_km > criteria.max_distance_km:
            return False
    return True


def sort_listings(listings: Iterable[Listing], sort_key: SortKey) -> list[Listing]:
    """Return a stably sorted copy of `listings`."""
    items = list(listings)
    if sort_key == "priceAsc":
        return sorted(items, key=lambda l: l.price)
    if sort_key == "priceDesc":
        return sorted(items, key=lambda l: l.price, reverse=True)
    if sort_key == "nameAsc":
        return sorted(items, key=lambda l: _collation_key(l.display_name))
    if sort_key == "nameDesc":
        return sorted(items, key=lambda l: _collation_key(l.display_name), reverse=True)
    if sort_key == "distanceAsc":
        return sorted(items, key=_distance_key)
    if sort_key == "ratingDesc":
        # TODO: wire a rating source into Listing; until then this keeps input order.
        logger.debug("ratingDesc requested but listings carry no rating; keeping input order")
    return items


def apply_filters(listings: Iterable[Listing], criteria: FilterCriteria) -> list[Listing]:
    """Filter by price/category/condition/distance, then sort by `criteria.sort_key`."""
    kept = [listing for listing in listings if _passes_filters(listing, criteria)]
    return sort_listings(kept, criteria.sort_key)


def filter_sources(
    results: Mapping[str, SourceResult], criteria: FilterCriteria
) -> dict[str, SourceResult]:
    """Apply the same criteria to every source independently (one result pane each)."""
    return {
        name: result.model_copy(update={"listings": apply_filters(result.listings, criteria)})
        for name, result in results.items()
    }


def merge_sources(results: Mapping[str, SourceResult], criteria: FilterCriteria) -> list[Listing]:
    """Merge all sources into one comparison list (local first), filtered and sorted."""
    ordered = [name for name in ALL_SOURCES if name in results]
    ordered += [name for name in results if name not in ordered]
    combined: list[Listing] = []
    for name in ordered:
        combined.extend(results[name].listings)
    return apply_filters(combined, criteria)
