"""
NearBuy CLI entrypoint.

This CLI is intended for quick local demos and debugging without the storefront.
It delegates search logic to `nearbuy.search.session.SearchSession`.
"""

from __future__ import annotations

import argparse
import json
from typing import Any

from nearbuy.config.settings import get_settings
from nearbuy.core.logging import configure_logging
from nearbuy.domain.models import Coordinate, FilterCriteria, SearchRequest
from nearbuy.map.overlay import circle_polygon, zoom_for_radius
from nearbuy.search.session import SearchSession, run_search
from nearbuy.sources.local import LocalCatalog


def _location(args: argparse.Namespace) -> Coordinate | None:
    if args.lat is None and args.lon is None:
        return None
    if args.lat is None or args.lon is None:
        raise SystemExit("--lat and --lon must be given together")
    return Coordinate(latitude=float(args.lat), longitude=float(args.lon))


def _cmd_search(args: argparse.Namespace) -> int:
    """Handle the `search` subcommand."""
    settings = get_settings()
    criteria = FilterCriteria.from_controls(
        sort_by=args.sort,
        price_range=args.price_range,
        category=args.category or "all",
        distance_range=args.distance,
        condition=args.condition,
    )
    request = SearchRequest(
        query=args.query,
        category=args.category,
        user_location=_location(args),
        criteria=criteria,
        radius_km=args.radius_km,
        sources=args.source or ["local", "marketplaceA", "marketplaceB"],
    )
    result = run_search(request, session=SearchSession.from_settings(settings))

    if args.json:
        print(json.dumps(result.model_dump(mode="json"), ensure_ascii=False, indent=2))
        return 0

    reference = settings.currency.reference
    print(f"Generated at: {result.generated_at.isoformat()}")
    for name, source in result.sources.items():
        status = f"error: {source.error}" if source.error else f"{len(source.listings)} listing(s)"
        print(f"  [{name}] {status}")
    print("Results:")
    for i, listing in enumerate(result.merged, start=1):
        price = "n/a" if listing.price_unparsed else f"{reference} {listing.price:.2f}"
        extra = []
        if listing.converted and listing.original_price:
            extra.append(f"was {listing.original_price}")
        if listing.distance_km is not None:
            extra.append(f"{listing.distance_km:.1f} km")
        suffix = f"  ({', '.join(extra)})" if extra else ""
        print(f"{i:>2}. [{listing.source_tag}] {listing.display_name}  {price}{suffix}")
    return 0


def _cmd_nearby(args: argparse.Namespace) -> int:
    """Handle the `nearby` subcommand."""
    settings = get_settings()
    catalog = LocalCatalog(settings.catalog.path, cell_size_km=settings.search.store_index_cell_km)
    center = Coordinate(latitude=float(args.lat), longitude=float(args.lon))
    radius = float(args.radius_km or settings.search.default_radius_km)
    stores = catalog.stores_near(center, radius, args.category)

    if args.json:
        print(json.dumps([s.model_dump(mode="json") for s in stores], ensure_ascii=False, indent=2))
        return 0

    print(f"{len(stores)} store(s) within {radius:g} km:")
    for store in stores:
        print(f"  {store.distance_km:6.2f} km  {store.name}  [{store.category or '-'}]")
    return 0


def _cmd_circle(args: argparse.Namespace) -> int:
    """Handle the `circle` subcommand (prints the radius overlay as GeoJSON)."""
    settings = get_settings()
    center = Coordinate(latitude=float(args.lat), longitude=float(args.lon))
    segments = int(args.segments or settings.map.overlay_segments)
    polygon = circle_polygon(center, float(args.radius_km), segments)
    zoom = zoom_for_radius(float(args.radius_km), base_zoom=settings.map.base_zoom, min_zoom=settings.map.min_zoom)
    print(json.dumps(polygon.to_geojson({"radius_km": float(args.radius_km), "zoom": zoom}), indent=2))
    return 0


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse parser for the NearBuy CLI."""
    parser = argparse.ArgumentParser(prog="nearbuy")
    sub = parser.add_subparsers(dest="command", required=True)

    s = sub.add_parser("search", help="Search local stores and marketplaces and compare prices.")
    s.add_argument("query", help="Search term (empty string for stores near you)")
    s.add_argument("--lat", type=float, default=None)
    s.add_argument("--lon", type=float, default=None)
    s.add_argument("--category", type=str, default=None)
    s.add_argument("--sort", type=str, default="default", help="default, price-asc, price-desc, name-asc, name-desc, distance")
    s.add_argument("--price-range", type=str, default="all", help="all, 0-50, 50-100, 100-500, 500")
    s.add_argument("--distance", type=str, default="all", help="all or max km (5, 10, 20, 50)")
    s.add_argument("--condition", type=str, default="all")
    s.add_argument("--radius-km", type=float, default=None)
    s.add_argument(
        "--source",
        action="append",
        choices=["local", "marketplaceA", "marketplaceB"],
        help="Restrict to a source (repeatable)",
    )
    s.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    s.set_defaults(func=_cmd_search)

    n = sub.add_parser("nearby", help="List local stores near a point.")
    n.add_argument("--lat", required=True, type=float)
    n.add_argument("--lon", required=True, type=float)
    n.add_argument("--radius-km", type=float, default=None)
    n.add_argument("--category", type=str, default=None)
    n.add_argument("--json", action="store_true", help="Output machine-readable JSON")
    n.set_defaults(func=_cmd_nearby)

    c = sub.add_parser("circle", help="Print the search-radius overlay polygon as GeoJSON.")
    c.add_argument("--lat", required=True, type=float)
    c.add_argument("--lon", required=True, type=float)
    c.add_argument("--radius-km", required=True, type=float)
    c.add_argument("--segments", type=int, default=None)
    c.set_defaults(func=_cmd_circle)

    return parser


def main(argv: list[str] | None = None) -> int:
    """CLI entrypoint callable used by `python -m nearbuy.cli`."""
    configure_logging()
    parser = build_parser()
    args = parser.parse_args(argv)
    func: Any = getattr(args, "func")
    try:
        return int(func(args))
    except ValueError as e:
        parser.error(str(e))


if __name__ == "__main__":
    raise SystemExit(main())
