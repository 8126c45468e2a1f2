"""
Result normalization.

Raw records arrive in three shapes:
- local catalog rows (`id, name, price, category, latitude?, longitude?`, optionally a
  nested `stores` object or JSON string and a `retailers` object),
- Marketplace A (Amazon via RapidAPI): price strings such as `"$25.99"`,
- Marketplace B (eBay Browse): `{"value": "25.00", "currency": "USD"}` price objects.

`normalize` turns any of them into one `Listing` in the reference currency. It never
raises: malformed input degrades to an empty title and a zero price flagged with
`price_unparsed`.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from hashlib import sha1
from typing import Any, Iterable, Mapping

from nearbuy.config.settings import Settings, get_settings
from nearbuy.core.geo import haversine_km, is_valid_point
from nearbuy.domain.models import Coordinate, Listing, SourceTag
from nearbuy.exceptions import InvalidCoordinate, MalformedRecord

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"[-+]?\d[\d,]*(?:\.\d+)?|[-+]?\.\d+")
_CODE_RE = re.compile(r"(?<![A-Za-z])([A-Za-z]{3})(?![A-Za-z])")


@dataclass(frozen=True)
class ParsedPrice:
    amount: Decimal | None
    currency: str | None

    @property
    def ok(self) -> bool:
        return self.amount is not None


@dataclass(frozen=True)
class CurrencyTable:
    """Fixed-rate conversion into the reference currency (display-only)."""

    reference: str = "AED"
    default_code: str = "USD"
    rates: dict[str, Decimal] = field(default_factory=lambda: {"AED": Decimal("1"), "USD": Decimal("3.67")})
    symbols: dict[str, str] = field(default_factory=lambda: {"$": "USD"})
    decimals: int = 2

    @classmethod
    def from_settings(cls, settings: Settings) -> "CurrencyTable":
        cfg = settings.currency
        return cls(
            reference=cfg.reference.upper(),
            default_code=cfg.default_code.upper(),
            rates=dict(cfg.rates),
            symbols=dict(cfg.symbols),
            decimals=cfg.decimals,
        )

    def rate_for(self, code: str | None) -> Decimal:
        """Rate for `code`, falling back to the default ("USD-like") rate."""
        if code and code.upper() in self.rates:
            return self.rates[code.upper()]
        return self.rates.get(self.default_code, Decimal("1"))

    def quantize(self, amount: Decimal) -> Decimal:
        step = Decimal(1).scaleb(-self.decimals)
        return amount.quantize(step, rounding=ROUND_HALF_UP)

    def to_reference(self, amount: Decimal, code: str | None) -> Decimal:
        return self.quantize(amount * self.rate_for(code))

    def detect_currency(self, text: str) -> str | None:
        """Find an ISO code or a known symbol embedded in a price string."""
        for match in _CODE_RE.finditer(text):
            candidate = match.group(1).upper()
            if candidate in self.rates:
                return candidate
        # Longest symbols first so "US$" wins over "$".
        for symbol in sorted(self.symbols, key=len, reverse=True):
            if symbol in text:
                return self.symbols[symbol].upper()
        match = _CODE_RE.search(text)
        return match.group(1).upper() if match else None


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, (int, float)):
        try:
            out = Decimal(str(value))
        except InvalidOperation:
            return None
        return out if out.is_finite() else None
    if isinstance(value, str):
        match = _NUMBER_RE.search(value)
        if not match:
            return None
        try:
            return Decimal(match.group(0).replace(",", ""))
        except InvalidOperation:
            return None
    return None


def parse_price(value: Any, table: CurrencyTable | None = None) -> ParsedPrice:
    """Parse a raw price (number, string, or `{value, currency}` object)."""
    table = table or CurrencyTable()
    if isinstance(value, Mapping):
        code = value.get("currency") or value.get("currency_code")
        return ParsedPrice(amount=_to_decimal(value.get("value")), currency=str(code).upper() if code else None)
    if isinstance(value, str):
        return ParsedPrice(amount=_to_decimal(value), currency=table.detect_currency(value))
    return ParsedPrice(amount=_to_decimal(value), currency=None)


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def _optional_text(value: Any) -> str | None:
    text = _text(value)
    return text or None


def _maybe_json(value: Any) -> Any:
    # The local search RPC sometimes returns nested rows as JSON strings.
    if isinstance(value, str):
        try:
            return json.loads(value)
        except ValueError:
            return None
    return value


def _fallback_id(source_tag: str, record: Any) -> str:
    digest = sha1(repr(record).encode("utf-8")).hexdigest()[:10]
    return f"{source_tag}-{digest}"


def _local_coordinate(record: Mapping[str, Any]) -> tuple[Any, Any] | None:
    for lat_key, lon_key in (("latitude", "longitude"), ("store_latitude", "store_longitude"), ("lat", "lng")):
        if record.get(lat_key) is not None and record.get(lon_key) is not None:
            return record[lat_key], record[lon_key]
    stores = _maybe_json(record.get("stores"))
    if isinstance(stores, Mapping) and stores.get("latitude") is not None and stores.get("longitude") is not None:
        return stores["latitude"], stores["longitude"]
    return None


def _normalize_local(
    record: Mapping[str, Any], user_coordinate: Coordinate | None, table: CurrencyTable
) -> Listing:
    amount = _to_decimal(record.get("price"))

    coordinate: Coordinate | None = None
    raw_point = _local_coordinate(record)
    if raw_point is not None:
        if is_valid_point(*raw_point):
            coordinate = Coordinate(latitude=float(raw_point[0]), longitude=float(raw_point[1]))
        else:
            logger.warning("Skipping store coordinate for local record %r: %s", record.get("id"), InvalidCoordinate(*raw_point))

    distance = None
    if coordinate is not None and user_coordinate is not None:
        distance = haversine_km(user_coordinate.to_point(), coordinate.to_point())

    stores = _maybe_json(record.get("stores"))
    retailers = _maybe_json(record.get("retailers"))
    retailer_name = _optional_text(record.get("retailer_name"))
    if retailer_name is None and isinstance(retailers, Mapping):
        retailer_name = _optional_text(retailers.get("name"))
    if retailer_name is None and isinstance(stores, Mapping):
        retailer_name = _optional_text(stores.get("name"))

    raw_id = record.get("id")
    return Listing(
        id=str(raw_id) if raw_id not in (None, "") else _fallback_id("local", record),
        display_name=_text(record.get("name")),
        price=table.quantize(amount) if amount is not None else Decimal("0"),
        price_unparsed=amount is None,
        source_tag="local",
        category=_optional_text(record.get("category")),
        source_coordinate=coordinate,
        distance_km=distance,
        image_url=_optional_text(record.get("image_url")),
        retailer_name=retailer_name,
        original_currency=table.reference,
    )


def _absolute_url(url: str | None) -> str | None:
    if not url:
        return None
    return url if url.startswith("http") else f"https://{url}"


def _normalize_marketplace(
    record: Mapping[str, Any], source_tag: SourceTag, table: CurrencyTable
) -> Listing:
    raw_price = record.get("price")
    if raw_price is None:
        raw_price = record.get("product_price")
    parsed = parse_price(raw_price, table)
    code = parsed.currency or _optional_text(record.get("currency"))

    if parsed.amount is None:
        price = Decimal("0")
    else:
        price = table.to_reference(parsed.amount, code)

    if isinstance(raw_price, Mapping):
        original = f"{raw_price.get('currency') or ''} {raw_price.get('value') or ''}".strip()
    elif raw_price is not None:
        original = str(raw_price).strip()
    else:
        original = ""

    title = _text(record.get("title")) or _text(record.get("product_title"))
    raw_id = record.get("itemId") or record.get("asin") or record.get("id")

    image = record.get("image")
    if isinstance(image, Mapping):
        image = image.get("imageUrl")
    image = image or record.get("product_photo")

    url = record.get("url") or record.get("itemWebUrl") or record.get("product_url")
    if source_tag == "marketplaceA":
        url = _absolute_url(_optional_text(url))

    return Listing(
        id=str(raw_id) if raw_id not in (None, "") else _fallback_id(source_tag, record),
        display_name=title,
        price=price,
        price_unparsed=parsed.amount is None,
        converted=parsed.amount is not None and (code or table.default_code).upper() != table.reference,
        original_price=original or None,
        original_currency=(code or table.default_code).upper() if parsed.amount is not None else code,
        source_tag=source_tag,
        condition=_optional_text(record.get("condition")),
        external_url=_optional_text(url),
        image_url=_optional_text(image),
    )


def normalize(
    record: Any,
    source_tag: SourceTag,
    user_coordinate: Coordinate | None = None,
    *,
    currency: CurrencyTable | None = None,
) -> Listing:
    """Normalize one raw record into a `Listing`; never raises."""
    table = currency or CurrencyTable.from_settings(get_settings())
    try:
        if not isinstance(record, Mapping):
            raise MalformedRecord(source_tag, f"expected a mapping, got {type(record).__name__}")
        if source_tag == "local":
            return _normalize_local(record, user_coordinate, table)
        return _normalize_marketplace(record, source_tag, table)
    except Exception as exc:
        logger.warning("Normalizing %s record to defaults: %s", source_tag, exc)
        raw_id = record.get("id") if isinstance(record, Mapping) else None
        return Listing(
            id=str(raw_id) if isinstance(raw_id, (str, int)) and raw_id != "" else _fallback_id(source_tag, record),
            display_name="",
            price=Decimal("0"),
            price_unparsed=True,
            source_tag=source_tag,
        )


def normalize_batch(
    records: Iterable[Any],
    source_tag: SourceTag,
    user_coordinate: Coordinate | None = None,
    *,
    currency: CurrencyTable | None = None,
) -> list[Listing]:
    """Normalize a whole source payload, keeping ids unique within the batch."""
    table = currency or CurrencyTable.from_settings(get_settings())
    out: list[Listing] = []
    seen: dict[str, int] = {}
    for record in records:
        listing = normalize(record, source_tag, user_coordinate, currency=table)
        count = seen.get(listing.id, 0) + 1
        seen[listing.id] = count
        if count > 1:
            listing = listing.model_copy(update={"id": f"{listing.id}#{count}"})
        out.append(listing)
    return out
