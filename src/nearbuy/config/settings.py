# src/nearbuy/config/settings.py
"""
Application settings (Pydantic).

Settings are loaded from `src/nearbuy/config/defaults.yaml`, then optionally overridden by:
- environment variables (e.g., `RAPIDAPI_KEY`, `EBAY_CLIENT_ID`, `EBAY_CLIENT_SECRET`)
- an external YAML file via `NEARBUY_CONFIG_PATH`

Design rule:
- Tuning knobs (currency rates, radii, result caps) live in YAML, not in business logic.
"""

from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

from nearbuy.core.env import load_dotenv_if_present


def _read_package_yaml(filename: str) -> dict[str, Any]:
    """Read a YAML file packaged inside `nearbuy.config`."""
    text = resources.files("nearbuy.config").joinpath(filename).read_text(encoding="utf-8")
    data = yaml.safe_load(text) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {filename}; expected a mapping.")
    return data


def _read_yaml_file(path: str | Path) -> dict[str, Any]:
    """Read a YAML file from disk and return its mapping root."""
    data = yaml.safe_load(Path(path).read_text(encoding="utf-8")) or {}
    if not isinstance(data, dict):
        raise ValueError(f"Invalid YAML root object for {path}; expected a mapping.")
    return data


class AppSettings(BaseModel):
    name: str = "NearBuy"
    http_timeout_seconds: float = 15
    log_level: str = "INFO"


class CacheSettings(BaseModel):
    enabled: bool = True
    dir: str = ".cache/nearbuy"
    default_ttl_seconds: int = 60 * 60


class CatalogSettings(BaseModel):
    path: str = "data/catalogs/local_catalog.json"


class CurrencySettings(BaseModel):
    """Fixed display-only exchange rates into the reference currency."""

    reference: str = "AED"
    default_code: str = "USD"
    rates: dict[str, Decimal] = Field(
        default_factory=lambda: {"AED": Decimal("1"), "USD": Decimal("3.67")}
    )
    symbols: dict[str, str] = Field(default_factory=lambda: {"$": "USD"})
    decimals: int = Field(2, ge=0, le=6)

    @field_validator("rates")
    @classmethod
    def _normalize_rates(cls, rates: dict[str, Decimal]) -> dict[str, Decimal]:
        out = {code.strip().upper(): rate for code, rate in rates.items() if code and code.strip()}
        if any(rate <= 0 for rate in out.values()):
            raise ValueError("currency.rates values must be > 0")
        return out


class LocationSetting(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lon: float = Field(..., ge=-180, le=180)


class SearchSettings(BaseModel):
    default_radius_km: float = Field(60, gt=0, le=500)
    store_index_cell_km: float = Field(5, gt=0)
    max_results_per_source: int = Field(10, ge=1, le=100)
    comparison_limit: int = Field(5, ge=1, le=50)
    use_fallback_location: bool = False
    fallback_location: LocationSetting = Field(
        default_factory=lambda: LocationSetting(lat=40.7128, lon=-74.0060)
    )


class MapSettings(BaseModel):
    overlay_segments: int = Field(64, ge=3, le=720)
    min_zoom: float = 9
    base_zoom: float = 14
    mapbox_token: str | None = None
    fallback_token: str | None = None


class AmazonSettings(BaseModel):
    base_url: str
    host: str = "real-time-amazon-data.p.rapidapi.com"
    country: str = "US"
    storefront_search_url: str = "https://www.amazon.ae/s?k={query}"
    cache_ttl_seconds: int = 15 * 60
    min_key_length: int = 20
    api_key: str | None = None


class EbaySettings(BaseModel):
    base_url: str
    token_url: str
    scope: str = "https://api.ebay.com/oauth/api_scope"
    marketplace_id: str = "EBAY_US"
    end_user_context: str = "contextualLocation=country=US"
    cache_ttl_seconds: int = 15 * 60
    client_id: str | None = None
    client_secret: str | None = None


class MarketplacesSettings(BaseModel):
    amazon: AmazonSettings
    ebay: EbaySettings


class CredentialSettings(BaseModel):
    ttl_seconds: int = Field(30 * 60, ge=0)


class Settings(BaseModel):
    app: AppSettings = Field(default_factory=AppSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    catalog: CatalogSettings = Field(default_factory=CatalogSettings)
    currency: CurrencySettings = Field(default_factory=CurrencySettings)
    search: SearchSettings = Field(default_factory=SearchSettings)
    map: MapSettings = Field(default_factory=MapSettings)
    marketplaces: MarketplacesSettings
    credentials: CredentialSettings = Field(default_factory=CredentialSettings)


def _apply_env_overrides(data: dict[str, Any]) -> dict[str, Any]:
    """Overlay selected environment variables onto raw settings payload.

    Only this whitelist is read; everything else comes from YAML.
    """
    load_dotenv_if_present()
    data = dict(data)

    cache_dir = os.getenv("NEARBUY_CACHE_DIR")
    if cache_dir:
        data.setdefault("cache", {})["dir"] = cache_dir

    log_level = os.getenv("NEARBUY_LOG_LEVEL")
    if log_level:
        data.setdefault("app", {})["log_level"] = log_level

    catalog_path = os.getenv("NEARBUY_CATALOG_PATH")
    if catalog_path:
        data.setdefault("catalog", {})["path"] = catalog_path

    marketplaces = data.setdefault("marketplaces", {})
    rapidapi_key = os.getenv("RAPIDAPI_KEY")
    if rapidapi_key:
        marketplaces.setdefault("amazon", {})["api_key"] = rapidapi_key

    ebay_id = os.getenv("EBAY_CLIENT_ID")
    ebay_secret = os.getenv("EBAY_CLIENT_SECRET")
    if ebay_id:
        marketplaces.setdefault("ebay", {})["client_id"] = ebay_id
    if ebay_secret:
        marketplaces.setdefault("ebay", {})["client_secret"] = ebay_secret

    mapbox_token = os.getenv("MAPBOX_PUBLIC_TOKEN")
    if mapbox_token:
        data.setdefault("map", {})["mapbox_token"] = mapbox_token

    return data


@lru_cache
def get_settings() -> Settings:
    """Load and validate settings (cached)."""
    load_dotenv_if_present()
    config_path = os.getenv("NEARBUY_CONFIG_PATH")
    raw = _read_yaml_file(config_path) if config_path else _read_package_yaml("defaults.yaml")
    raw = _apply_env_overrides(raw)
    return Settings.model_validate(raw)


@lru_cache
def get_logging_config() -> dict[str, Any]:
    """Load logging configuration (cached)."""
    return _read_package_yaml("logging.yaml")
