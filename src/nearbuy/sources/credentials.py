"""
API credential lookup.

Credentials (RapidAPI key, eBay client id/secret, public map token) are read through
one `CredentialService` that is handed to the adapters at construction time. Values
are cached for `credentials.ttl_seconds` and then re-read, so a rotated key in the
environment is picked up without a restart; `refresh()` forces that early.
"""

from __future__ import annotations

import logging
import os
import time
from dataclasses import dataclass
from typing import Callable

from nearbuy.config.settings import Settings
from nearbuy.core.env import load_dotenv_if_present
from nearbuy.exceptions import CredentialMissing

logger = logging.getLogger(__name__)

RAPIDAPI_KEY = "rapidapi_key"
EBAY_CLIENT_ID = "ebay_client_id"
EBAY_CLIENT_SECRET = "ebay_client_secret"
MAPBOX_TOKEN = "mapbox_token"

CREDENTIAL_ENV_VARS: dict[str, str] = {
    RAPIDAPI_KEY: "RAPIDAPI_KEY",
    EBAY_CLIENT_ID: "EBAY_CLIENT_ID",
    EBAY_CLIENT_SECRET: "EBAY_CLIENT_SECRET",
    MAPBOX_TOKEN: "MAPBOX_PUBLIC_TOKEN",
}

Loader = Callable[[str], str | None]


@dataclass(frozen=True)
class MapToken:
    token: str
    source: str  # "env" or "fallback"


class CredentialService:
    def __init__(
        self,
        settings: Settings,
        *,
        loader: Loader | None = None,
        clock: Callable[[], float] = time.time,
    ):
        self._settings = settings
        self._loader = loader or self._load_from_env_or_settings
        self._clock = clock
        self._ttl_seconds = int(settings.credentials.ttl_seconds)
        self._cache: dict[str, tuple[str | None, float]] = {}

    def _load_from_env_or_settings(self, name: str) -> str | None:
        load_dotenv_if_present()
        value = os.getenv(CREDENTIAL_ENV_VARS[name])
        if value:
            return value
        configured = {
            RAPIDAPI_KEY: self._settings.marketplaces.amazon.api_key,
            EBAY_CLIENT_ID: self._settings.marketplaces.ebay.client_id,
            EBAY_CLIENT_SECRET: self._settings.marketplaces.ebay.client_secret,
            MAPBOX_TOKEN: self._settings.map.mapbox_token,
        }
        return configured.get(name)

    def get(self, name: str) -> str | None:
        """Return the credential value (or None when unset), cached for the TTL."""
        if name not in CREDENTIAL_ENV_VARS:
            raise ValueError(f"Unknown credential: {name!r}")
        now = self._clock()
        hit = self._cache.get(name)
        if hit is not None and now < hit[1]:
            return hit[0]
        raw = self._loader(name)
        value = raw.strip() if isinstance(raw, str) and raw.strip() else None
        self._cache[name] = (value, now + self._ttl_seconds)
        return value

    def refresh(self, name: str | None = None) -> None:
        if name is None:
            self._cache.clear()
        else:
            self._cache.pop(name, None)

    def require(self, name: str, hint: str = "") -> str:
        value = self.get(name)
        if not value:
            raise CredentialMissing(name, hint or f"Set {CREDENTIAL_ENV_VARS[name]}.")
        return value

    def rapidapi_key(self) -> str:
        key = self.require(RAPIDAPI_KEY)
        min_len = int(self._settings.marketplaces.amazon.min_key_length)
        if len(key) < min_len:
            raise CredentialMissing(
                RAPIDAPI_KEY, f"RAPIDAPI_KEY looks invalid (expected at least {min_len} characters)."
            )
        return key

    def ebay_credentials(self) -> tuple[str, str]:
        return self.require(EBAY_CLIENT_ID), self.require(EBAY_CLIENT_SECRET)

    def map_token(self) -> MapToken:
        """Public map token, falling back to the configured public fallback token."""
        token = self.get(MAPBOX_TOKEN)
        if token:
            return MapToken(token=token, source="env")
        fallback = self._settings.map.fallback_token
        if fallback:
            logger.info("MAPBOX_PUBLIC_TOKEN not set; using fallback map token")
            return MapToken(token=fallback, source="fallback")
        raise CredentialMissing(MAPBOX_TOKEN, "Set MAPBOX_PUBLIC_TOKEN or map.fallback_token.")
