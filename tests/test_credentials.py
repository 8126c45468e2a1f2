import pytest

from nearbuy.config.settings import get_settings
from nearbuy.exceptions import CredentialMissing
from nearbuy.sources.credentials import MAPBOX_TOKEN, RAPIDAPI_KEY, CredentialService


class _Clock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now


def _settings(*, fallback_token=None, ttl_seconds=60):
    settings = get_settings()
    return settings.model_copy(
        update={
            "map": settings.map.model_copy(update={"fallback_token": fallback_token}),
            "credentials": settings.credentials.model_copy(update={"ttl_seconds": ttl_seconds}),
        }
    )


def test_values_are_cached_until_ttl_expires():
    store = {RAPIDAPI_KEY: "a" * 24}
    calls = []

    def loader(name):
        calls.append(name)
        return store.get(name)

    clock = _Clock()
    creds = CredentialService(_settings(ttl_seconds=60), loader=loader, clock=clock)

    assert creds.get(RAPIDAPI_KEY) == "a" * 24
    store[RAPIDAPI_KEY] = "b" * 24
    assert creds.get(RAPIDAPI_KEY) == "a" * 24

    clock.now += 61
    assert creds.get(RAPIDAPI_KEY) == "b" * 24
    assert calls == [RAPIDAPI_KEY, RAPIDAPI_KEY]


def test_refresh_forces_reload():
    store = {RAPIDAPI_KEY: "a" * 24}
    creds = CredentialService(_settings(), loader=store.get, clock=_Clock())
    creds.get(RAPIDAPI_KEY)

    store[RAPIDAPI_KEY] = "c" * 24
    creds.refresh(RAPIDAPI_KEY)

    assert creds.get(RAPIDAPI_KEY) == "c" * 24


def test_rapidapi_key_must_be_long_enough():
    creds = CredentialService(_settings(), loader={RAPIDAPI_KEY: "too-short"}.get)
    with pytest.raises(CredentialMissing, match="at least 20"):
        creds.rapidapi_key()


def test_blank_values_count_as_missing():
    creds = CredentialService(_settings(), loader=lambda _name: "   ")
    assert creds.get(RAPIDAPI_KEY) is None
    with pytest.raises(CredentialMissing, match="EBAY_CLIENT_ID"):
        creds.ebay_credentials()


def test_map_token_prefers_configured_token_then_fallback():
    configured = CredentialService(_settings(fallback_token="pk.fallback"), loader={MAPBOX_TOKEN: "pk.env"}.get)
    fallback = CredentialService(_settings(fallback_token="pk.fallback"), loader=lambda _name: None)
    missing = CredentialService(_settings(), loader=lambda _name: None)

    assert (configured.map_token().token, configured.map_token().source) == ("pk.env", "env")
    assert (fallback.map_token().token, fallback.map_token().source) == ("pk.fallback", "fallback")
    with pytest.raises(CredentialMissing):
        missing.map_token()


def test_unknown_credential_name_is_rejected():
    creds = CredentialService(_settings(), loader=lambda _name: "x")
    with pytest.raises(ValueError):
        creds.get("database_password")


def test_map_token_rotation_follows_the_credentials_ttl():
    store = {MAPBOX_TOKEN: "pk.old"}
    clock = _Clock()
    service = CredentialService(_settings(ttl_seconds=60), loader=store.get, clock=clock)

    assert service.map_token().token == "pk.old"
    store[MAPBOX_TOKEN] = "pk.new"
    clock.now += 30
    assert service.map_token().token == "pk.old"
    clock.now += 31
    assert service.map_token().token == "pk.new"
    assert not hasattr(get_settings().map, "token_ttl_seconds")
