from __future__ import annotations

# We use pytest because the repository already standardizes on it for automated checks.
import pytest

# We import the real Settings loader so tests run against the packaged default config.
from nearbuy.config.settings import get_settings

# The override helper is pure (no network) and guards which knobs a request may touch.
from nearbuy.config.overrides import apply_settings_overrides


def test_apply_settings_overrides_returns_same_object_when_none():
    settings = get_settings()

    # No overrides: the same cached object comes back without rebuilding the model.
    out = apply_settings_overrides(settings, None)

    assert out is settings


def test_apply_settings_overrides_can_override_allowed_numeric_knobs():
    # Shared via lru_cache, so it must not be mutated by the override.
    settings = get_settings()

    out = apply_settings_overrides(settings, {"search": {"default_radius_km": 25}, "map": {"overlay_segments": 32}})

    assert out.search.default_radius_km == 25
    assert out.map.overlay_segments == 32
    assert settings.search.default_radius_km != 25


def test_apply_settings_overrides_revalidates_ranges():
    settings = get_settings()

    # overlay_segments must stay >= 3 even when the key itself is allowed.
    with pytest.raises(ValueError):
        apply_settings_overrides(settings, {"map": {"overlay_segments": 1}})


def test_apply_settings_overrides_rejects_secrets_with_clear_path():
    settings = get_settings()

    # Credentials are never overridable; the error names the dotted path.
    with pytest.raises(ValueError, match=r"marketplaces"):
        apply_settings_overrides(settings, {"marketplaces": {"amazon": {"api_key": "x" * 30}}})

    with pytest.raises(ValueError, match=r"map\.mapbox_token"):
        apply_settings_overrides(settings, {"map": {"mapbox_token": "pk.evil"}})


def test_apply_settings_overrides_rejects_wrong_value_shapes_for_restricted_subtrees():
    settings = get_settings()

    # `search` is a restricted subtree, so its override must be a mapping, not a scalar.
    with pytest.raises(ValueError, match=r"settings_overrides key 'search' must be a mapping"):
        apply_settings_overrides(settings, {"search": 1})


def test_apply_settings_overrides_rejects_unbounded_default_radius():
    settings = get_settings()

    # Store discovery sweeps scale with the radius, so it is capped.
    with pytest.raises(ValueError, match="default_radius_km"):
        apply_settings_overrides(settings, {"search": {"default_radius_km": 20000}})
