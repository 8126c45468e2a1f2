"""
Per-request settings overrides (safe subset).

The storefront can send `settings_overrides` to tune a few knobs for one search
(e.g. the overlay resolution or how many marketplace results to keep). This module:
- validates the override payload against a whitelist,
- deep-merges the safe subset onto current settings,
- re-validates with Pydantic so types/ranges remain correct.

Secrets (RapidAPI/eBay/Mapbox credentials), upstream URLs, currency rates and file
paths are never overridable.
"""

from __future__ import annotations

# Overrides arrive as JSON payloads, so typing stays loose here and errors carry dotted paths.
from typing import Any, Mapping

from nearbuy.config.settings import Settings

# A value of True allows any keys under that subtree; a nested dict restricts the subtree
# to the listed keys, recursively.
ALLOWED_SETTINGS_OVERRIDES_TREE: dict[str, Any] = {
    "search": {
        "default_radius_km": True,
        "max_results_per_source": True,
        "comparison_limit": True,
        "use_fallback_location": True,
    },
    "map": {
        "overlay_segments": True,
        "min_zoom": True,
        "base_zoom": True,
    },
}


def _deep_merge(base: dict[str, Any], override: Mapping[str, Any]) -> dict[str, Any]:
    # Build a new dict so the cached base settings are never mutated.
    merged: dict[str, Any] = dict(base)
    for key, override_value in override.items():
        if isinstance(override_value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = _deep_merge(dict(merged[key]), override_value)
            continue
        merged[key] = override_value
    return merged


def _filter_overrides(
    overrides: Mapping[str, Any],
    *,
    allowed_tree: Mapping[str, Any],
    path: tuple[str, ...] = (),
) -> dict[str, Any]:
    filtered: dict[str, Any] = {}
    for key, value in overrides.items():
        if key not in allowed_tree:
            dotted_path = ".".join((*path, key))
            raise ValueError(f"settings_overrides contains a disallowed key: '{dotted_path}'")

        allowed = allowed_tree[key]
        if allowed is True:
            filtered[key] = value
            continue

        # Restricted subtree: the override must itself be a mapping we can recurse into.
        if not isinstance(value, Mapping):
            dotted_path = ".".join((*path, key))
            raise ValueError(f"settings_overrides key '{dotted_path}' must be a mapping")

        filtered[key] = _filter_overrides(value, allowed_tree=allowed, path=(*path, key))
    return filtered


def apply_settings_overrides(settings: Settings, overrides: Mapping[str, Any] | None) -> Settings:
    """Return `settings` with the whitelisted `overrides` applied (same object when empty)."""
    if not overrides:
        return settings

    safe_overrides = _filter_overrides(overrides, allowed_tree=ALLOWED_SETTINGS_OVERRIDES_TREE)
    merged_payload = _deep_merge(settings.model_dump(mode="python"), safe_overrides)
    return Settings.model_validate(merged_payload)
