# achievement_cache/core/cache_behavior.py

"""Side-effect-free decisions shared by the cache store and the legacy importer.

Kept free of database access so each rule can be tested in isolation.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

__all__ = [
    "RETRO_ACHIEVEMENTS_PROVIDER",
    "compute_is_completed",
    "compute_stale_definition_ids",
    "is_retro_achievements_provider",
    "should_fallback_to_provider_game_id_lookup",
    "should_mark_legacy_import_done",
]

RETRO_ACHIEVEMENTS_PROVIDER = "RetroAchievements"


def compute_stale_definition_ids(
    existing_ids_by_api_name: Mapping[str, int] | None,
    incoming_api_names: Iterable[str | None] | None,
) -> list[int]:
    """Return definition ids whose API name is no longer in the payload.

    Names are compared trimmed and case-insensitively. Blank names and
    non-positive ids in the existing map are never reported.

    Args:
        existing_ids_by_api_name: Stored ``api_name -> definition id`` for a game.
        incoming_api_names: API names in the latest payload (None = empty).

    Returns:
        Ids present in the map but absent from the desired set.
    """
    if not existing_ids_by_api_name:
        return []

    desired = {name.strip().casefold() for name in incoming_api_names or () if name and name.strip()}

    stale: list[int] = []
    seen: set[int] = set()
    for api_name, definition_id in existing_ids_by_api_name.items():
        normalized = (api_name or "").strip()
        if not normalized or normalized.casefold() in desired:
            continue
        if definition_id is not None and definition_id > 0 and definition_id not in seen:
            seen.add(definition_id)
            stale.append(definition_id)
    return stale


def should_mark_legacy_import_done(
    parse_failed_count: int,
    db_write_failed_count: int,
    remaining_file_count: int,
) -> bool:
    """The one-shot legacy import is complete only when nothing is left to retry."""
    return parse_failed_count <= 0 and db_write_failed_count <= 0 and remaining_file_count <= 0


def is_retro_achievements_provider(provider_name: str | None) -> bool:
    return bool(provider_name) and provider_name.strip().casefold() == RETRO_ACHIEVEMENTS_PROVIDER.casefold()


def should_fallback_to_provider_game_id_lookup(
    provider_name: str | None,
    external_library_id: str | None,
    provider_game_id: int | None,
) -> bool:
    """Decide whether a game may be matched by its provider-native id.

    RetroAchievements reuses numeric ids across distinct catalog entries, so
    once a library id identifies the game the numeric id must not be used
    to match a different row.
    """
    if provider_game_id is None or provider_game_id <= 0:
        return False
    has_library_id = bool(external_library_id and external_library_id.strip())
    if has_library_id and is_retro_achievements_provider(provider_name):
        return False
    return True


def compute_is_completed(
    provider_is_completed: bool,
    unlocked_count: int,
    total_count: int,
    marker_unlocked: bool,
    has_marker: bool,
) -> bool:
    """Combine the three completion signals.

    A completion marker that exists but is still locked vetoes everything
    else. Otherwise any of: provider says completed, 100% unlocked, marker
    unlocked.
    """
    if has_marker and not marker_unlocked:
        return False
    is_hundred_percent = total_count > 0 and unlocked_count == total_count
    return provider_is_completed or is_hundred_percent or marker_unlocked
