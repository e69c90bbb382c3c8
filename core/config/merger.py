"""Deep merge logic for settings and secret templates."""

import copy


def deep_merge(base: dict, override: dict) -> dict:
    """
    Deep merge two dictionaries. Override wins on conflicts.

    Neither input is modified; values taken from ``override`` are copied so
    the result never aliases it.

    Args:
        base: Base mapping (settings, or the computed Secret)
        override: Mapping to merge on top (environment overlay, or template)

    Returns:
        New merged dictionary

    Example:
        base = {"metadata": {"labels": {"app": "db", "tier": "backend"}}}
        override = {"metadata": {"labels": {"tier": "cache"}}}
        result = {"metadata": {"labels": {"app": "db", "tier": "cache"}}}
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            # Both are dicts - recurse
            result[key] = deep_merge(result[key], value)
        else:
            # Override wins
            result[key] = copy.deepcopy(value)

    return result
