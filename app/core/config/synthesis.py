from __future__ import annotations

from pathlib import Path
from typing import Any

_SYNTHESIS_CONFIG_CACHE: dict[str, Any] | None = None
_SYNTHESIS_CONFIG_PATH = Path(__file__).resolve().parents[3] / "config" / "synthesis.yaml"


def get_synthesis_config() -> dict[str, Any]:
    """Load synthesis config from repo-level config/synthesis.yaml and cache it."""
    global _SYNTHESIS_CONFIG_CACHE

    if _SYNTHESIS_CONFIG_CACHE is not None:
        return _SYNTHESIS_CONFIG_CACHE

    if not _SYNTHESIS_CONFIG_PATH.exists():
        raise RuntimeError(
            f"Synthesis config not found at '{_SYNTHESIS_CONFIG_PATH}'. "
            "Expected file: config/synthesis.yaml"
        )

    try:
        import yaml  # type: ignore[import-not-found]
    except Exception as exc:
        raise RuntimeError(
            "Unable to parse synthesis config because PyYAML is unavailable. "
            "Install dependency: PyYAML."
        ) from exc

    try:
        raw = _SYNTHESIS_CONFIG_PATH.read_text(encoding="utf-8")
    except OSError as exc:
        raise RuntimeError(
            f"Failed to read synthesis config '{_SYNTHESIS_CONFIG_PATH}': {exc}"
        ) from exc

    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError as exc:  # type: ignore[attr-defined]
        raise RuntimeError(
            f"Invalid YAML in synthesis config '{_SYNTHESIS_CONFIG_PATH}': {exc}"
        ) from exc

    if not isinstance(parsed, dict):
        raise RuntimeError(
            f"Invalid synthesis config '{_SYNTHESIS_CONFIG_PATH}': expected a top-level mapping."
        )

    _SYNTHESIS_CONFIG_CACHE = parsed
    return _SYNTHESIS_CONFIG_CACHE


def get_synthesis_value(path: str, default: Any = None) -> Any:
    """Get nested config value using dot path notation, e.g. 'confidence.max_confidence'."""
    if not path:
        return default

    current: Any = get_synthesis_config()
    for key in path.split("."):
        if not isinstance(current, dict):
            return default
        if key not in current:
            return default
        current = current[key]
    return current
