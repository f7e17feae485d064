"""Configuration manager for codecontext using TOML files."""

from __future__ import annotations

import logging
from dataclasses import asdict, fields
from typing import Any, Dict

import toml

from .config import (
    BASE_DIR,
    CONFIG_FILE,
    EngineSettings,
    IndexConfig,
    OrchestratorConfig,
    ResearchConfig,
    SearchConfig,
    WindowConfig,
)

logger = logging.getLogger(__name__)

SECTIONS = {
    "indexing": IndexConfig,
    "search": SearchConfig,
    "window": WindowConfig,
    "research": ResearchConfig,
    "orchestrator": OrchestratorConfig,
}


def load_full_config() -> Dict[str, Any]:
    """Load the entire TOML config (all sections).

    Returns an empty dict if the file doesn't exist or cannot be parsed.
    """
    if not CONFIG_FILE.exists():
        return {}
    try:
        with open(CONFIG_FILE, "r") as f:
            return toml.load(f)
    except (OSError, toml.TomlDecodeError) as exc:
        logger.warning("Could not read %s: %s (using defaults)", CONFIG_FILE, exc)
        return {}


def _save_full_config(config: Dict[str, Any]) -> bool:
    """Write entire config dict to TOML file, preserving all sections."""
    CONFIG_FILE.parent.mkdir(parents=True, exist_ok=True)
    try:
        with open(CONFIG_FILE, "w") as f:
            toml.dump(config, f)
        return True
    except OSError as exc:
        logger.warning("Could not write %s: %s", CONFIG_FILE, exc)
        return False


def _build_section(name: str, values: Dict[str, Any]) -> Any:
    cls = SECTIONS[name]
    known = {f.name for f in fields(cls)}
    unknown = set(values) - known
    if unknown:
        logger.warning("Ignoring unknown keys in [%s]: %s", name, ", ".join(sorted(unknown)))
    return cls(**{k: v for k, v in values.items() if k in known})


def settings_from_mapping(data: Dict[str, Any]) -> EngineSettings:
    """Build :class:`EngineSettings` from a parsed config mapping."""
    settings = EngineSettings()
    for name in SECTIONS:
        section = data.get(name)
        if isinstance(section, dict):
            setattr(settings, name, _build_section(name, section))
    embeddings = data.get("embeddings", {})
    if isinstance(embeddings, dict) and embeddings.get("model"):
        settings.embedding_model = str(embeddings["model"])
    return settings


def load_settings() -> EngineSettings:
    """Load settings from ``config.toml``, falling back to defaults."""
    return settings_from_mapping(load_full_config())


def load_embedding_config() -> Dict[str, Any]:
    """Load embedding configuration from the ``[embeddings]`` section."""
    return load_full_config().get("embeddings", {})


def save_section(name: str, values: Dict[str, Any]) -> bool:
    """Merge *values* into section *name*, preserving other sections.

    Raises:
        KeyError: if *name* is not a known section.
    """
    if name != "embeddings" and name not in SECTIONS:
        raise KeyError(f"Unknown config section: {name}")
    config = load_full_config()
    section = dict(config.get(name, {}))
    section.update(values)
    if name in SECTIONS:
        # Round-trip through the dataclass to reject unknown keys
        section = {
            k: v for k, v in asdict(_build_section(name, section)).items() if k in section
        }
    config[name] = section
    return _save_full_config(config)


def coerce_value(section: str, key: str, raw: str) -> Any:
    """Convert a command-line string to the type of ``[section].key``.

    Raises:
        KeyError: unknown section or key.
        ValueError: *raw* cannot be converted.
    """
    if section == "embeddings":
        if key != "model":
            raise KeyError(f"Unknown key [embeddings].{key}")
        return raw
    if section not in SECTIONS:
        raise KeyError(f"Unknown config section: {section}")
    default = getattr(SECTIONS[section](), key, _MISSING)
    if default is _MISSING:
        raise KeyError(f"Unknown key [{section}].{key}")
    if isinstance(default, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Expected a boolean for [{section}].{key}, got {raw!r}")
    if isinstance(default, int):
        return int(raw)
    if isinstance(default, float):
        return float(raw)
    if isinstance(default, list):
        return [part.strip() for part in raw.split(",") if part.strip()]
    return raw


_MISSING = object()


def settings_as_dict(settings: EngineSettings) -> Dict[str, Any]:
    """Return *settings* in the same shape as ``config.toml``."""
    data: Dict[str, Any] = {name: asdict(getattr(settings, name)) for name in SECTIONS}
    data["embeddings"] = {"model": settings.embedding_model}
    return data


__all__ = [
    "BASE_DIR",
    "CONFIG_FILE",
    "SECTIONS",
    "load_full_config",
    "load_settings",
    "load_embedding_config",
    "save_section",
    "settings_as_dict",
    "settings_from_mapping",
]
