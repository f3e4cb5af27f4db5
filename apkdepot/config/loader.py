"""
Configuration loading and merging for APK Depot.

This module builds the effective service settings from three layers, each
overriding the one before it:

Configuration Layers
--------------------
1. **Built-in defaults** (DEFAULTS below)
   - apks/ storage directory, metadata.json snapshot, 500 MB upload cap,
     port 8080, downloads served under /apks
2. **Config file** (depot.yaml, or the path given with --config)
   - Optional; when no path is given, ./depot.yaml is used if present
3. **Environment variables**
   - PORT, APKDEPOT_APK_DIR, APKDEPOT_METADATA_FILE

Merge Behavior
--------------
The loader performs deep merging with "last wins" semantics:
  - **Dicts**: Recursively merged (keys from overlay override base)
  - **Lists**: Completely replaced (NOT appended/extended)
  - **Scalars**: Overwritten (strings, numbers, booleans)

Path Resolution
---------------
Relative storage paths are resolved against the CONFIG FILE location (or
the working directory when there is no config file):
  - storage.apk_dir
  - storage.metadata_file
  - storage.staging_dir

Example file
------------
    storage:
      apk_dir: /srv/apkdepot/apks
      metadata_file: /srv/apkdepot/metadata.json
    upload:
      max_size: 209715200
    server:
      port: 9000
      cors_allowed_origins: ["https://admin.example.com"]

Examples
--------
    >>> from pathlib import Path
    >>> from apkdepot.config import load_depot_config
    >>> settings = load_depot_config(Path("depot.yaml"))
    >>> print(settings.apk_dir)
    /srv/apkdepot/apks

Error Handling
--------------
- ConfigError: missing explicit config file, YAML parse errors, non-mapping
  top level, values of the wrong type
- All errors are chained with "from err" for better debugging
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
import os
from pathlib import Path
from typing import Any

import yaml

from apkdepot.exceptions import ConfigError
from apkdepot.logging import get_global_logger

DEFAULT_CONFIG_NAME = "depot.yaml"

DEFAULTS: dict[str, Any] = {
    "storage": {
        "apk_dir": "apks",
        "metadata_file": "metadata.json",
        "staging_dir": None,
    },
    "upload": {
        "max_size": 500 * 1024 * 1024,
    },
    "server": {
        "host": "0.0.0.0",
        "port": 8080,
        "download_prefix": "/apks",
        "cors_allowed_origins": ["*"],
    },
}

# -------------------------------
# Data types
# -------------------------------


@dataclass(frozen=True)
class DepotSettings:
    """
    Effective service settings after all layers are merged.

    staging_dir of None means the system temporary directory.
    """

    apk_dir: Path
    metadata_file: Path
    staging_dir: Path | None
    max_upload_size: int
    host: str
    port: int
    download_prefix: str
    cors_allowed_origins: tuple[str, ...]
    config_path: Path | None = None


# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> dict[str, Any]:
    """
    Load a YAML config file and return the parsed mapping.

    An empty file is treated as an empty mapping.

    Raises:
      ConfigError - when the file is missing, unparsable or not a mapping
    """
    if not p.exists():
        raise ConfigError(f"config file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    except OSError as err:
        raise ConfigError(f"could not read config file {p}: {err}") from err
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"top-level YAML must be a mapping (dict): {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """
    Deep-merge two dicts with "overlay wins".

    Rules:
      - dict + dict -> deep merge
      - list + list -> overlay REPLACES base (not concatenated)
      - everything else -> overlay overwrites base

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            result[k] = v
    return result


def _env_overlay(env: Mapping[str, str]) -> dict[str, Any]:
    """Translate supported environment variables into a config overlay."""
    overlay: dict[str, Any] = {}
    port = env.get("PORT")
    if port:
        try:
            overlay.setdefault("server", {})["port"] = int(port)
        except ValueError as err:
            raise ConfigError(f"PORT must be an integer, got {port!r}") from err
    if env.get("APKDEPOT_APK_DIR"):
        overlay.setdefault("storage", {})["apk_dir"] = env["APKDEPOT_APK_DIR"]
    if env.get("APKDEPOT_METADATA_FILE"):
        overlay.setdefault("storage", {})["metadata_file"] = env[
            "APKDEPOT_METADATA_FILE"
        ]
    return overlay


# -------------------------------
# Typed accessors
# -------------------------------


def _section(cfg: dict[str, Any], name: str) -> dict[str, Any]:
    value = cfg.get(name, {})
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping")
    return value


def _int(section: dict[str, Any], key: str, where: str) -> int:
    value = section.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ConfigError(f"'{where}.{key}' must be an integer, got {value!r}")
    return value


def _str(section: dict[str, Any], key: str, where: str) -> str:
    value = section.get(key)
    if not isinstance(value, str) or not value:
        raise ConfigError(f"'{where}.{key}' must be a non-empty string")
    return value


def _path(value: Any, key: str, base_dir: Path) -> Path:
    if not isinstance(value, str | os.PathLike) or not str(value):
        raise ConfigError(f"'storage.{key}' must be a path string")
    p = Path(value)
    if not p.is_absolute():
        p = (base_dir / p).resolve()
    return p


# -------------------------------
# Public API
# -------------------------------


def load_depot_config(
    config_path: Path | None = None,
    *,
    env: Mapping[str, str] | None = None,
) -> DepotSettings:
    """
    Load and merge the effective service settings.

    Steps
      1) Start from DEFAULTS.
      2) Merge the config file (explicit path, else ./depot.yaml if present).
      3) Merge environment overrides.
      4) Resolve relative storage paths against the config file directory.
      5) Type-check every value.

    Raises
      ConfigError when an explicit config file is missing, YAML is invalid,
      or a value has the wrong type.
    """
    logger = get_global_logger()
    env = os.environ if env is None else env

    merged: dict[str, Any] = _deep_merge_dicts({}, DEFAULTS)

    if config_path is None:
        candidate = Path.cwd() / DEFAULT_CONFIG_NAME
        config_path = candidate if candidate.exists() else None

    base_dir = Path.cwd()
    if config_path is not None:
        config_path = config_path.resolve()
        logger.verbose("CONFIG", f"Loading: {config_path}")
        merged = _deep_merge_dicts(merged, _load_yaml_file(config_path))
        base_dir = config_path.parent
    else:
        logger.verbose("CONFIG", "No config file, using built-in defaults")

    env_overlay = _env_overlay(env)
    if env_overlay:
        logger.verbose(
            "CONFIG", f"Applying environment overrides: {', '.join(env_overlay)}"
        )
        merged = _deep_merge_dicts(merged, env_overlay)

    storage = _section(merged, "storage")
    upload = _section(merged, "upload")
    server = _section(merged, "server")

    staging_raw = storage.get("staging_dir")
    origins = server.get("cors_allowed_origins")
    if not isinstance(origins, list) or not all(isinstance(o, str) for o in origins):
        raise ConfigError("'server.cors_allowed_origins' must be a list of strings")

    max_size = _int(upload, "max_size", "upload")
    if max_size <= 0:
        raise ConfigError("'upload.max_size' must be positive")
    port = _int(server, "port", "server")
    if not 0 <= port <= 65535:
        raise ConfigError(f"'server.port' out of range: {port}")

    settings = DepotSettings(
        apk_dir=_path(storage.get("apk_dir"), "apk_dir", base_dir),
        metadata_file=_path(storage.get("metadata_file"), "metadata_file", base_dir),
        staging_dir=(
            None
            if staging_raw is None
            else _path(staging_raw, "staging_dir", base_dir)
        ),
        max_upload_size=max_size,
        host=_str(server, "host", "server"),
        port=port,
        download_prefix=_str(server, "download_prefix", "server"),
        cors_allowed_origins=tuple(origins),
        config_path=config_path,
    )

    logger.debug("CONFIG", f"APK dir: {settings.apk_dir}")
    logger.debug("CONFIG", f"Metadata file: {settings.metadata_file}")
    return settings
