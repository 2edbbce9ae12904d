"""
ConfigManager: hierarchical access to tunable engine configuration.

Purpose
-------
- Provide dot-notation access to tunable values (XP curve, lock timeouts,
  trigger vocabulary) without hard-coding them in services.
- Back configuration with YAML defaults from the `config/` directory.
- Allow in-process overrides for tests and operational tweaks.

Responsibilities
----------------
- Load and deep-merge every YAML file found under `Config.CONFIG_DIR`.
- Overlay runtime overrides on top of YAML defaults.
- Serve reads from an in-memory cache with hit/miss counters.

Key Design Decisions
--------------------
- YAML is the single source for **defaults**; overrides live in memory only.
- Reads never raise: unknown keys resolve to the caller's default.
- Initialization is idempotent and lazily triggered by the first read.

Dependencies
------------
- PyYAML for parsing the `config/*.yaml` files.
- `passport.core.logging.logger.get_logger` for structured logs.
"""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional

import yaml

from passport.core.config.config import Config
from passport.core.logging.logger import get_logger

logger = get_logger(__name__)


class ConfigManagerError(RuntimeError):
    """Base error type for ConfigManager-related failures."""


__all__ = ["ConfigManager", "ConfigManagerError"]


class ConfigManager:
    """
    Tunable configuration access with YAML defaults and runtime overrides.

    Features
    --------
    - Hierarchical config access with dot notation (e.g. `"gamification.xp_per_level"`).
    - Deep-merged YAML defaults, so each concern can keep its own file.
    - Cheap in-memory reads with simple hit/miss metrics.
    """

    _cache: Dict[str, Any] = {}
    _defaults: Dict[str, Any] = {}
    _initialized: bool = False
    _config_dir: Optional[Path] = None

    _metrics: Dict[str, int] = {"gets": 0, "hits": 0, "misses": 0, "sets": 0}

    # =========================================================================
    # YAML LOADING & DEFAULTS
    # =========================================================================

    @staticmethod
    def _deep_merge_dict(
        target: MutableMapping[str, Any],
        source: MutableMapping[str, Any],
    ) -> None:
        """Recursively merge `source` into `target` (in-place)."""
        for key, value in source.items():
            if isinstance(value, dict) and isinstance(target.get(key), dict):
                ConfigManager._deep_merge_dict(target[key], value)  # type: ignore[index]
            else:
                target[key] = value

    @classmethod
    def _load_yaml_configs(cls, config_dir: Path) -> None:
        """
        Recursively load all YAML config files from `config_dir` into `_defaults`.

        Files are merged in sorted path order so composition is deterministic.
        A malformed file is logged and skipped; it never blocks startup.
        """
        if not config_dir.exists():
            logger.warning(
                "Config directory not found; using built-in defaults only",
                extra={"config_dir": str(config_dir)},
            )
            return

        yaml_files = sorted(
            list(config_dir.rglob("*.yaml")) + list(config_dir.rglob("*.yml"))
        )
        loaded_count = 0

        for yaml_file in yaml_files:
            try:
                with yaml_file.open("r", encoding="utf-8") as handle:
                    data = yaml.safe_load(handle)
            except (OSError, yaml.YAMLError) as exc:
                logger.warning(
                    "Failed to load YAML config",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "error": str(exc),
                        "error_type": type(exc).__name__,
                    },
                    exc_info=True,
                )
                continue

            if isinstance(data, dict):
                cls._deep_merge_dict(cls._defaults, data)
                loaded_count += 1
                logger.debug(
                    "Loaded YAML config",
                    extra={"file": str(yaml_file.relative_to(config_dir))},
                )
            elif data is not None:
                logger.warning(
                    "Ignoring non-dict YAML root object",
                    extra={
                        "file": str(yaml_file.relative_to(config_dir)),
                        "root_type": type(data).__name__,
                    },
                )

        logger.info(
            "YAML configs loaded",
            extra={
                "yaml_file_count": loaded_count,
                "config_dir": str(config_dir),
            },
        )

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @classmethod
    def initialize(cls, config_dir: Optional[Path] = None) -> None:
        """
        Load YAML defaults and prime the cache.

        Idempotent; pass `config_dir` to point at a different directory
        (tests use a temporary one).
        """
        if cls._initialized and config_dir is None:
            return

        cls._defaults = {}
        cls._config_dir = Path(config_dir) if config_dir else Path(Config.CONFIG_DIR)
        cls._load_yaml_configs(cls._config_dir)
        cls._cache = copy.deepcopy(cls._defaults)
        cls._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Drop all defaults, overrides and metrics. Intended for tests."""
        cls._cache = {}
        cls._defaults = {}
        cls._initialized = False
        cls._config_dir = None
        cls._metrics = {"gets": 0, "hits": 0, "misses": 0, "sets": 0}

    # =========================================================================
    # READ API
    # =========================================================================

    @staticmethod
    def _traverse(source: Dict[str, Any], key: str) -> Any:
        value: Any = source
        for part in key.split("."):
            if not isinstance(value, dict):
                return None
            value = value.get(part)
            if value is None:
                return None
        return value

    @classmethod
    def get(cls, key: str, default: Any = None) -> Any:
        """
        Retrieve a configuration value by dot-notation path.

        Examples
        --------
        >>> ConfigManager.get("gamification.xp_per_level", 1000)
        1000
        """
        if not cls._initialized:
            cls.initialize()

        cls._metrics["gets"] += 1
        value = cls._traverse(cls._cache, key)
        if value is None:
            cls._metrics["misses"] += 1
            return default

        cls._metrics["hits"] += 1
        return value

    # =========================================================================
    # WRITE API
    # =========================================================================

    @classmethod
    def set(cls, key: str, value: Any) -> None:
        """
        Override a configuration value in memory.

        Intermediate mappings are created as needed. Overrides do not touch
        YAML files and are lost on restart.
        """
        if not cls._initialized:
            cls.initialize()

        parts = key.split(".")
        node: Dict[str, Any] = cls._cache
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = {}
                node[part] = child
            node = child

        previous = node.get(parts[-1])
        node[parts[-1]] = value
        cls._metrics["sets"] += 1

        logger.info(
            "Configuration override applied",
            extra={"config_key": key, "previous_value": previous, "new_value": value},
        )

    @classmethod
    def get_metrics(cls) -> Dict[str, Any]:
        """Return read/write counters plus a hit rate percentage."""
        gets = cls._metrics["gets"]
        hit_rate = (cls._metrics["hits"] / gets * 100.0) if gets else 0.0
        return {**cls._metrics, "hit_rate": round(hit_rate, 2)}
