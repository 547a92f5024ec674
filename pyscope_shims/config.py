"""Configuration for the scope analysis.

Settings live in a ``[tool.pyscope-shims]`` table of ``pyproject.toml`` or in
a standalone ``pyscope-shims.toml``.
"""

from __future__ import annotations

import logging
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, Mapping, Optional, Union

logger = logging.getLogger(__name__)

CONFIG_FILES = [
    "pyscope-shims.toml",
    "pyproject.toml",
]

_TOOL_TABLE = "pyscope-shims"

DEFAULT_FACT_LIMIT = 100_000


@dataclass(frozen=True)
class AnalysisConfig:
    """Knobs for the fixed-point engine.

    Attributes
    ----------
    fact_limit : int
        Ceiling on the running total of ``(name, defined_at)`` entries over
        all fact-maps.  Crossing it raises ``DataflowLimitExceeded``.
    check_cancel_every_pass : bool
        Poll the cancellation token between passes.  When ``False`` the token
        is only checked once, before the first pass.
    log_statistics : bool
        Emit solver statistics at INFO instead of DEBUG.
    """

    fact_limit: int = DEFAULT_FACT_LIMIT
    check_cancel_every_pass: bool = True
    log_statistics: bool = False

    def __post_init__(self) -> None:
        if self.fact_limit <= 0:
            raise ValueError(f"fact_limit must be positive, got {self.fact_limit}")

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "fact_limit": self.fact_limit,
            "check_cancel_every_pass": self.check_cancel_every_pass,
            "log_statistics": self.log_statistics,
        }

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "AnalysisConfig":
        """Build a config from a mapping, ignoring unknown keys.

        Keys may use dashes (TOML style) or underscores.
        """
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            attr = key.replace("-", "_")
            if attr in known:
                kwargs[attr] = value
            else:
                logger.warning("Ignoring unknown config key %r", key)
        return cls(**kwargs)


DEFAULT_CONFIG = AnalysisConfig()


def iter_config_files(start: Union[str, Path, None] = None) -> Iterator[Path]:
    """Yield candidate config files, nearest first, walking up from *start*."""
    current = Path(start or Path.cwd()).resolve()
    if current.is_file():
        current = current.parent
    for directory in (current, *current.parents):
        for name in CONFIG_FILES:
            candidate = directory / name
            if candidate.is_file():
                yield candidate


def find_config_file(start: Union[str, Path, None] = None) -> Optional[Path]:
    """Return the first config file found walking up from *start*."""
    return next(iter_config_files(start), None)


def _read_table(config_path: Path) -> Optional[Dict[str, Any]]:
    with open(config_path, "rb") as fh:
        data = tomllib.load(fh)
    if config_path.name == "pyproject.toml":
        table = data.get("tool", {}).get(_TOOL_TABLE)
    else:
        table = data.get("tool", {}).get(_TOOL_TABLE, data)
    return table or None


def load_config(path: Union[str, Path, None] = None) -> AnalysisConfig:
    """Load an :class:`AnalysisConfig`.

    Parameters
    ----------
    path : str or Path, optional
        A TOML file, or a directory to search upwards from.  Defaults to the
        current working directory.  While searching, files without
        settings (a ``pyproject.toml`` lacking ``[tool.pyscope-shims]``, an
        empty ``pyscope-shims.toml``) are skipped and the search continues
        in the parent directories.

    Returns
    -------
    AnalysisConfig
        ``DEFAULT_CONFIG`` when no file with settings is found.
    """
    if path is not None and Path(path).is_file():
        candidates: Iterable[Path] = [Path(path)]
    else:
        candidates = iter_config_files(path)

    for config_path in candidates:
        table = _read_table(config_path)
        if table is None:
            logger.debug("No analysis settings in %s", config_path)
            continue
        logger.debug("Loaded analysis config from %s", config_path)
        return AnalysisConfig.from_mapping(table)
    return DEFAULT_CONFIG
