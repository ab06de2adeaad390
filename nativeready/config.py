"""
nativeready.config
==================

Tunable configuration for the readiness engine.

The scoring weights are heuristic percentages, not derived from a formal
model; they are kept here so they can be recalibrated against a labelled
corpus without touching the scorer.

Configuration objects are immutable and passed explicitly to the scorer,
cache, scanner and gate.  Nothing in the package reads ambient state.

Typical usage::

    from nativeready.config import EngineConfig

    cfg = EngineConfig.load("nativeready.json")
    strict = cfg.replace(ready_threshold=95)
"""

from __future__ import annotations

import dataclasses
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from .errors import ConfigError

__all__ = [
    "ScoringWeights",
    "EngineConfig",
    "DEFAULT_CONFIG",
]


@dataclass(frozen=True)
class ScoringWeights:
    """Points awarded per passing category.  Must sum to 100."""

    allocations: float = 25.0
    abstract_types: float = 20.0
    dynamic_dispatch: float = 20.0
    lifetimes: float = 20.0
    constants: float = 15.0

    def __post_init__(self) -> None:
        for f in dataclasses.fields(self):
            value = getattr(self, f.name)
            if value < 0:
                raise ConfigError(f"weight {f.name!r} must be >= 0, got {value}")
        total = self.total
        if abs(total - 100.0) > 1e-6:
            raise ConfigError(f"scoring weights must sum to 100, got {total:g}")

    @property
    def total(self) -> float:
        return sum(getattr(self, f.name) for f in dataclasses.fields(self))

    def to_dict(self) -> Dict[str, float]:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "ScoringWeights":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown scoring weight(s): {sorted(unknown)}")
        return cls(**{k: float(v) for k, v in data.items()})


@dataclass(frozen=True)
class EngineConfig:
    """Engine-wide settings.

    Attributes
    ----------
    weights:
        Per-category scoring weights.
    ready_threshold:
        Minimum score for a report to be ``ready``.
    cache_ttl:
        Default time-to-live of cache entries, in seconds.
    max_call_depth:
        Call-graph depth explored for monomorphization and callee return
        inference.
    max_nesting_depth:
        Maximum statement/expression nesting accepted by the walker.
    max_paths_per_block:
        Path states kept per block by the lifetime analysis before joining.
    max_workers:
        Thread-pool size for batch analysis (``None`` lets the executor pick).
    """

    weights: ScoringWeights = field(default_factory=ScoringWeights)
    ready_threshold: int = 80
    cache_ttl: float = 300.0
    max_call_depth: int = 16
    max_nesting_depth: int = 64
    max_paths_per_block: int = 64
    max_workers: Optional[int] = None

    def __post_init__(self) -> None:
        if not 0 <= self.ready_threshold <= 100:
            raise ConfigError(
                f"ready_threshold must be within [0, 100], got {self.ready_threshold}"
            )
        if self.cache_ttl < 0:
            raise ConfigError(f"cache_ttl must be >= 0, got {self.cache_ttl}")
        for name in ("max_call_depth", "max_nesting_depth", "max_paths_per_block"):
            if getattr(self, name) < 1:
                raise ConfigError(f"{name} must be >= 1, got {getattr(self, name)}")
        if self.max_workers is not None and self.max_workers < 1:
            raise ConfigError(f"max_workers must be >= 1, got {self.max_workers}")

    def replace(self, **changes: Any) -> "EngineConfig":
        """Return a copy with *changes* applied (validated again)."""
        return dataclasses.replace(self, **changes)

    # -- serialization --------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        data = dataclasses.asdict(self)
        data["weights"] = self.weights.to_dict()
        return data

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "EngineConfig":
        known = {f.name for f in dataclasses.fields(cls)}
        unknown = set(data) - known
        if unknown:
            raise ConfigError(f"unknown configuration key(s): {sorted(unknown)}")
        kwargs = dict(data)
        if "weights" in kwargs and not isinstance(kwargs["weights"], ScoringWeights):
            kwargs["weights"] = ScoringWeights.from_dict(kwargs["weights"])
        return cls(**kwargs)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "EngineConfig":
        """Read a JSON configuration file."""
        p = Path(path)
        try:
            data = json.loads(p.read_text(encoding="utf-8"))
        except json.JSONDecodeError as exc:
            raise ConfigError(f"{p}: invalid JSON ({exc})") from exc
        if not isinstance(data, dict):
            raise ConfigError(f"{p}: expected a JSON object at top level")
        return cls.from_dict(data)


DEFAULT_CONFIG = EngineConfig()
