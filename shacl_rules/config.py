"""
shacl-rules - Engine configuration and logging setup.

Configuration is a flat JSON object; every key is optional:

    {
      "max_rounds": 50,
      "incremental": true,
      "include_core_vocabulary": true,
      "excluded_namespaces": ["http://example.org/draft#"],
      "excluded_components": ["http://www.w3.org/ns/shacl#ClosedConstraintComponent"],
      "log_level": "INFO"
    }
"""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import TYPE_CHECKING

from rdflib import Graph

from .rules import RulesEntailment
from .shapes_graph import ConstraintFilter, ShapeFilter, ShapesGraph

if TYPE_CHECKING:
    from .model import Constraint, Shape

logger = logging.getLogger("shacl_rules.config")

__all__ = ["EngineConfig", "configure_logging"]

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


def configure_logging(level: str = "INFO") -> None:
    """Configure the package logger (not the root logger)."""
    pkg_logger = logging.getLogger("shacl_rules")
    pkg_logger.setLevel(getattr(logging, level.upper()))
    if not pkg_logger.handlers or all(
        isinstance(h, logging.NullHandler) for h in pkg_logger.handlers
    ):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            "%(asctime)s [%(name)s] %(levelname)s: %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        ))
        pkg_logger.addHandler(handler)


@dataclass(frozen=True)
class EngineConfig:
    max_rounds: int | None = None
    incremental: bool = True
    include_core_vocabulary: bool = True
    excluded_namespaces: tuple[str, ...] = ()
    excluded_components: tuple[str, ...] = ()
    log_level: str = "INFO"

    @staticmethod
    def _defaults() -> dict:
        return {
            "max_rounds": None,
            "incremental": True,
            "include_core_vocabulary": True,
            "excluded_namespaces": [],
            "excluded_components": [],
            "log_level": "INFO",
        }

    @classmethod
    def from_dict(cls, data: dict) -> EngineConfig:
        known = {f.name for f in fields(cls)}
        for key in data:
            if key not in known:
                raise ValueError(f"Unknown configuration key: {key}")
        merged = {**cls._defaults(), **data}

        max_rounds = merged["max_rounds"]
        if max_rounds is not None and (
            not isinstance(max_rounds, int) or isinstance(max_rounds, bool) or max_rounds < 1
        ):
            raise ValueError("max_rounds: expected a positive integer or null")
        for key in ("incremental", "include_core_vocabulary"):
            if not isinstance(merged[key], bool):
                raise ValueError(f"{key}: expected a boolean")
        for key in ("excluded_namespaces", "excluded_components"):
            value = merged[key]
            if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
                raise ValueError(f"{key}: expected a list of strings")
        level = str(merged["log_level"]).upper()
        if level not in _LOG_LEVELS:
            raise ValueError(f"log_level: expected one of {', '.join(_LOG_LEVELS)}")

        return cls(
            max_rounds=max_rounds,
            incremental=merged["incremental"],
            include_core_vocabulary=merged["include_core_vocabulary"],
            excluded_namespaces=tuple(merged["excluded_namespaces"]),
            excluded_components=tuple(merged["excluded_components"]),
            log_level=level,
        )

    @classmethod
    def from_file(cls, path: Path | str) -> EngineConfig:
        """Load a JSON config file. A missing file gives the defaults."""
        cfg_path = Path(path)
        if not cfg_path.exists():
            logger.debug("No config at %s, using defaults", cfg_path)
            return cls()
        with open(cfg_path, encoding="utf-8") as f:
            data = json.load(f)
        if not isinstance(data, dict):
            raise ValueError(f"{cfg_path}: expected a JSON object")
        return cls.from_dict(data)

    def to_dict(self) -> dict:
        data = asdict(self)
        data["excluded_namespaces"] = list(self.excluded_namespaces)
        data["excluded_components"] = list(self.excluded_components)
        return data

    def shape_filter(self) -> ShapeFilter | None:
        """Rejects shapes whose IRI starts with an excluded namespace."""
        if not self.excluded_namespaces:
            return None
        prefixes = self.excluded_namespaces

        def keep(shape: Shape) -> bool:
            return not str(shape.node).startswith(prefixes)

        return keep

    def constraint_filter(self) -> ConstraintFilter | None:
        """Rejects constraints of excluded components."""
        if not self.excluded_components:
            return None
        excluded = frozenset(self.excluded_components)

        def keep(constraint: Constraint) -> bool:
            return str(constraint.component.node) not in excluded

        return keep

    def build_shapes_graph(self, graph: Graph) -> ShapesGraph:
        return ShapesGraph(
            graph,
            shape_filter=self.shape_filter(),
            constraint_filter=self.constraint_filter(),
            include_core=self.include_core_vocabulary,
        )

    def build_entailment(self) -> RulesEntailment:
        return RulesEntailment(max_rounds=self.max_rounds, incremental=self.incremental)
