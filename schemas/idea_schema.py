"""
Idea Schema - transient values passed through the idea pipeline

Ideas exist only between the LLM reply and node creation; positions only
between the layout engine and the store.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from typing import List, Dict, Any
from enum import Enum

DEFAULT_CONFIDENCE = 0.7


class GenerationType(str, Enum):
    """Prompt families for idea generation"""
    NEW = "new"
    EXPAND = "expand"
    IMPROVE = "improve"
    BRANCH = "branch"

    @classmethod
    def parse(cls, value: Any) -> "GenerationType":
        """Unrecognized values fall back to NEW"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.NEW


class LayoutStrategy(str, Enum):
    """Geometric rules for placing a batch of new nodes"""
    RADIAL = "radial"
    HORIZONTAL = "horizontal"
    VERTICAL = "vertical"
    GRID = "grid"

    @classmethod
    def parse(cls, value: Any) -> "LayoutStrategy":
        """Unrecognized values fall back to GRID"""
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.GRID


class NormalizationTier(int, Enum):
    """Which parsing strategy produced the ideas"""
    JSON_ARRAY = 1
    EMBEDDED_ARRAY = 2
    LINES = 3


@dataclass
class Idea:
    """Generated text plus a confidence score"""
    content: str
    confidence: float = DEFAULT_CONFIDENCE

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class Position:
    """2-D canvas coordinate"""
    x: float
    y: float


@dataclass
class PositionUpdate:
    """One entry of a batch position update"""
    node_id: str
    x: float
    y: float


@dataclass
class MaterializeResult:
    """Nodes and edges created from a list of ideas"""
    nodes: List[Any] = field(default_factory=list)
    edges: List[Any] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'nodes': [n.to_dict() for n in self.nodes],
            'edges': [e.to_dict() for e in self.edges],
        }
