"""
Graph data model: graphs, topics, items, associations, edges and vectors.

Timestamps are epoch milliseconds, ids are uuid4 hex strings. Every entity
except Graph carries its ``graph_id``; nothing crosses a graph boundary.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return uuid.uuid4().hex


class EdgeType(str, Enum):
    """Relationship kinds between topics."""

    BROADER_THAN = "broader_than"  # src is the parent, dst the child
    RELATED_TO = "related_to"      # undirected, stored in canonical order


class OwnerType(str, Enum):
    ITEM = "item"
    TOPIC = "topic"


@dataclass
class Graph:
    id: str
    name: str
    created_at: int = field(default_factory=now_ms)
    is_default: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class Topic:
    """
    A deduplicated concept node.

    ``uses`` mirrors the number of ItemTopic rows referencing the topic.
    The position stays None until the first projection.
    """

    id: str
    graph_id: str
    label: str
    uses: int = 1
    created_at: int = field(default_factory=now_ms)
    x: Optional[float] = None
    y: Optional[float] = None
    z: Optional[float] = None

    @property
    def has_position(self) -> bool:
        return self.x is not None and self.y is not None and self.z is not None

    @property
    def position(self) -> Optional[Tuple[float, float, float]]:
        if not self.has_position:
            return None
        return (self.x, self.y, self.z)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def create(cls, graph_id: str, label: str) -> "Topic":
        return cls(id=new_id(), graph_id=graph_id, label=label, uses=1)


@dataclass
class Item:
    """An ingested content unit, deduplicated by ``link`` within a graph."""

    id: str
    graph_id: str
    title: str
    summary: str
    link: str
    created_at: int = field(default_factory=now_ms)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class ItemTopic:
    graph_id: str
    item_id: str
    topic_id: str


@dataclass
class TopicEdge:
    id: str
    graph_id: str
    src: str
    dst: str
    type: EdgeType
    similarity: float
    created_at: int = field(default_factory=now_ms)

    @property
    def key(self) -> Tuple[str, str, str]:
        return (self.src, self.dst, self.type.value)

    def touches(self, topic_id: str) -> bool:
        return self.src == topic_id or self.dst == topic_id

    def other(self, topic_id: str) -> str:
        return self.dst if self.src == topic_id else self.src

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["type"] = self.type.value
        return d

    @classmethod
    def broader_than(cls, graph_id: str, parent_id: str, child_id: str, similarity: float) -> "TopicEdge":
        return cls(
            id=new_id(),
            graph_id=graph_id,
            src=parent_id,
            dst=child_id,
            type=EdgeType.BROADER_THAN,
            similarity=float(similarity),
        )

    @classmethod
    def related_to(cls, graph_id: str, a: str, b: str, similarity: float) -> "TopicEdge":
        src, dst = canonical_pair(a, b)
        return cls(
            id=new_id(),
            graph_id=graph_id,
            src=src,
            dst=dst,
            type=EdgeType.RELATED_TO,
            similarity=float(similarity),
        )


def canonical_pair(a: str, b: str) -> Tuple[str, str]:
    """Order an undirected pair with the lexicographically smaller id first."""
    return (a, b) if a <= b else (b, a)
