"""
Cluster Engine
==============
Community detection over the topic graph for visual grouping.

  1. Build an undirected weighted networkx graph (weight = edge similarity),
     inserting nodes and edges in sorted id order.
  2. Run Louvain modularity optimisation with a fixed seed and drop
     communities smaller than ``min_cluster_size``.
  3. Elect each cluster's centroid as the semantic medoid of its members.
  4. On request, derive a spanning structure per cluster by BFS from the
     centroid, strongest edges first, recording depth and direction of every
     accepted edge, plus a deterministic colour.

Same graph in, same partition and centroids out.
"""

from __future__ import annotations

from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import networkx as nx
import numpy as np
from loguru import logger

from .models import Topic, TopicEdge
from .vector_math import find_semantic_medoid

CLUSTER_PALETTE: Tuple[str, ...] = (
    "#ef4444",
    "#3b82f6",
    "#10b981",
    "#f59e0b",
    "#8b5cf6",
    "#ec4899",
    "#06b6d4",
    "#f97316",
)

GOLDEN_ANGLE = 137.5


@dataclass
class ClusterInfo:
    id: int
    centroid_id: str
    member_ids: List[str]
    centroid_position: Optional[Tuple[float, float, float]]

    @property
    def size(self) -> int:
        return len(self.member_ids)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class ClusterWithEdges(ClusterInfo):
    """A cluster plus its spanning edges, keyed by edge id."""

    color: str = ""
    edges: List[TopicEdge] = field(default_factory=list)
    edge_depths: Dict[str, int] = field(default_factory=dict)
    edge_directions: Dict[str, Tuple[str, str]] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "centroid_id": self.centroid_id,
            "member_ids": list(self.member_ids),
            "centroid_position": self.centroid_position,
            "color": self.color,
            "edges": [e.to_dict() for e in self.edges],
            "edge_depths": dict(self.edge_depths),
            "edge_directions": {k: {"from": v[0], "to": v[1]} for k, v in self.edge_directions.items()},
        }


def generate_cluster_colors(count: int) -> List[str]:
    """Palette colours while they last, otherwise golden-angle hues for all."""
    if count <= len(CLUSTER_PALETTE):
        return list(CLUSTER_PALETTE[:count])
    return [f"hsl({(i * GOLDEN_ANGLE) % 360:g}, 70%, 60%)" for i in range(count)]


def build_weighted_graph(topics: Sequence[Topic], edges: Sequence[TopicEdge]) -> nx.Graph:
    """Undirected graph over the given topics; edges leaving the set are ignored."""
    ids = sorted(t.id for t in topics)
    members = set(ids)
    G = nx.Graph()
    G.add_nodes_from(ids)
    for edge in sorted(edges, key=lambda e: (e.src, e.dst, e.type.value)):
        if edge.src not in members or edge.dst not in members:
            continue
        if not G.has_edge(edge.src, edge.dst):
            G.add_edge(edge.src, edge.dst, weight=float(edge.similarity))
    return G


class ClusterEngine:
    """Louvain clustering with medoid centroids."""

    def __init__(self, resolution: float = 1.0, min_cluster_size: int = 2, seed: int = 42):
        self.resolution = resolution
        self.min_cluster_size = min_cluster_size
        self.seed = seed

    def identify_clusters(
        self,
        topics: Sequence[Topic],
        edges: Sequence[TopicEdge],
        embeddings: Dict[str, np.ndarray],
    ) -> List[ClusterInfo]:
        """
        Partition the topics into communities.

        Clusters are numbered by size (largest first, ties by smallest member
        id). Members without a stored embedding are left out of the cluster;
        a cluster with no embedded member is dropped.
        """
        if len(topics) < 2:
            return []

        G = build_weighted_graph(topics, edges)
        if G.number_of_edges() == 0:
            return []

        communities = nx.community.louvain_communities(
            G, weight="weight", resolution=self.resolution, seed=self.seed
        )
        ordered = sorted(
            (sorted(c) for c in communities),
            key=lambda members: (-len(members), members[0]),
        )

        by_id = {t.id: t for t in topics}
        clusters: List[ClusterInfo] = []
        for members in ordered:
            if len(members) < self.min_cluster_size:
                continue
            valid = [m for m in members if m in embeddings]
            if not valid:
                continue
            centroid_id = find_semantic_medoid([embeddings[m] for m in valid], valid)
            clusters.append(
                ClusterInfo(
                    id=len(clusters),
                    centroid_id=centroid_id,
                    member_ids=valid,
                    centroid_position=by_id[centroid_id].position,
                )
            )

        logger.debug(
            f"Louvain found {len(communities)} communities, kept {len(clusters)} "
            f"(resolution={self.resolution}, min_size={self.min_cluster_size})"
        )
        return clusters

    def compute_clusters_with_edges(
        self,
        clusters: Sequence[ClusterInfo],
        edges: Sequence[TopicEdge],
    ) -> List[ClusterWithEdges]:
        colors = generate_cluster_colors(len(clusters))
        result: List[ClusterWithEdges] = []
        for cluster, color in zip(clusters, colors):
            span, depths, directions = spanning_edges(cluster, edges)
            result.append(
                ClusterWithEdges(
                    id=cluster.id,
                    centroid_id=cluster.centroid_id,
                    member_ids=list(cluster.member_ids),
                    centroid_position=cluster.centroid_position,
                    color=color,
                    edges=span,
                    edge_depths=depths,
                    edge_directions=directions,
                )
            )
        return result


def spanning_edges(
    cluster: ClusterInfo,
    edges: Sequence[TopicEdge],
) -> Tuple[List[TopicEdge], Dict[str, int], Dict[str, Tuple[str, str]]]:
    """
    Greedy BFS tree from the centroid over edges internal to the cluster.

    Neighbours are expanded strongest edge first; each edge that reaches an
    unvisited member is accepted with depth = parent depth + 1 and direction
    (from, to) following the traversal.
    """
    members = set(cluster.member_ids)
    adjacency: Dict[str, List[Tuple[str, TopicEdge]]] = {}
    for edge in sorted(edges, key=lambda e: (e.src, e.dst, e.type.value)):
        if edge.src in members and edge.dst in members:
            adjacency.setdefault(edge.src, []).append((edge.dst, edge))
            adjacency.setdefault(edge.dst, []).append((edge.src, edge))

    tree: List[TopicEdge] = []
    depths: Dict[str, int] = {}
    directions: Dict[str, Tuple[str, str]] = {}
    visited = {cluster.centroid_id}
    queue = deque([(cluster.centroid_id, 0)])

    while queue and len(visited) < len(members):
        node, depth = queue.popleft()
        neighbours = sorted(adjacency.get(node, []), key=lambda pair: -pair[1].similarity)
        for other, edge in neighbours:
            if other in visited:
                continue
            visited.add(other)
            tree.append(edge)
            depths[edge.id] = depth + 1
            directions[edge.id] = (node, other)
            queue.append((other, depth + 1))

    return tree, depths, directions


__all__ = [
    "CLUSTER_PALETTE",
    "ClusterInfo",
    "ClusterWithEdges",
    "ClusterEngine",
    "generate_cluster_colors",
    "build_weighted_graph",
    "spanning_edges",
]
