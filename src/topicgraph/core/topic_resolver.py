"""
Topic Resolution
================
Maps the topic labels of one ingested item onto the graph's topic set.

For each label, in batch order:

  1. exact label match (existing topic or one minted earlier in this batch)
     -> reuse it
  2. otherwise the single most similar candidate among the topics resolved
     earlier in this batch and all pre-existing topics
  3. similarity above the merge threshold -> merge into that candidate
  4. otherwise mint a new topic with uses=1

Candidates are scanned same-batch first, then existing topics in snapshot
order, and only a strictly better score replaces the current best, so ties go
to the first-seen candidate and the result is deterministic.

A topic is counted once per item: if two labels of the same item resolve to
the same topic, ``uses`` is bumped a single time, matching the single
ItemTopic row that will be written.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from .exceptions import DimensionMismatchError, ValidationError
from .models import Topic
from .vector_math import as_matrix, similarity_matrix


@dataclass
class CreatedTopic:
    """A topic minted during resolution, with the embedding to store."""

    topic: Topic
    embedding: np.ndarray
    row: int


@dataclass
class TopicResolution:
    """
    Outcome of resolving one batch.

    Attributes:
        resolved: Resolved topic per input label (same order as the input).
        created: Newly minted topics in mint order.
        reused: Pre-existing topics whose ``uses`` was incremented, in
            first-touch order, carrying the updated count.
        merges: (label, topic_id, similarity) for every similarity merge.
    """

    resolved: List[Topic] = field(default_factory=list)
    created: List[CreatedTopic] = field(default_factory=list)
    reused: List[Topic] = field(default_factory=list)
    merges: List[Tuple[str, str, float]] = field(default_factory=list)

    @property
    def topic_ids(self) -> List[str]:
        """Distinct resolved topic ids in first-seen order."""
        seen: Dict[str, None] = {}
        for t in self.resolved:
            seen.setdefault(t.id, None)
        return list(seen)

    @property
    def created_ids(self) -> List[str]:
        return [c.topic.id for c in self.created]


class TopicResolver:
    """Merges or creates topic nodes from (label, embedding) pairs."""

    def __init__(self, merge_threshold: float = 0.85):
        self.merge_threshold = merge_threshold

    def resolve(
        self,
        graph_id: str,
        labels: Sequence[str],
        embeddings,
        existing_topics: Sequence[Topic],
        existing_embeddings: Dict[str, np.ndarray],
    ) -> TopicResolution:
        """
        Resolve one item's labels against the graph snapshot.

        Args:
            graph_id: Graph the batch belongs to.
            labels: Topic labels of the item, in order.
            embeddings: One embedding per label.
            existing_topics: Current topics of the graph (snapshot order).
            existing_embeddings: topic id -> stored embedding. Topics without
                a stored vector can still be matched by label, never by
                similarity.

        Returns:
            TopicResolution. Input topics are never mutated; reused topics are
            returned as copies with the incremented count.
        """
        new_matrix = as_matrix(embeddings)
        if new_matrix.shape[0] != len(labels):
            raise ValidationError(
                field="topic_embeddings",
                reason=f"expected {len(labels)} embeddings, got {new_matrix.shape[0]}",
            )

        by_label = {t.label: t for t in existing_topics}
        vector_topics = [t for t in existing_topics if t.id in existing_embeddings]
        if vector_topics and len(labels):
            existing_matrix = as_matrix([existing_embeddings[t.id] for t in vector_topics])
            if existing_matrix.shape[1] != new_matrix.shape[1]:
                raise DimensionMismatchError(
                    existing_matrix.shape[1], new_matrix.shape[1], "topic resolution"
                )
            against_existing = similarity_matrix(new_matrix, existing_matrix)
        else:
            against_existing = np.zeros((len(labels), 0))
        within_batch = similarity_matrix(new_matrix, new_matrix) if len(labels) else np.zeros((0, 0))

        result = TopicResolution()
        minted_by_label: Dict[str, Topic] = {}
        touched: Dict[str, Topic] = {}

        def _use(topic: Topic) -> Topic:
            # Count each topic once per item
            if topic.id in touched:
                return touched[topic.id]
            if any(c.topic.id == topic.id for c in result.created):
                touched[topic.id] = topic
                return topic
            bumped = replace(topic, uses=topic.uses + 1)
            touched[topic.id] = bumped
            result.reused.append(bumped)
            return bumped

        for i, label in enumerate(labels):
            exact = minted_by_label.get(label) or by_label.get(label)
            if exact is not None:
                result.resolved.append(_use(exact))
                continue

            best_topic, best_sim = self._best_match(i, within_batch, against_existing, result.resolved, vector_topics)

            if best_topic is not None and best_sim > self.merge_threshold:
                logger.debug(
                    f"Merging label '{label}' into topic '{best_topic.label}' "
                    f"(similarity={best_sim:.3f}, graph={graph_id})"
                )
                result.merges.append((label, best_topic.id, best_sim))
                result.resolved.append(_use(best_topic))
                continue

            topic = Topic.create(graph_id, label)
            result.created.append(CreatedTopic(topic=topic, embedding=new_matrix[i].copy(), row=i))
            minted_by_label[label] = topic
            touched[topic.id] = topic
            result.resolved.append(topic)

        return result

    @staticmethod
    def _best_match(
        row: int,
        within_batch: np.ndarray,
        against_existing: np.ndarray,
        resolved_so_far: List[Topic],
        vector_topics: List[Topic],
    ) -> Tuple[Optional[Topic], float]:
        best_topic: Optional[Topic] = None
        best_sim = 0.0

        for j in range(row):
            sim = float(within_batch[row, j])
            if sim > best_sim:
                best_sim = sim
                best_topic = resolved_so_far[j]

        for k, topic in enumerate(vector_topics):
            sim = float(against_existing[row, k])
            if sim > best_sim:
                best_sim = sim
                best_topic = topic

        return best_topic, best_sim
