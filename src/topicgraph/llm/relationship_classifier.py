"""
Relationship Classifiers
========================
Pluggable oracles telling EdgeBuilder how a new topic relates to its nearest
neighbours.

Contract: ``classify(subject, candidates, scores=None)`` returns one
``Relation`` per candidate, same order and length. An implementation may fail
or produce garbage; callers treat anything but a well-formed list of the right
length as "no typed edges this round".

Two implementations:

  - LLMRelationshipClassifier: prompts a language model through an injected
    async ``complete(system_prompt, user_prompt) -> str`` callable and parses
    its JSON answer. No network code lives here.
  - SimilarityThresholdClassifier: deterministic fallback for environments
    without a model. Every candidate whose score clears the threshold becomes
    a SIBLING (undirected related_to edge), everything else UNRELATED.
"""

from __future__ import annotations

import json
import re
from enum import Enum
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence

from loguru import logger

from ..core.exceptions import ClassifierError


class Relation(str, Enum):
    """How a candidate relates to the subject topic."""

    PARENT = "PARENT"        # candidate is broader than the subject
    CHILD = "CHILD"          # candidate is narrower than the subject
    SIBLING = "SIBLING"      # related, same level
    UNRELATED = "UNRELATED"


class RelationshipClassifier(Protocol):
    async def classify(
        self,
        subject: str,
        candidates: Sequence[str],
        scores: Optional[Sequence[float]] = None,
    ) -> List[Relation]:
        ...


CompletionFn = Callable[[str, str], Awaitable[str]]


RELATIONSHIP_SYSTEM_PROMPT = """You organize short topic labels into a concept hierarchy.
Given a SUBJECT topic and a numbered list of CANDIDATE topics, decide for each
candidate how it relates to the subject:

- PARENT: the candidate is a broader concept that contains the subject
- CHILD: the candidate is a narrower concept contained in the subject
- SIBLING: closely related at the same level of generality
- UNRELATED: no meaningful relationship

Return JSON ONLY: an array with exactly one label per candidate, in the same
order, e.g. ["PARENT", "UNRELATED", "SIBLING"]."""


def build_user_prompt(subject: str, candidates: Sequence[str]) -> str:
    lines = [f"SUBJECT: {subject}", "", "CANDIDATES:"]
    lines.extend(f"{i + 1}. {label}" for i, label in enumerate(candidates))
    lines.append("")
    lines.append(f"Answer with a JSON array of {len(candidates)} labels.")
    return "\n".join(lines)


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


def parse_classifications(raw: str, expected: int) -> List[Relation]:
    """
    Parse a model answer into relations.

    Accepts a bare JSON array, an array inside a code fence, or an object with
    a ``classifications`` array.

    Raises:
        ClassifierError: On malformed JSON, unknown labels or wrong length.
    """
    if raw is None:
        raise ClassifierError("empty response")
    text = raw.strip()
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    try:
        payload: Any = json.loads(text)
    except json.JSONDecodeError:
        # Models sometimes wrap the array in prose
        start, end = text.find("["), text.rfind("]")
        if start < 0 or end <= start:
            raise ClassifierError("response is not JSON", {"response": text[:200]})
        try:
            payload = json.loads(text[start:end + 1])
        except json.JSONDecodeError as exc:
            raise ClassifierError(f"response is not JSON: {exc}", {"response": text[:200]}) from exc

    if isinstance(payload, dict):
        payload = payload.get("classifications")
    if not isinstance(payload, list):
        raise ClassifierError("response is not a list")
    if len(payload) != expected:
        raise ClassifierError(
            f"expected {expected} labels, got {len(payload)}",
            {"expected": expected, "actual": len(payload)},
        )

    relations: List[Relation] = []
    for value in payload:
        if not isinstance(value, str):
            raise ClassifierError(f"label {value!r} is not a string")
        try:
            relations.append(Relation(value.strip().upper()))
        except ValueError as exc:
            raise ClassifierError(f"unknown label {value!r}") from exc
    return relations


class LLMRelationshipClassifier:
    """Classifies relations by prompting a language model."""

    def __init__(self, complete: CompletionFn, system_prompt: str = RELATIONSHIP_SYSTEM_PROMPT):
        self._complete = complete
        self.system_prompt = system_prompt
        self.stats = {"calls": 0, "degraded": 0}

    async def classify(
        self,
        subject: str,
        candidates: Sequence[str],
        scores: Optional[Sequence[float]] = None,
    ) -> List[Relation]:
        if not candidates:
            return []
        self.stats["calls"] += 1
        try:
            raw = await self._complete(self.system_prompt, build_user_prompt(subject, candidates))
            return parse_classifications(raw, len(candidates))
        except ClassifierError as exc:
            self.stats["degraded"] += 1
            logger.warning(f"Relationship classifier degraded for '{subject}': {exc}")
            return []
        except Exception as exc:
            self.stats["degraded"] += 1
            logger.warning(f"Relationship classifier call failed for '{subject}': {exc}")
            return []


class SimilarityThresholdClassifier:
    """
    Deterministic fallback: related if similar enough, never hierarchical.

    At most ``max_edges`` candidates (in the given order, which is similarity
    descending) are labelled SIBLING.
    """

    def __init__(self, min_similarity: float = 0.6, max_edges: int = 5):
        self.min_similarity = min_similarity
        self.max_edges = max_edges

    async def classify(
        self,
        subject: str,
        candidates: Sequence[str],
        scores: Optional[Sequence[float]] = None,
    ) -> List[Relation]:
        if scores is None or len(scores) != len(candidates):
            return []
        relations: List[Relation] = []
        accepted = 0
        for score in scores:
            if score >= self.min_similarity and accepted < self.max_edges:
                relations.append(Relation.SIBLING)
                accepted += 1
            else:
                relations.append(Relation.UNRELATED)
        return relations


__all__ = [
    "Relation",
    "RelationshipClassifier",
    "CompletionFn",
    "RELATIONSHIP_SYSTEM_PROMPT",
    "build_user_prompt",
    "parse_classifications",
    "LLMRelationshipClassifier",
    "SimilarityThresholdClassifier",
]
