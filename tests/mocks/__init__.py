"""
Test doubles for TopicGraph
===========================
In-memory stand-ins for the collaborators the core takes by injection:
a scripted relationship classifier and a deterministic dimensionality
reducer, plus helpers to craft embeddings with known cosine similarities.

Usage:
    from tests.mocks import ScriptedClassifier, LinearReducer, vec
"""

from .fakes import (
    FailingClassifier,
    LinearReducer,
    ScriptedClassifier,
    page,
    rotated,
    vec,
)

__all__ = [
    "FailingClassifier",
    "LinearReducer",
    "ScriptedClassifier",
    "page",
    "rotated",
    "vec",
]
