"""
Relationship classifiers used to type the edges of new topics.
"""

from .relationship_classifier import (
    Relation,
    RelationshipClassifier,
    LLMRelationshipClassifier,
    SimilarityThresholdClassifier,
    parse_classifications,
)

__all__ = [
    "Relation",
    "RelationshipClassifier",
    "LLMRelationshipClassifier",
    "SimilarityThresholdClassifier",
    "parse_classifications",
]
