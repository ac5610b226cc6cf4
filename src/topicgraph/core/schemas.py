"""
Ingestion Schemas
=================
Pydantic models validating what the extraction collaborator hands us.
"""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class PageResult(BaseModel):
    """One extracted page: summary, topic labels and their embeddings."""

    title: str = Field(..., max_length=2_000, description="Short page title")
    summary: str = Field(default="", max_length=100_000, description="Page summary text")
    topics: List[str] = Field(..., min_length=1, description="Topic labels, most specific first")
    link: str = Field(..., min_length=1, max_length=8_192, description="Canonical page URL")
    topic_embeddings: List[List[float]] = Field(
        ...,
        description="One embedding per topic label, same order",
    )
    content_embedding: Optional[List[float]] = Field(
        default=None,
        description="Embedding of the summary used for item search",
    )

    @field_validator("topics")
    @classmethod
    def validate_topics(cls, v: List[str]) -> List[str]:
        """Strip labels and reject blanks."""
        cleaned = [label.strip() for label in v]
        if any(not label for label in cleaned):
            raise ValueError("Topic labels cannot be empty or whitespace only")
        return cleaned

    @field_validator("link")
    @classmethod
    def validate_link(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Link cannot be empty or whitespace only")
        return v.strip()

    @model_validator(mode="after")
    def check_embeddings(self) -> "PageResult":
        if len(self.topic_embeddings) != len(self.topics):
            raise ValueError(
                f"Expected {len(self.topics)} topic embeddings, got {len(self.topic_embeddings)}"
            )
        dims = {len(e) for e in self.topic_embeddings}
        if self.content_embedding is not None:
            dims.add(len(self.content_embedding))
        if 0 in dims:
            raise ValueError("Embeddings cannot be empty")
        if len(dims) > 1:
            raise ValueError(f"Embeddings have inconsistent dimensionality: {sorted(dims)}")
        return self

    @property
    def dimension(self) -> int:
        return len(self.topic_embeddings[0])
