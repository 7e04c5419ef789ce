"""
ClusterFeed Data Models
======================

Pydantic models shared by every pipeline stage. All models are frozen:
a cluster run builds new values at each stage instead of mutating the
previous one.
"""

from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)


class SourceSpec(BaseModel):
    """One raw line of a cluster's source list."""
    raw_line: str
    line_number: Optional[int] = None

    model_config = {"frozen": True}


class ResolvedSource(BaseModel):
    """A concrete fetch target derived from a SourceSpec."""
    url: str = Field(..., description="Absolute http(s) URL")
    label: Optional[str] = Field(default=None, description="Provenance tag surfaced in item titles")

    model_config = {"frozen": True}

    @field_validator("url")
    @classmethod
    def validate_scheme(cls, v):
        if not v.lower().startswith(("http://", "https://")):
            raise ValueError(f"source URL must use http(s): {v!r}")
        return v

    def __str__(self) -> str:
        if self.label:
            return f"{self.url} ({self.label})"
        return self.url


class FeedItem(BaseModel):
    """Normalized item shape every parsed feed produces."""
    title: Optional[str] = None
    link: Optional[str] = None
    pub_date: Optional[datetime] = None
    guid: Optional[str] = None
    content: Optional[str] = None
    summary: Optional[str] = None
    source_label: Optional[str] = None

    model_config = {"frozen": True}

    @field_validator("pub_date")
    @classmethod
    def ensure_utc(cls, v):
        """Naive datetimes are taken to be UTC."""
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @property
    def effective_date(self) -> datetime:
        """Sort key: undated items rank as the oldest possible item."""
        return self.pub_date or EPOCH

    @property
    def body(self) -> Optional[str]:
        """Item description text, preferring full content over summary."""
        return self.content or self.summary or None


class ParsedFeed(BaseModel):
    """Structured result of parsing one fetched document."""
    title: Optional[str] = None
    link: Optional[str] = None
    items: List[FeedItem] = Field(default_factory=list)

    model_config = {"frozen": True}


class ClusterResult(BaseModel):
    """Final merged artifact for one cluster."""
    title: str
    link: str
    description: str
    language: str = "en"
    items: List[FeedItem] = Field(default_factory=list)

    model_config = {"frozen": True}


class Cluster(BaseModel):
    """A named group of sources merged into one output feed."""
    name: str = Field(..., min_length=1)
    input_path: Path
    output_path: Path
    title_path: Optional[Path] = None

    model_config = {"frozen": True}

    def __str__(self) -> str:
        return f"Cluster({self.name})"
