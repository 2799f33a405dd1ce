"""
Settings for the Organic Schema subsystem.

Every threshold the learner, validator and resolver rely on lives here so
that deployments can tune them without code changes. Values are read from
the environment with the ``ORGANIC_`` prefix.
"""

import os
from typing import Optional, Tuple

from pydantic import BaseModel, Field, field_validator


class OrganicSettings(BaseModel):
    """Tunable constants and backend connection settings."""

    # Graph backend
    graph_backend: str = Field(default="sqlite", description="sqlite, sqlite:///path, neo4j://... or bolt://...")
    sqlite_path: str = Field(default="~/.organic-schema/graph.db")
    neo4j_user: Optional[str] = None
    neo4j_password: Optional[str] = None
    neo4j_database: Optional[str] = None

    # Pattern learning
    common_values_limit: int = Field(default=10, ge=1)
    confidence_saturation: int = Field(default=10, ge=1, description="Observations needed for confidence 1.0")
    trend_limit: int = Field(default=100, ge=1)
    trend_retain: int = Field(default=50, ge=1)
    usage_stats_limit: int = Field(default=1000, ge=1)
    usage_stats_retain: int = Field(default=500, ge=1)
    suggestion_threshold: float = Field(default=0.5, ge=0.0, le=1.0)
    max_attribute_suggestions: int = Field(default=10, ge=1)
    established_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    propagation_delay: float = Field(default=0.01, ge=0.0, description="Seconds between propagated writes")

    # Gentle validation
    validation_threshold: float = Field(default=0.3, ge=0.0, le=1.0)
    max_suggestions: int = Field(default=5, ge=1)
    length_tolerance: float = Field(default=0.5, ge=0.0)
    module_values_limit: int = Field(default=3, ge=1)
    feedback_cache_limit: int = Field(default=500, ge=1)
    feedback_cache_retain: int = Field(default=250, ge=1)
    name_markers: Tuple[str, ...] = ("name", "nome")

    # Implicit relations
    module_context_ttl: float = Field(default=300.0, gt=0.0)
    relation_time_window: float = Field(default=3600.0, ge=0.0, description="Seconds")
    common_attribute_threshold: float = Field(default=0.5, gt=0.0, le=1.0)
    default_entity_type: str = "DynamicEntity"

    @field_validator("name_markers", mode="before")
    @classmethod
    def split_markers(cls, v):
        if isinstance(v, str):
            return tuple(m.strip().lower() for m in v.split(",") if m.strip())
        return v

    @classmethod
    def from_env(cls, prefix: str = "ORGANIC_") -> "OrganicSettings":
        """
        Build settings from environment variables.

        ``ORGANIC_TREND_LIMIT=200`` sets ``trend_limit``; unset variables
        keep their defaults.
        """
        values = {}
        for name in cls.model_fields:
            raw = os.environ.get(f"{prefix}{name.upper()}")
            if raw is not None:
                values[name] = raw
        return cls(**values)
