"""Pydantic models for canonical recipe records."""
from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class QAStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    FLAGGED = "flagged"
    QUARANTINED = "quarantined"


class Recipe(BaseModel):
    """A recipe as stored in the Recipe Store, keyed by its normalised URL."""

    id: Optional[int] = None
    url: str
    name: Optional[str] = None
    description: Optional[str] = None
    image: Optional[str] = None
    recipe_ingredients: List[str] = Field(default_factory=list)
    recipe_instructions: List[str] = Field(default_factory=list)
    prep_time: Optional[str] = None
    cook_time: Optional[str] = None
    total_time: Optional[str] = None
    recipe_yield: Optional[str] = None
    recipe_category: Optional[str] = None
    recipe_cuisine: Optional[str] = None
    nutrition: Optional[Dict[str, Any]] = None
    qa_status: QAStatus = QAStatus.PENDING
    quality_score: int = Field(default=0, ge=0, le=100)
    audit_log: List[str] = Field(default_factory=list)
    last_audited_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @property
    def is_visible(self) -> bool:
        """Quarantined recipes are hidden from end consumers."""
        return self.qa_status != QAStatus.QUARANTINED
