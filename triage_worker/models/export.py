from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .categorize import CategorizationResult, Label


class SaveRequest(BaseModel):
    content: List[str] = Field(default_factory=list)
    agentType: str = Field("default", description="meeting-notes|personal-reminder|action-items|summary")
    timestamp: Optional[str] = None


class SaveResponse(BaseModel):
    success: bool = True
    filename: str
    path: str
    timestamp: str


class FeedbackRecord(BaseModel):
    """Original categorization paired with the operator's choices."""

    model_config = ConfigDict(frozen=True)

    timestamp: str
    original: CategorizationResult
    userChoices: Dict[str, Label] = Field(default_factory=dict)


class FeedbackResponse(BaseModel):
    success: bool = True
    filename: Optional[str] = None
    timestamp: str
    saved: bool = True


class ReconcileRequest(BaseModel):
    decisions: Dict[str, str] = Field(default_factory=dict)
    agentType: str = "default"
    export: bool = True


class ReconcileResponse(BaseModel):
    session_id: str
    approved: List[str]
    feedback_saved: bool
    feedback_filename: Optional[str] = None
    export: Optional[SaveResponse] = None


class FeedbackRequest(BaseModel):
    timestamp: Optional[str] = None
    original: CategorizationResult
    userChoices: Dict[str, Label] = Field(default_factory=dict)
