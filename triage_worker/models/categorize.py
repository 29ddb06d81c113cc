from __future__ import annotations

from enum import Enum
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Label(str, Enum):
    IMPORTANT = "important"
    NOISE = "noise"


class CategorizationResult(BaseModel):
    """Automatic judgment for one transcript. Kept verbatim for feedback."""

    model_config = ConfigDict(frozen=True)

    important: Tuple[str, ...] = ()
    noise: Tuple[str, ...] = ()
    uncertain: Tuple[str, ...] = ()

    def as_dict(self) -> Dict[str, List[str]]:
        return {
            "important": list(self.important),
            "noise": list(self.noise),
            "uncertain": list(self.uncertain),
        }

    def fragments(self) -> List[str]:
        return [*self.important, *self.noise, *self.uncertain]


class TranscribeResponse(BaseModel):
    session_id: str
    transcript: str
    important: List[str]
    noise: List[str]
    uncertain: List[str]
    timestamp: str
    source: str = Field("model", description="model|fallback")


class SessionResponse(BaseModel):
    session_id: str
    phase: str
    created_at: str
    transcript: Optional[str] = None
    result: Optional[CategorizationResult] = None
    error: Optional[str] = None
