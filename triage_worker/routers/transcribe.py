from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, Form, UploadFile

from ..errors import UploadRejected
from ..models.categorize import TranscribeResponse
from ..services import session as svc
from ..services.reconcile import utc_now_iso
from ..state import State, get_state

router = APIRouter(tags=["transcribe"])


@router.post("/transcribe", response_model=TranscribeResponse)
def v1_transcribe(
    audio: Optional[UploadFile] = File(None),
    format: Optional[str] = Form(None, description="Optional source format hint, e.g. webm|wav|mp3"),
    state: State = Depends(get_state),
) -> TranscribeResponse:
    if audio is None:
        raise UploadRejected(message="No audio file provided")
    session = svc.process_audio(
        state,
        audio.file,
        filename=audio.filename,
        content_type=audio.content_type,
        format_hint=format,
    )
    result = session.result
    return TranscribeResponse(
        session_id=session.token,
        transcript=session.transcript or "",
        important=list(result.important),
        noise=list(result.noise),
        uncertain=list(result.uncertain),
        timestamp=utc_now_iso(),
        source=session.source or "model",
    )
