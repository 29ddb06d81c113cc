from __future__ import annotations

from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..models.categorize import SessionResponse
from ..models.export import ReconcileRequest, ReconcileResponse, SaveResponse
from ..services import session as svc
from ..state import State, get_state

router = APIRouter(tags=["sessions"])


@router.get("/sessions/{session_id}", response_model=SessionResponse)
def v1_session(session_id: str, state: State = Depends(get_state)) -> SessionResponse:
    s = state.sessions.get(session_id)
    return SessionResponse(
        session_id=s.token,
        phase=s.phase.value,
        created_at=s.created_at,
        transcript=s.transcript,
        result=s.result,
        error=s.error,
    )


@router.post("/sessions/{session_id}/reconcile", response_model=ReconcileResponse)
def v1_reconcile(session_id: str, payload: ReconcileRequest, state: State = Depends(get_state)) -> ReconcileResponse:
    out = svc.reconcile_session(
        state,
        session_id,
        payload.decisions,
        profile=payload.agentType,
        export=payload.export,
    )
    export = None
    if out.export_path is not None:
        export = SaveResponse(filename=out.export_path.name, path=str(out.export_path), timestamp=out.exported_at)
    return ReconcileResponse(
        session_id=session_id,
        approved=out.reconciliation.approved,
        feedback_saved=out.feedback_path is not None,
        feedback_filename=out.feedback_path.name if out.feedback_path else None,
        export=export,
    )


@router.delete("/sessions/{session_id}")
def v1_abandon(session_id: str, state: State = Depends(get_state)) -> Dict[str, Any]:
    s = svc.abandon(state, session_id)
    return {"ok": True, "session_id": session_id, "phase": s.phase.value}
