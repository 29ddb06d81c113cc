from __future__ import annotations

from fastapi import APIRouter, Depends

from ..models.export import FeedbackRecord, FeedbackRequest, FeedbackResponse
from ..services import session as svc
from ..services.reconcile import utc_now_iso
from ..state import State, get_state

router = APIRouter(tags=["feedback"])


@router.post("/feedback", response_model=FeedbackResponse)
def v1_feedback(payload: FeedbackRequest, state: State = Depends(get_state)) -> FeedbackResponse:
    # Feedback is best-effort: a write failure is logged and the caller still sees success.
    now = utc_now_iso()
    record = FeedbackRecord(
        timestamp=payload.timestamp or now,
        original=payload.original,
        userChoices=payload.userChoices,
    )
    path = svc.save_feedback(state, record)
    return FeedbackResponse(filename=path.name if path else None, timestamp=now, saved=path is not None)
