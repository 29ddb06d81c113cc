from __future__ import annotations

from fastapi import APIRouter, Depends

from ..models.export import SaveRequest, SaveResponse
from ..services import session as svc
from ..services.reconcile import utc_iso
from ..state import State, get_state

router = APIRouter(tags=["export"])


@router.post("/save", response_model=SaveResponse)
def v1_save(payload: SaveRequest, state: State = Depends(get_state)) -> SaveResponse:
    path, doc = svc.export_content(state, payload.content, payload.agentType)
    return SaveResponse(filename=path.name, path=str(path), timestamp=utc_iso(doc.generated_at))
