"""
api/models.py

Model catalog endpoints.

Endpoints:
  - GET /models/eligible: Selectable models for a capability, best first, plus the predicted
    next model after `current_model_id`.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from core.bootstrap import Engine, get_engine
from core.model_selection import eligible_models, predicted_next
from shared.models import Capability

router = APIRouter()


@router.get("/models/eligible")
def list_eligible_models(
    tag: str = "CHAT",
    user_id: int = 0,
    current_model_id: Optional[int] = None,
    engine: Engine = Depends(get_engine),
) -> JSONResponse:
    try:
        capability = Capability(tag.upper())
    except ValueError:
        return JSONResponse({"success": False, "error": f"Unknown capability tag: {tag}"}, status_code=400)

    models = eligible_models(engine.binder, capability, user_id)
    suggestion = predicted_next(models, current_model_id)
    return JSONResponse({
        "success": True,
        "tag": capability.value,
        "eligible": [m.to_dict() for m in models],
        "predicted_next": suggestion.to_dict() if suggestion else None,
    })
