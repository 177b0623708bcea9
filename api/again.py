"""
api/again.py

"Again" endpoint: re-answer an earlier message with another prompt and/or model.

Endpoints:
  - POST /messages/again: Clone the original message under the same tracking id, answer it
    with the chosen model and return the reply plus the next model suggestion.
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from core.bootstrap import Engine, get_engine
from core.reprocess import ReprocessRequest
from shared.errors import MessageNotFound, OwnershipFailure, ProviderFailure

logger = logging.getLogger(__name__)

router = APIRouter()


class AgainRequest(BaseModel):
    user_id: int = Field(..., description="User requesting the new answer")
    original_message_id: int = Field(..., description="Inbound message to answer again")
    model_id: Optional[int] = Field(None, description="Model to answer with; the CHAT default when omitted")
    prompt_id: Optional[str] = Field(None, description="Prompt topic to answer with")


@router.post("/messages/again")
def again(req: AgainRequest, engine: Engine = Depends(get_engine)) -> JSONResponse:
    """
    Reprocess a message.

    Returns HTTP 404 when the original message does not exist, 403 when it belongs to
    another user and 502 when the chosen model cannot answer.
    """
    request = ReprocessRequest(
        original_message_id=req.original_message_id,
        model_id=req.model_id,
        prompt_topic=req.prompt_id,
    )
    try:
        return JSONResponse(engine.reprocess.reprocess(req.user_id, request))
    except MessageNotFound as e:
        return JSONResponse({"success": False, "error": str(e)}, status_code=404)
    except OwnershipFailure as e:
        logger.warning(f"[again] Access denied for user {req.user_id} on message {req.original_message_id}")
        return JSONResponse({"success": False, "error": str(e)}, status_code=403)
    except ProviderFailure as e:
        return JSONResponse({"success": False, **e.to_dict()}, status_code=502)
