from __future__ import annotations

from fastapi import APIRouter, Depends

from report_validation.api.deps import get_engine, require_token
from report_validation.core.schemas import BotResponse
from report_validation.services.workflow import ValidationWorkflowEngine

router = APIRouter(prefix="/api/v1/bots", tags=["bots"], dependencies=[Depends(require_token)])


@router.get("", response_model=BotResponse)
def list_bots_endpoint(engine: ValidationWorkflowEngine = Depends(get_engine)):
    bots = sorted(engine.bot_engine.bots, key=lambda bot: bot.priority)
    return BotResponse(items=bots)
