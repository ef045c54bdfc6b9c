from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..db import get_session
from ..schemas.api import OperationResponse
from ..schemas.operations import OperationResult
from ..services.assistant import FinancialAssistant
from ..services.factory import build_handlers, build_workflow_engine, get_intent_resolver
from ..services.intents import IntentResolver
from ..services.operations import OperationHandlers
from ..services.workflows import WorkflowEngine

SessionDep = Annotated[AsyncSession, Depends(get_session)]

_ERROR_STATUS = {
    "validation": status.HTTP_400_BAD_REQUEST,
    "not_found": status.HTTP_404_NOT_FOUND,
    "conflict": status.HTTP_409_CONFLICT,
    "transient": status.HTTP_503_SERVICE_UNAVAILABLE,
}


def get_handlers(session: SessionDep) -> OperationHandlers:
    return build_handlers(session)


HandlersDep = Annotated[OperationHandlers, Depends(get_handlers)]


def get_resolver() -> IntentResolver:
    try:
        return get_intent_resolver()
    except RuntimeError as exc:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc


def get_assistant(
    handlers: HandlersDep, resolver: Annotated[IntentResolver, Depends(get_resolver)]
) -> FinancialAssistant:
    return FinancialAssistant(resolver, handlers)


def get_workflow_engine(handlers: HandlersDep) -> WorkflowEngine:
    return build_workflow_engine(handlers)


AssistantDep = Annotated[FinancialAssistant, Depends(get_assistant)]
WorkflowEngineDep = Annotated[WorkflowEngine, Depends(get_workflow_engine)]


def to_response(result: OperationResult) -> OperationResponse:
    """Map a failed operation onto an HTTP error, otherwise return its payload."""
    if not result.success:
        status_code = _ERROR_STATUS.get(
            result.error_code or "", status.HTTP_500_INTERNAL_SERVER_ERROR
        )
        raise HTTPException(status_code=status_code, detail=result.message)
    return OperationResponse(success=True, message=result.message, data=result.data)
