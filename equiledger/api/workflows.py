from fastapi import APIRouter

from ..schemas.workflow import WorkflowRead, WorkflowRequest
from .dependencies import WorkflowEngineDep

router = APIRouter()


@router.post("", response_model=WorkflowRead)
async def run_workflow_endpoint(
    payload: WorkflowRequest, engine: WorkflowEngineDep
) -> WorkflowRead:
    execution = await engine.execute(payload.user_id, payload.steps)
    return execution.to_read()
