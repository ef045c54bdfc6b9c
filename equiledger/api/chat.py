from fastapi import APIRouter

from ..schemas.api import ChatReply, ChatRequest
from .dependencies import AssistantDep

router = APIRouter()


@router.post("", response_model=ChatReply)
async def chat_endpoint(payload: ChatRequest, assistant: AssistantDep) -> ChatReply:
    return await assistant.handle_message(payload.user_id, payload.message)
