from fastapi import APIRouter, status

from ..schemas.api import ExpenseCreateRequest, OperationResponse
from .dependencies import HandlersDep, to_response

router = APIRouter()


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
async def log_expense_endpoint(
    payload: ExpenseCreateRequest, handlers: HandlersDep
) -> OperationResponse:
    result = await handlers.log_expense.execute(
        payload.user_id, payload.model_dump(exclude={"user_id"}, exclude_none=True)
    )
    return to_response(result)
