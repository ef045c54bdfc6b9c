from fastapi import APIRouter

from ..schemas.api import OperationResponse, ReportRequest
from .dependencies import HandlersDep, to_response

router = APIRouter()


@router.post("", response_model=OperationResponse)
async def generate_report_endpoint(
    payload: ReportRequest, handlers: HandlersDep
) -> OperationResponse:
    result = await handlers.generate_report.execute(
        payload.user_id,
        {"period": payload.period.value, "report_type": payload.report_type.value},
    )
    return to_response(result)
