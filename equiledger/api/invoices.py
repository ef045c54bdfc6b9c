from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Query, status

from ..schemas.api import InvoiceCreateRequest, MarkPaidRequest, OperationResponse
from ..schemas.operations import InvoiceFilter
from .dependencies import HandlersDep, to_response

router = APIRouter()


@router.get("", response_model=OperationResponse)
async def list_invoices_endpoint(
    handlers: HandlersDep,
    user_id: UUID,
    invoice_status: Annotated[InvoiceFilter, Query(alias="status")] = InvoiceFilter.ALL,
    limit: Annotated[int, Query(ge=1, le=50)] = 10,
) -> OperationResponse:
    result = await handlers.list_invoices.execute(
        user_id, {"status": invoice_status.value, "limit": limit}
    )
    return to_response(result)


@router.post("", response_model=OperationResponse, status_code=status.HTTP_201_CREATED)
async def create_invoice_endpoint(
    payload: InvoiceCreateRequest, handlers: HandlersDep
) -> OperationResponse:
    result = await handlers.create_invoice.execute(
        payload.user_id, payload.model_dump(exclude={"user_id"})
    )
    return to_response(result)


@router.post("/{invoice_id}/mark-paid", response_model=OperationResponse)
async def mark_invoice_paid_endpoint(
    invoice_id: UUID, payload: MarkPaidRequest, handlers: HandlersDep
) -> OperationResponse:
    result = await handlers.mark_invoice_paid.execute(
        payload.user_id,
        {"invoice_id": invoice_id, "method": payload.method, "reference": payload.reference},
    )
    return to_response(result)
