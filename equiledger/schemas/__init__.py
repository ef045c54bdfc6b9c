from .api import (
    ChatReply,
    ChatRequest,
    ExpenseCreateRequest,
    InvoiceCreateRequest,
    InvoiceListQuery,
    MarkPaidRequest,
    OperationResponse,
    ReportRequest,
)
from .intents import Intent, IntentResult
from .operations import (
    CreateInvoiceParams,
    GenerateReportParams,
    InvoiceFilter,
    ListInvoicesParams,
    LogExpenseParams,
    MarkInvoicePaidParams,
    OperationResult,
    ReportType,
)
from .workflow import (
    CreateInvoiceStep,
    GenerateReportStep,
    LogExpenseStep,
    WorkflowRead,
    WorkflowRequest,
    WorkflowStep,
)

__all__ = [
    "ChatRequest",
    "ChatReply",
    "InvoiceCreateRequest",
    "InvoiceListQuery",
    "MarkPaidRequest",
    "ExpenseCreateRequest",
    "ReportRequest",
    "OperationResponse",
    "Intent",
    "IntentResult",
    "ReportType",
    "InvoiceFilter",
    "CreateInvoiceParams",
    "LogExpenseParams",
    "MarkInvoicePaidParams",
    "GenerateReportParams",
    "ListInvoicesParams",
    "OperationResult",
    "CreateInvoiceStep",
    "LogExpenseStep",
    "GenerateReportStep",
    "WorkflowStep",
    "WorkflowRequest",
    "WorkflowRead",
]
