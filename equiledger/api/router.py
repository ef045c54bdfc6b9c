from fastapi import APIRouter

from . import chat, expenses, invoices, reports, telegram, whatsapp, workflows

api_router = APIRouter()
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
api_router.include_router(invoices.router, prefix="/invoices", tags=["invoices"])
api_router.include_router(expenses.router, prefix="/expenses", tags=["expenses"])
api_router.include_router(reports.router, prefix="/reports", tags=["reports"])
api_router.include_router(workflows.router, prefix="/workflows", tags=["workflows"])
api_router.include_router(telegram.router, prefix="/telegram", tags=["telegram"])
api_router.include_router(whatsapp.router, prefix="/whatsapp", tags=["whatsapp"])
