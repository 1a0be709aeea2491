"""Dependency injection for FastAPI endpoints"""

from datetime import date

from fastapi import Request
from installment_gateway.config import Settings, settings
from installment_gateway.infrastructure.clients.ledger import LedgerClient


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_ledger_client() -> LedgerClient:
    """Provide Ledger webhook client instance"""
    return LedgerClient()


def get_settings() -> Settings:
    """Provide application settings (overridable in tests)"""
    return settings


def get_today() -> date:
    """Current date for past-start checks and overdue labels"""
    return date.today()
