"""Dependency injection for FastAPI endpoints"""

from fastapi import Request

from factor_engine.infrastructure.clients.ledger import LedgerClient
from factor_engine.infrastructure.export.bundle import DocumentSource, NoDocumentSource


def get_request_id(request: Request) -> str:
    """Extract request ID from request state"""
    return getattr(request.state, "request_id", "unknown")


def get_ledger_client() -> LedgerClient:
    """Provide Ledger webhook client instance"""
    return LedgerClient()


def get_document_source() -> DocumentSource:
    """Provide the source of supporting documents for bundle export"""
    return NoDocumentSource()
