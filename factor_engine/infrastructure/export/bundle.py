"""Zip bundle of an operation's snapshots and the source documents of its installments"""

import io
import json
import logging
import re
import uuid
import zipfile
from dataclasses import dataclass
from typing import Iterable, List, Optional, Protocol

from sqlalchemy.orm import Session

from factor_engine.domain.models import BundleSelector
from factor_engine.infrastructure.database.repositories import OperationRepository, VersionRepository
from factor_engine.utils.date_utils import to_iso

logger = logging.getLogger(__name__)

README_TEXT = "No source documents were found for the installments of this operation.\n"


@dataclass
class SourceDocument:
    """Documents backing one receivable title (e.g. the invoice XML and its printable PDF)"""

    base_name: str
    doc_a: Optional[bytes] = None
    doc_a_extension: str = "xml"
    doc_b: Optional[bytes] = None
    doc_b_extension: str = "pdf"


class DocumentSource(Protocol):
    def documents_for(self, installment_ids: List[uuid.UUID]) -> Iterable[SourceDocument]:
        ...


class NoDocumentSource:
    """Default source: the engine stores no documents itself"""

    def documents_for(self, installment_ids: List[uuid.UUID]) -> Iterable[SourceDocument]:
        return []


def sanitize_name_part(value: str) -> str:
    return re.sub(r"[^\w\-]+", "_", value.strip())


def bundle_filename(operation_number: int) -> str:
    return f"factor_operation_{operation_number}.zip"


def _version_payload(version) -> dict:
    return {
        "version_id": str(version.id),
        "version_number": version.version_number,
        "source_status": version.source_status,
        "total_items": version.total_items,
        "gross_amount_cents": version.gross_amount_cents,
        "costs_amount_cents": version.costs_amount_cents,
        "net_amount_cents": version.net_amount_cents,
        "sent_at": to_iso(version.sent_at),
        "snapshot": version.snapshot,
        "items": [
            {
                "operation_item_id": str(item.operation_item_id),
                "line_no": item.line_no,
                "action_type": item.action_type,
                "installment_id": str(item.installment_id),
                "title_number": item.title_number_snapshot,
                "installment_number": item.installment_number_snapshot,
                "due_date": to_iso(item.due_date_snapshot),
                "amount_cents": item.amount_snapshot_cents,
                "proposed_due_date": to_iso(item.proposed_due_date),
                "status": item.status,
            }
            for item in version.items
        ],
    }


def _operation_payload(operation) -> dict:
    return {
        "operation_id": str(operation.id),
        "operation_number": operation.operation_number,
        "factor_id": str(operation.factor_id),
        "reference": operation.reference,
        "status": operation.status,
        "issue_date": to_iso(operation.issue_date),
        "expected_settlement_date": to_iso(operation.expected_settlement_date),
        "settlement_date": to_iso(operation.settlement_date),
        "version_counter": operation.version_counter,
        "current_version_id": str(operation.current_version_id) if operation.current_version_id else None,
        "gross_amount_cents": operation.gross_amount_cents,
        "costs_amount_cents": operation.costs_amount_cents,
        "net_amount_cents": operation.net_amount_cents,
        "items": [
            {
                "item_id": str(item.id),
                "line_no": item.line_no,
                "action_type": item.action_type,
                "installment_id": str(item.installment_id),
                "title_number": item.title_number_snapshot,
                "installment_number": item.installment_number_snapshot,
                "amount_cents": item.amount_snapshot_cents,
                "final_amount_cents": item.final_amount_cents,
                "final_due_date": to_iso(item.final_due_date),
                "status": item.status,
            }
            for item in operation.live_items
        ],
    }


class DocumentBundleExporter:
    """Read-only export; runs outside any mutation transaction"""

    def __init__(self, db: Session, source: Optional[DocumentSource] = None):
        self.operations = OperationRepository(db)
        self.versions = VersionRepository(db)
        self.source = source or NoDocumentSource()

    def export(self, operation_id: uuid.UUID, selector: BundleSelector = BundleSelector.ALL) -> bytes:
        """
        Build the zip archive for an operation.

        Contents:
        - operation_<n>_snapshot.json with the operation and its live items
        - version_<k>.json for every version, oldest first
        - source documents selected by `selector` (doc A, doc B or both)
        - README.txt when the source yields no documents
        """
        selector = BundleSelector(selector)
        operation = self.operations.get_operation(operation_id)
        versions = self.versions.list_versions(operation.id)
        installment_ids = list(dict.fromkeys(item.installment_id for item in operation.live_items))
        documents = list(self.source.documents_for(installment_ids)) if installment_ids else []

        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            archive.writestr(
                f"operation_{operation.operation_number}_snapshot.json",
                json.dumps(_operation_payload(operation), indent=2),
            )
            for version in versions:
                archive.writestr(
                    f"version_{version.version_number}.json",
                    json.dumps(_version_payload(version), indent=2),
                )

            written = 0
            for document in documents:
                base_name = sanitize_name_part(document.base_name)
                if document.doc_a and selector in (BundleSelector.ALL, BundleSelector.SOURCE_DOCS_A):
                    archive.writestr(f"{base_name}.{document.doc_a_extension}", document.doc_a)
                    written += 1
                if document.doc_b and selector in (BundleSelector.ALL, BundleSelector.SOURCE_DOCS_B):
                    archive.writestr(f"{base_name}.{document.doc_b_extension}", document.doc_b)
                    written += 1

            if not documents:
                archive.writestr("README.txt", README_TEXT)

        logger.info(
            "Bundle exported",
            extra={
                "operation_id": str(operation.id),
                "selector": selector.value,
                "versions": len(versions),
                "documents": written,
            },
        )
        return buffer.getvalue()
