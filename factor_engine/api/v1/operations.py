"""/v1/operations - lifecycle of factor operations"""

import logging
import uuid
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from factor_engine.api.dependencies import get_document_source, get_ledger_client, get_request_id
from factor_engine.api.v1.schemas import (
    CancelRequest,
    ConcludeRequest,
    ConcludeResponse,
    OperationCreateRequest,
    OperationDetailResponse,
    OperationResponse,
    OperationUpdateRequest,
    VersionResponse,
)
from factor_engine.config import settings
from factor_engine.domain.models import BundleSelector, OperationStatus
from factor_engine.infrastructure.clients.ledger import LedgerClient, build_settlement_event
from factor_engine.infrastructure.database.session import get_db
from factor_engine.infrastructure.export.bundle import DocumentBundleExporter, DocumentSource, bundle_filename
from factor_engine.services.registry import OperationRegistry
from factor_engine.services.settlement import SettlementPostingGenerator
from factor_engine.services.versions import VersionEngine

router = APIRouter()


@router.post("/operations", response_model=OperationResponse, status_code=201)
def create_operation(request_body: OperationCreateRequest, db: Session = Depends(get_db)):
    """Open a draft operation with a factor"""
    return OperationRegistry(db).create_operation(**request_body.model_dump())


@router.get("/operations", response_model=List[OperationResponse])
def list_operations(
    status: Optional[OperationStatus] = Query(None),
    factor_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None, description="Matches the operation reference"),
    limit: int = Query(settings.default_list_limit, ge=1, le=settings.max_list_limit),
    db: Session = Depends(get_db),
):
    return OperationRegistry(db).list_operations(status=status, factor_id=factor_id, search=search, limit=limit)


@router.get("/operations/{operation_id}", response_model=OperationDetailResponse)
def get_operation(operation_id: uuid.UUID, db: Session = Depends(get_db)):
    """Operation with factor, live items, versions, current responses and posting preview"""
    return OperationDetailResponse.model_validate(OperationRegistry(db).get_operation_detail(operation_id))


@router.patch("/operations/{operation_id}", response_model=OperationResponse)
def update_operation(operation_id: uuid.UUID, request_body: OperationUpdateRequest, db: Session = Depends(get_db)):
    return OperationRegistry(db).update_operation(operation_id, **request_body.model_dump(exclude_unset=True))


@router.post("/operations/{operation_id}/versions", response_model=VersionResponse, status_code=201)
def generate_version(operation_id: uuid.UUID, db: Session = Depends(get_db)):
    return VersionEngine(db).generate_version(operation_id)


@router.get("/operations/{operation_id}/versions", response_model=List[VersionResponse])
def list_versions(operation_id: uuid.UUID, db: Session = Depends(get_db)):
    return VersionEngine(db).list_versions(operation_id)


@router.get("/operations/{operation_id}/versions/{version_id}", response_model=VersionResponse)
def get_version(operation_id: uuid.UUID, version_id: uuid.UUID, db: Session = Depends(get_db)):
    return VersionEngine(db).get_version(operation_id, version_id)


@router.post("/operations/{operation_id}/send", response_model=OperationResponse)
def send_to_factor(operation_id: uuid.UUID, db: Session = Depends(get_db)):
    return OperationRegistry(db).send_to_factor(operation_id)


@router.post("/operations/{operation_id}/conclude", response_model=ConcludeResponse)
def conclude_operation(
    operation_id: uuid.UUID,
    background_tasks: BackgroundTasks,
    request: Request,
    request_body: Optional[ConcludeRequest] = None,
    db: Session = Depends(get_db),
    ledger_client: LedgerClient = Depends(get_ledger_client),
):
    """
    Settle the operation.

    Flow:
    1. Post discount (AR), buyback (AP) and per-category costs
    2. Move installment custody and mark the operation completed
    3. Commit everything in one transaction
    4. Send async webhook to ledger (skipped for a repeated conclude)
    """
    request_body = request_body or ConcludeRequest()
    result = SettlementPostingGenerator(db).conclude(
        operation_id,
        settlement_date=request_body.settlement_date,
        notes=request_body.notes,
    )

    if result.idempotent:
        logging.info(
            "Operation already completed; nothing posted",
            extra={"request_id": get_request_id(request), "operation_id": str(operation_id)},
        )
    elif settings.ledger_webhook_enabled:
        background_tasks.add_task(
            ledger_client.send_settlement_event,
            build_settlement_event(result.operation, result.postings),
        )

    return ConcludeResponse.model_validate(result)


@router.post("/operations/{operation_id}/cancel", response_model=OperationResponse)
def cancel_operation(operation_id: uuid.UUID, request_body: CancelRequest, db: Session = Depends(get_db)):
    return OperationRegistry(db).cancel_operation(operation_id, request_body.reason)


@router.get("/operations/{operation_id}/bundle")
def download_bundle(
    operation_id: uuid.UUID,
    selector: BundleSelector = Query(BundleSelector.ALL),
    db: Session = Depends(get_db),
    document_source: DocumentSource = Depends(get_document_source),
):
    """Zip with operation/version snapshots and the selected source documents"""
    exporter = DocumentBundleExporter(db, document_source)
    content = exporter.export(operation_id, selector)
    operation = OperationRegistry(db).get_operation(operation_id)
    return Response(
        content=content,
        media_type="application/zip",
        headers={
            "Content-Disposition": f'attachment; filename="{bundle_filename(operation.operation_number)}"',
            "Cache-Control": "no-store",
        },
    )
