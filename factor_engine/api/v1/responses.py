"""POST /v1/operations/{operation_id}/responses - factor determinations"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from factor_engine.api.v1.schemas import ApplyResponsesRequest, OperationResponse
from factor_engine.domain.models import ItemResponse
from factor_engine.infrastructure.database.session import get_db
from factor_engine.services.reconciler import ResponseReconciler

router = APIRouter()


@router.post("/operations/{operation_id}/responses", response_model=OperationResponse)
def apply_responses(operation_id: uuid.UUID, request_body: ApplyResponsesRequest, db: Session = Depends(get_db)):
    """
    Apply the factor's answer for every item of the sent version.

    The resulting status is sent_to_factor when every item is accepted and
    in_adjustment otherwise.
    """
    item_responses = [ItemResponse(**response.model_dump()) for response in request_body.responses]
    return ResponseReconciler(db).apply_responses(operation_id, request_body.version_id, item_responses)
