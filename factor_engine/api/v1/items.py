"""/v1/operations/{operation_id}/items - package lines"""

import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from factor_engine.api.v1.schemas import ItemCreateRequest, ItemSchema
from factor_engine.infrastructure.database.session import get_db
from factor_engine.services.assembler import ItemAssembler

router = APIRouter()


@router.post("/operations/{operation_id}/items", response_model=ItemSchema, status_code=201)
def add_item(operation_id: uuid.UUID, request_body: ItemCreateRequest, db: Session = Depends(get_db)):
    """Add an installment to a draft or in-adjustment operation"""
    return ItemAssembler(db).add_item(
        operation_id,
        action_type=request_body.action_type,
        installment_id=request_body.installment_id,
        proposed_due_date=request_body.proposed_due_date,
    )


@router.delete("/operations/{operation_id}/items/{item_id}", status_code=204)
def remove_item(operation_id: uuid.UUID, item_id: uuid.UUID, db: Session = Depends(get_db)):
    ItemAssembler(db).remove_item(operation_id, item_id)
    return Response(status_code=204)
