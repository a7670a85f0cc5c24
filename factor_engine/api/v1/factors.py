"""/v1/factors - factor master data"""

import uuid
from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from factor_engine.api.v1.schemas import FactorCreateRequest, FactorResponse, FactorUpdateRequest
from factor_engine.infrastructure.database.session import get_db
from factor_engine.services.registry import OperationRegistry

router = APIRouter()


@router.post("/factors", response_model=FactorResponse, status_code=201)
def create_factor(request_body: FactorCreateRequest, db: Session = Depends(get_db)):
    fields = request_body.model_dump()
    name = fields.pop("name")
    return OperationRegistry(db).create_factor(name, **fields)


@router.get("/factors", response_model=List[FactorResponse])
def list_factors(db: Session = Depends(get_db)):
    return OperationRegistry(db).list_factors()


@router.get("/factors/{factor_id}", response_model=FactorResponse)
def get_factor(factor_id: uuid.UUID, db: Session = Depends(get_db)):
    return OperationRegistry(db).get_factor(factor_id)


@router.patch("/factors/{factor_id}", response_model=FactorResponse)
def update_factor(factor_id: uuid.UUID, request_body: FactorUpdateRequest, db: Session = Depends(get_db)):
    """Only the fields present in the body are changed"""
    return OperationRegistry(db).update_factor(factor_id, **request_body.model_dump(exclude_unset=True))
