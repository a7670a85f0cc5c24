"""/v1/installments - eligibility provider lookups"""

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from factor_engine.api.v1.schemas import InstallmentSchema
from factor_engine.infrastructure.database.repositories import InstallmentRepository
from factor_engine.infrastructure.database.session import get_db

router = APIRouter()


@router.get("/installments/eligible", response_model=List[InstallmentSchema])
def list_eligible_installments(search: Optional[str] = Query(None), db: Session = Depends(get_db)):
    """Open installments in own custody, candidates for discount"""
    return InstallmentRepository(db).list_open_installments(search)


@router.get("/installments/with-factor", response_model=List[InstallmentSchema])
def list_installments_with_factor(db: Session = Depends(get_db)):
    """Installments in factor custody, candidates for buyback or due date change"""
    return InstallmentRepository(db).list_installments_in_factor_custody()
