"""Analysis endpoints: submit a document, verify, record costs, read margins."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from repairmargin.core.dependencies import get_db
from repairmargin.schemas.analysis import (
    AnalysisCreate,
    AnalysisOut,
    ProfitabilityReport,
    VerificationRequest,
    WorkshopCostCreate,
    WorkshopCostOut,
    WorkshopSummary,
)
from repairmargin.services import analysis_service

router = APIRouter()


@router.post("/analyses", response_model=AnalysisOut, status_code=status.HTTP_201_CREATED)
async def create_analysis(payload: AnalysisCreate, db: Session = Depends(get_db)):
    """Create an analysis from document text and run extraction.

    Extraction failures do not fail the request: the analysis is returned
    with ``status=failed`` and the error message.
    """
    analysis = await analysis_service.submit_document(
        db,
        document_text=payload.document_text,
        document_name=payload.document_name,
    )
    db.commit()
    db.refresh(analysis)
    return analysis_service.to_out(analysis)


@router.get("/analyses/summary", response_model=WorkshopSummary)
def get_summary(db: Session = Depends(get_db)):
    return analysis_service.workshop_summary(db)


@router.get("/analyses/{analysis_id}", response_model=AnalysisOut)
def get_analysis(analysis_id: str, db: Session = Depends(get_db)):
    return analysis_service.to_out(analysis_service.get_analysis(db, analysis_id))


@router.put("/analyses/{analysis_id}/verification", response_model=AnalysisOut)
def verify_analysis(analysis_id: str, payload: VerificationRequest, db: Session = Depends(get_db)):
    analysis = analysis_service.apply_verification(db, analysis_id, payload)
    db.commit()
    db.refresh(analysis)
    return analysis_service.to_out(analysis)


@router.post(
    "/analyses/{analysis_id}/workshop-costs",
    response_model=WorkshopCostOut,
    status_code=status.HTTP_201_CREATED,
)
def create_workshop_costs(analysis_id: str, payload: WorkshopCostCreate, db: Session = Depends(get_db)):
    costs = analysis_service.create_workshop_costs(db, analysis_id, payload)
    db.commit()
    db.refresh(costs)
    return WorkshopCostOut.model_validate(costs)


@router.get("/analyses/{analysis_id}/profitability", response_model=ProfitabilityReport)
def get_profitability(analysis_id: str, db: Session = Depends(get_db)):
    analysis_service.get_analysis(db, analysis_id)
    return analysis_service.build_report(db, analysis_id)
