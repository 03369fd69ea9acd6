"""Analysis lifecycle: extraction, reviewer verification, workshop costs, reports.

Functions here flush but never commit; the API layer owns the transaction.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from repairmargin.models.analysis import Analysis, FinancialRecord, VehicleRecord, WorkshopCostRecord
from repairmargin.schemas.analysis import (
    AnalysisOut,
    AnalysisStatus,
    ExtractionSource,
    FinancialData,
    ProfitabilityReport,
    VehicleData,
    VerificationRequest,
    WorkshopCostCreate,
    WorkshopCostOut,
    WorkshopSummary,
)
from repairmargin.services import document_pipeline
from repairmargin.services.ai.valuation_extract.contracts import ExtractedRecord
from repairmargin.services.ai.valuation_extract.service import extract
from repairmargin.services.errors import (
    AnalysisError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from repairmargin.services.profitability import calculate, summarize_reports
from repairmargin.services.transition_service import apply_transition, create_audit_log

logger = logging.getLogger(__name__)

OPERATOR = "OPERATOR"


def _parse_uuid(value: str) -> Optional[uuid.UUID]:
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def find_analysis(db: Session, analysis_id: str) -> Optional[Analysis]:
    parsed = _parse_uuid(analysis_id)
    if parsed is None:
        return None
    return db.get(Analysis, parsed)


def get_analysis(db: Session, analysis_id: str) -> Analysis:
    analysis = find_analysis(db, analysis_id)
    if analysis is None:
        raise NotFoundError("Analysis not found", details={"analysis_id": str(analysis_id)})
    return analysis


def create_analysis(db: Session, *, document_name: Optional[str] = None) -> Analysis:
    analysis = Analysis(
        status=AnalysisStatus.PROCESSING.value,
        document_name=document_name,
        warnings=[],
    )
    db.add(analysis)
    db.flush()
    create_audit_log(
        db,
        entity_type="analysis",
        entity_id=str(analysis.id),
        action="ANALYSIS_CREATED",
        old_value=None,
        new_value={"document_name": document_name},
        actor_type=OPERATOR,
    )
    return analysis


def _store_record(
    db: Session,
    analysis: Analysis,
    record: ExtractedRecord,
    source: ExtractionSource,
) -> None:
    vehicle = analysis.vehicle or VehicleRecord(analysis_id=analysis.id)
    for field, value in record.vehicle.model_dump().items():
        setattr(vehicle, field, value)

    financial = analysis.financial or FinancialRecord(analysis_id=analysis.id)
    for field, value in record.financial.model_dump(mode="json").items():
        setattr(financial, field, value)

    analysis.vehicle = vehicle
    analysis.financial = financial
    analysis.extraction_source = source.value
    analysis.model_version = record.model_version
    analysis.confidence = record.confidence
    analysis.warnings = list(record.warnings)
    db.flush()


async def run_extraction(db: Session, analysis: Analysis, document_text: str) -> Analysis:
    """Extract *document_text* into *analysis*, primary path first.

    The webhook path runs only when configured; any failure there falls back
    to the model-based extraction once. If that fails too the analysis moves
    to ``failed`` with the error message and is returned, not raised.
    """
    if analysis.status != AnalysisStatus.PROCESSING.value:
        raise ValidationError(
            f"Analysis is {analysis.status}; extraction requires processing",
            details={"analysis_id": str(analysis.id)},
        )

    record: Optional[ExtractedRecord] = None
    source = ExtractionSource.FALLBACK

    if document_pipeline.is_configured():
        try:
            record = await document_pipeline.extract_via_webhook(
                document_text,
                analysis_id=str(analysis.id),
                document_name=analysis.document_name,
            )
            source = ExtractionSource.PRIMARY
        except AnalysisError as exc:
            logger.warning(
                "Primary extraction failed for analysis %s, using fallback: %s",
                analysis.id,
                exc.message,
            )

    if record is None:
        try:
            record = await extract(document_text, db=db, analysis_id=str(analysis.id))
        except AnalysisError as exc:
            logger.warning("Extraction failed for analysis %s: %s", analysis.id, exc.message)
            apply_transition(
                db,
                analysis=analysis,
                new_status=AnalysisStatus.FAILED,
                error_message=exc.message,
                metadata={"error_type": type(exc).__name__},
            )
            db.flush()
            return analysis

    _store_record(db, analysis, record, source)
    logger.info(
        "Analysis %s extracted via %s (%d warnings)",
        analysis.id,
        source.value,
        len(record.warnings),
    )
    return analysis


async def submit_document(
    db: Session,
    *,
    document_text: str,
    document_name: Optional[str] = None,
) -> Analysis:
    """Create an analysis and run extraction on it.

    Empty text is rejected before anything is stored.
    """
    if not document_text or not document_text.strip():
        raise ValidationError("Document text is empty")
    analysis = create_analysis(db, document_name=document_name)
    return await run_extraction(db, analysis, document_text)


def apply_verification(db: Session, analysis_id: str, request: VerificationRequest) -> Analysis:
    """Commit reviewer-corrected vehicle and financial data.

    Allowed any number of times until a workshop cost record exists.
    """
    analysis = get_analysis(db, analysis_id)
    if analysis.status == AnalysisStatus.FAILED.value:
        raise ValidationError("A failed analysis cannot be verified")
    if analysis.workshop_costs is not None:
        raise ConflictError(
            "Verified data is frozen once workshop costs exist",
            details={"analysis_id": str(analysis.id)},
        )

    old_value = None
    if analysis.financial is not None:
        old_value = FinancialData.model_validate(analysis.financial).model_dump(mode="json")

    vehicle = analysis.vehicle or VehicleRecord(analysis_id=analysis.id)
    for field, value in request.vehicle.model_dump().items():
        setattr(vehicle, field, value)
    financial = analysis.financial or FinancialRecord(analysis_id=analysis.id)
    for field, value in request.financial.model_dump(mode="json").items():
        setattr(financial, field, value)

    analysis.vehicle = vehicle
    analysis.financial = financial
    analysis.verified_at = datetime.now(timezone.utc)
    db.flush()

    create_audit_log(
        db,
        entity_type="analysis",
        entity_id=str(analysis.id),
        action="ANALYSIS_VERIFIED",
        old_value={"financial": old_value},
        new_value=request.model_dump(mode="json"),
        actor_type=OPERATOR,
    )
    return analysis


def create_workshop_costs(db: Session, analysis_id: str, payload: WorkshopCostCreate) -> WorkshopCostRecord:
    """Store the write-once cost record and complete the analysis."""
    analysis = get_analysis(db, analysis_id)
    if analysis.status == AnalysisStatus.FAILED.value:
        raise ValidationError("Workshop costs cannot be added to a failed analysis")
    if analysis.verified_at is None or analysis.financial is None:
        raise ValidationError("The analysis must be verified before adding workshop costs")

    existing = db.execute(
        select(WorkshopCostRecord.id).where(WorkshopCostRecord.analysis_id == analysis.id)
    ).scalar_one_or_none()
    if existing is not None:
        raise ConflictError(
            "Workshop costs already exist for this analysis",
            details={"analysis_id": str(analysis.id)},
        )

    costs = WorkshopCostRecord(analysis=analysis, **payload.model_dump())
    db.add(costs)
    try:
        db.flush()
    except IntegrityError as exc:
        db.rollback()
        raise ConflictError(
            "Workshop costs already exist for this analysis",
            details={"analysis_id": str(analysis_id)},
        ) from exc

    apply_transition(db, analysis=analysis, new_status=AnalysisStatus.COMPLETED, actor_type=OPERATOR)
    create_audit_log(
        db,
        entity_type="analysis",
        entity_id=str(analysis.id),
        action="WORKSHOP_COSTS_CREATED",
        old_value=None,
        new_value=payload.model_dump(mode="json"),
        actor_type=OPERATOR,
    )
    db.flush()
    return costs


def build_report(db: Session, analysis_id: str) -> ProfitabilityReport:
    """Recompute the profitability report of a completed analysis."""
    analysis = find_analysis(db, analysis_id)
    if analysis is None:
        raise ValidationError("Analysis record is missing")
    if analysis.status == AnalysisStatus.FAILED.value:
        raise ValidationError("No report exists for a failed analysis")
    if analysis.vehicle is None:
        raise ValidationError("Vehicle record is missing")
    if analysis.financial is None:
        raise ValidationError("Financial record is missing")
    if analysis.workshop_costs is None:
        raise ValidationError("Workshop cost record is missing")
    return calculate(analysis.financial, analysis.workshop_costs)


def workshop_summary(db: Session) -> WorkshopSummary:
    """Aggregate the reports of every completed analysis."""
    analyses = db.execute(
        select(Analysis)
        .where(Analysis.status == AnalysisStatus.COMPLETED.value)
        .order_by(Analysis.created_at)
    ).scalars()

    reports = []
    for analysis in analyses:
        try:
            reports.append(build_report(db, str(analysis.id)))
        except ValidationError as exc:
            logger.warning("Skipping analysis %s in summary: %s", analysis.id, exc.message)
    return summarize_reports(reports)


def to_out(analysis: Analysis) -> AnalysisOut:
    return AnalysisOut(
        id=str(analysis.id),
        status=AnalysisStatus(analysis.status),
        error_message=analysis.error_message,
        document_name=analysis.document_name,
        extraction_source=analysis.extraction_source,
        model_version=analysis.model_version,
        confidence=analysis.confidence,
        warnings=list(analysis.warnings or []),
        verified_at=analysis.verified_at,
        created_at=analysis.created_at,
        vehicle=VehicleData.model_validate(analysis.vehicle) if analysis.vehicle else None,
        financial=FinancialData.model_validate(analysis.financial) if analysis.financial else None,
        workshop_costs=(
            WorkshopCostOut.model_validate(analysis.workshop_costs) if analysis.workshop_costs else None
        ),
    )
