"""
Analysis lifecycle against an in-memory database.

Covers:
  - extraction paths: fallback only, primary webhook, primary -> fallback, total failure
  - verification: freezing once costs exist, failed analyses
  - write-once workshop costs and the completed transition
  - report preconditions and the workshop summary
"""

from __future__ import annotations

import os
import uuid
from unittest.mock import AsyncMock, patch

import pytest

from repairmargin.models.analysis import Analysis, AuditLog, WorkshopCostRecord
from repairmargin.schemas.analysis import VerificationRequest, WorkshopCostCreate
from repairmargin.services import analysis_service, document_pipeline
from repairmargin.services.ai.common.providers.mock import MOCK_VALUATION
from repairmargin.services.ai.valuation_extract.service import record_from_payload
from repairmargin.services.errors import (
    ConflictError,
    ModelError,
    NotFoundError,
    ParsingError,
    ValidationError,
)

WEBHOOK_ENV = {"TEXT_EXTRACTION_WEBHOOK_URL": "https://workflows.example.test/webhook/extract"}

COSTS = WorkshopCostCreate(
    spare_parts_cost=1200.00,
    bodywork_hours=1.8,
    bodywork_hourly_cost=30.00,
    paint_hours=1.0,
    paint_hourly_cost=30.00,
    paint_consumables_cost=150.00,
)


def _verification_from(analysis):
    out = analysis_service.to_out(analysis)
    return VerificationRequest.model_validate(
        {"vehicle": out.vehicle.model_dump(), "financial": out.financial.model_dump()}
    )


async def _extracted(db, text):
    return await analysis_service.submit_document(db, document_text=text, document_name="puma.pdf")


async def _completed(db, text, costs=COSTS):
    analysis = await _extracted(db, text)
    analysis_service.apply_verification(db, str(analysis.id), _verification_from(analysis))
    analysis_service.create_workshop_costs(db, str(analysis.id), costs)
    db.commit()
    return analysis


class TestSubmitDocument:
    async def test_fallback_extraction(self, db_session, ford_puma_text):
        analysis = await _extracted(db_session, ford_puma_text)
        db_session.commit()

        assert analysis.status == "processing"
        assert analysis.extraction_source == "fallback"
        assert analysis.model_version == "mock:mock-v1"
        assert analysis.vehicle.license_plate == "6453MLT"
        assert float(analysis.financial.bodywork_hours) == 1.8
        assert float(analysis.financial.paint_hours) == 1.0
        actions = {row.action for row in db_session.query(AuditLog).all()}
        assert {"ANALYSIS_CREATED", "AI_VALUATION_EXTRACTED"} <= actions

    async def test_empty_text_creates_nothing(self, db_session):
        with pytest.raises(ValidationError):
            await analysis_service.submit_document(db_session, document_text="  ")
        assert db_session.query(Analysis).count() == 0

    @patch.dict(os.environ, WEBHOOK_ENV, clear=False)
    async def test_primary_path(self, db_session, ford_puma_text):
        record = record_from_payload(MOCK_VALUATION, model_version="webhook")
        with patch.object(document_pipeline, "extract_via_webhook", AsyncMock(return_value=record)) as primary:
            with patch.object(analysis_service, "extract", AsyncMock()) as fallback:
                analysis = await _extracted(db_session, ford_puma_text)

        primary.assert_awaited_once()
        fallback.assert_not_awaited()
        assert analysis.extraction_source == "primary"
        assert analysis.model_version == "webhook"

    @patch.dict(os.environ, WEBHOOK_ENV, clear=False)
    async def test_primary_failure_falls_back(self, db_session, ford_puma_text):
        failing = AsyncMock(side_effect=ModelError("Text extraction webhook failed"))
        with patch.object(document_pipeline, "extract_via_webhook", failing):
            analysis = await _extracted(db_session, ford_puma_text)

        failing.assert_awaited_once()
        assert analysis.status == "processing"
        assert analysis.extraction_source == "fallback"
        assert analysis.vehicle.license_plate == "6453MLT"

    async def test_total_failure_marks_failed(self, db_session, ford_puma_text):
        failing = AsyncMock(side_effect=ParsingError("Model output does not contain a valid JSON object"))
        with patch.object(analysis_service, "extract", failing):
            analysis = await _extracted(db_session, ford_puma_text)
        db_session.commit()

        assert analysis.status == "failed"
        assert analysis.error_message == "Model output does not contain a valid JSON object"
        assert analysis.vehicle is None
        row = db_session.query(AuditLog).filter(AuditLog.action == "STATUS_CHANGE").one()
        assert row.audit_meta == {"error_type": "ParsingError"}

    async def test_extraction_requires_processing(self, db_session, ford_puma_text):
        analysis = await _completed(db_session, ford_puma_text)
        with pytest.raises(ValidationError):
            await analysis_service.run_extraction(db_session, analysis, ford_puma_text)


class TestVerification:
    async def test_verification_overwrites_extracted_values(self, db_session, ford_puma_text):
        analysis = await _extracted(db_session, ford_puma_text)
        request = _verification_from(analysis)
        request.vehicle.license_plate = "7824GSL"
        request.financial.spare_parts_amount = 1800.00

        analysis_service.apply_verification(db_session, str(analysis.id), request)
        db_session.commit()

        assert analysis.verified_at is not None
        assert analysis.vehicle.license_plate == "7824GSL"
        assert float(analysis.financial.spare_parts_amount) == 1800.00
        assert db_session.query(AuditLog).filter(AuditLog.action == "ANALYSIS_VERIFIED").count() == 1

    async def test_can_be_repeated_before_costs(self, db_session, ford_puma_text):
        analysis = await _extracted(db_session, ford_puma_text)
        request = _verification_from(analysis)
        analysis_service.apply_verification(db_session, str(analysis.id), request)
        analysis_service.apply_verification(db_session, str(analysis.id), request)

    async def test_frozen_once_costs_exist(self, db_session, ford_puma_text):
        analysis = await _completed(db_session, ford_puma_text)
        with pytest.raises(ConflictError):
            analysis_service.apply_verification(db_session, str(analysis.id), _verification_from(analysis))

    async def test_failed_analysis_rejected(self, db_session, ford_puma_text):
        healthy = await _extracted(db_session, ford_puma_text)
        request = _verification_from(healthy)
        with patch.object(analysis_service, "extract", AsyncMock(side_effect=ModelError("down"))):
            failed = await _extracted(db_session, ford_puma_text)
        with pytest.raises(ValidationError):
            analysis_service.apply_verification(db_session, str(failed.id), request)

    def test_unknown_analysis(self, db_session):
        with pytest.raises(NotFoundError):
            analysis_service.get_analysis(db_session, str(uuid.uuid4()))
        with pytest.raises(NotFoundError):
            analysis_service.get_analysis(db_session, "not-a-uuid")


class TestWorkshopCosts:
    async def test_creation_completes_analysis(self, db_session, ford_puma_text):
        analysis = await _completed(db_session, ford_puma_text)
        assert analysis.status == "completed"
        assert analysis.workshop_costs is not None
        assert float(analysis.workshop_costs.spare_parts_cost) == 1200.00

    async def test_write_once(self, db_session, ford_puma_text):
        analysis = await _completed(db_session, ford_puma_text)
        with pytest.raises(ConflictError):
            analysis_service.create_workshop_costs(
                db_session, str(analysis.id), COSTS.model_copy(update={"spare_parts_cost": 10.00})
            )

        rows = db_session.query(WorkshopCostRecord).all()
        assert len(rows) == 1
        assert float(rows[0].spare_parts_cost) == 1200.00

    async def test_requires_verification(self, db_session, ford_puma_text):
        analysis = await _extracted(db_session, ford_puma_text)
        with pytest.raises(ValidationError):
            analysis_service.create_workshop_costs(db_session, str(analysis.id), COSTS)
        assert analysis.status == "processing"


class TestReports:
    async def test_report(self, db_session, ford_puma_text):
        analysis = await _completed(db_session, ford_puma_text)
        report = analysis_service.build_report(db_session, str(analysis.id))

        assert report.income == 2948.49
        assert report.cost == 1434.00
        assert report.margin_amount == 1514.49
        assert report.margin_percent == pytest.approx(51.36, abs=0.01)
        assert report.categories.spare_parts.unit_count == 20
        assert report.warnings == []

    async def test_report_needs_costs(self, db_session, ford_puma_text):
        analysis = await _extracted(db_session, ford_puma_text)
        with pytest.raises(ValidationError):
            analysis_service.build_report(db_session, str(analysis.id))

    def test_report_for_missing_analysis(self, db_session):
        with pytest.raises(ValidationError):
            analysis_service.build_report(db_session, str(uuid.uuid4()))

    async def test_summary_covers_completed_only(self, db_session, ford_puma_text):
        await _completed(db_session, ford_puma_text)
        await _completed(db_session, ford_puma_text, COSTS.model_copy(update={"spare_parts_cost": 1700.00}))
        await _extracted(db_session, ford_puma_text)
        db_session.commit()

        summary = analysis_service.workshop_summary(db_session)
        assert summary.analysis_count == 2
        assert summary.total_income == 5896.98
        assert summary.total_cost == 3368.00
        assert summary.total_margin == 2528.98
        assert summary.average_margin == 1264.49

    def test_empty_summary(self, db_session):
        summary = analysis_service.workshop_summary(db_session)
        assert summary.analysis_count == 0
        assert summary.total_margin == 0.0
