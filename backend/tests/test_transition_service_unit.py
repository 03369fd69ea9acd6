"""
Unit tests for transition_service: status machine and PII redaction.

Covers:
  - _redact_pii: nested dict/list masking, case-insensitive keys
  - apply_transition: processing -> completed|failed, repeats, terminal states
  - create_audit_log: redaction of old/new values and metadata
"""

from __future__ import annotations

import os
from unittest.mock import patch

import pytest

# ── helpers ──────────────────────────────────────────────────────────


def _make_analysis(db, *, status="processing"):
    from repairmargin.models.analysis import Analysis

    analysis = Analysis(status=status, document_name="puma.pdf", warnings=[])
    db.add(analysis)
    db.flush()
    return analysis


def _audit_rows(db, action):
    from repairmargin.models.analysis import AuditLog

    return db.query(AuditLog).filter(AuditLog.action == action).all()


# ── PII Redaction ────────────────────────────────────────────────────


class TestRedactPII:
    def test_redacts_nested_dict(self):
        from repairmargin.services.transition_service import _redact_pii

        data = {"vehicle": {"license_plate": "6453MLT", "model": "PUMA"}}
        result = _redact_pii(data, {"license_plate"})
        assert result["vehicle"]["license_plate"] == "[REDACTED]"
        assert result["vehicle"]["model"] == "PUMA"

    def test_redacts_list_of_dicts(self):
        from repairmargin.services.transition_service import _redact_pii

        data = [{"vin": "WF02XXERK2PJ11480"}, {"vin": "VF1AB000000000001"}]
        result = _redact_pii(data, {"vin"})
        assert result == [{"vin": "[REDACTED]"}, {"vin": "[REDACTED]"}]

    def test_none_and_scalars(self):
        from repairmargin.services.transition_service import _redact_pii

        assert _redact_pii(None, {"vin"}) is None
        assert _redact_pii("hello", {"vin"}) == "hello"
        assert _redact_pii(42, {"vin"}) == 42

    def test_case_insensitive_keys(self):
        from repairmargin.services.transition_service import _redact_pii

        result = _redact_pii({"License_Plate": "6453MLT", "VIN": "X"}, {"license_plate", "vin"})
        assert result["License_Plate"] == "[REDACTED]"
        assert result["VIN"] == "[REDACTED]"


# ── Status machine ───────────────────────────────────────────────────


class TestApplyTransition:
    def test_processing_to_completed(self, db_session):
        from repairmargin.schemas.analysis import AnalysisStatus
        from repairmargin.services.transition_service import apply_transition

        analysis = _make_analysis(db_session)
        changed = apply_transition(db_session, analysis=analysis, new_status=AnalysisStatus.COMPLETED)
        db_session.flush()

        assert changed is True
        assert analysis.status == "completed"
        assert analysis.status_changed_at is not None
        assert analysis.error_message is None
        rows = _audit_rows(db_session, "STATUS_CHANGE")
        assert len(rows) == 1
        assert rows[0].old_value == {"status": "processing"}
        assert rows[0].new_value["status"] == "completed"

    def test_processing_to_failed_stores_message(self, db_session):
        from repairmargin.schemas.analysis import AnalysisStatus
        from repairmargin.services.transition_service import apply_transition

        analysis = _make_analysis(db_session)
        apply_transition(
            db_session,
            analysis=analysis,
            new_status=AnalysisStatus.FAILED,
            error_message="Text-generation call failed: timeout",
            metadata={"error_type": "ModelError"},
        )
        db_session.flush()

        assert analysis.status == "failed"
        assert analysis.error_message == "Text-generation call failed: timeout"
        row = _audit_rows(db_session, "STATUS_CHANGE")[0]
        assert row.audit_meta == {"error_type": "ModelError"}
        assert row.actor_type == "SYSTEM"

    def test_failed_without_message_gets_default(self, db_session):
        from repairmargin.schemas.analysis import AnalysisStatus
        from repairmargin.services.transition_service import apply_transition

        analysis = _make_analysis(db_session)
        apply_transition(db_session, analysis=analysis, new_status=AnalysisStatus.FAILED)
        assert analysis.error_message == "Extraction failed"

    def test_repeat_is_noop(self, db_session):
        from repairmargin.schemas.analysis import AnalysisStatus
        from repairmargin.services.transition_service import apply_transition

        analysis = _make_analysis(db_session, status="completed")
        assert apply_transition(db_session, analysis=analysis, new_status=AnalysisStatus.COMPLETED) is False
        db_session.flush()
        assert _audit_rows(db_session, "STATUS_CHANGE") == []

    @pytest.mark.parametrize(
        "current,target",
        [
            ("completed", "failed"),
            ("failed", "completed"),
            ("completed", "processing"),
            ("failed", "processing"),
        ],
    )
    def test_terminal_states(self, db_session, current, target):
        from repairmargin.schemas.analysis import AnalysisStatus
        from repairmargin.services.errors import ValidationError
        from repairmargin.services.transition_service import apply_transition

        analysis = _make_analysis(db_session, status=current)
        with pytest.raises(ValidationError):
            apply_transition(db_session, analysis=analysis, new_status=AnalysisStatus(target))
        assert analysis.status == current


# ── Audit log ────────────────────────────────────────────────────────


class TestCreateAuditLog:
    @patch.dict(os.environ, {"PII_REDACTION_ENABLED": "true"}, clear=False)
    def test_values_and_metadata_redacted(self, db_session):
        from repairmargin.services.transition_service import create_audit_log

        analysis = _make_analysis(db_session)
        create_audit_log(
            db_session,
            entity_type="analysis",
            entity_id=str(analysis.id),
            action="ANALYSIS_VERIFIED",
            old_value={"vehicle": {"license_plate": "6453MLT"}},
            new_value={"vehicle": {"license_plate": "7824GSL", "model": "PUMA"}},
            actor_type="OPERATOR",
            metadata={"vin": "WF02XXERK2PJ11480"},
        )
        db_session.flush()

        row = _audit_rows(db_session, "ANALYSIS_VERIFIED")[0]
        assert row.old_value["vehicle"]["license_plate"] == "[REDACTED]"
        assert row.new_value["vehicle"]["license_plate"] == "[REDACTED]"
        assert row.new_value["vehicle"]["model"] == "PUMA"
        assert row.audit_meta["vin"] == "[REDACTED]"

    @patch.dict(os.environ, {"PII_REDACTION_ENABLED": "false"}, clear=False)
    def test_redaction_disabled(self, db_session):
        from repairmargin.services.transition_service import create_audit_log

        analysis = _make_analysis(db_session)
        create_audit_log(
            db_session,
            entity_type="analysis",
            entity_id=str(analysis.id),
            action="ANALYSIS_VERIFIED",
            old_value=None,
            new_value={"license_plate": "6453MLT"},
            actor_type="OPERATOR",
        )
        db_session.flush()

        row = _audit_rows(db_session, "ANALYSIS_VERIFIED")[0]
        assert row.new_value == {"license_plate": "6453MLT"}
        assert row.old_value is None
