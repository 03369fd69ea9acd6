import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy.orm import Session

from repairmargin.core.config import get_settings
from repairmargin.models.analysis import Analysis, AuditLog
from repairmargin.schemas.analysis import AnalysisStatus
from repairmargin.services.errors import ValidationError

logger = logging.getLogger(__name__)


ALLOWED_TRANSITIONS = {
    AnalysisStatus.PROCESSING: [AnalysisStatus.COMPLETED, AnalysisStatus.FAILED],
    AnalysisStatus.COMPLETED: [],
    AnalysisStatus.FAILED: [],
}

PII_REDACTION_FALLBACK_FIELDS = {
    "license_plate",
    "vin",
    "email",
    "phone",
}


def _redact_pii(value: Any, redact_keys: set[str]) -> Any:
    if value is None:
        return None
    if isinstance(value, dict):
        redacted = {}
        for key, item in value.items():
            if isinstance(key, str) and key.lower() in redact_keys:
                redacted[key] = "[REDACTED]"
            else:
                redacted[key] = _redact_pii(item, redact_keys)
        return redacted
    if isinstance(value, list):
        return [_redact_pii(item, redact_keys) for item in value]
    return value


def create_audit_log(
    db: Session,
    *,
    entity_type: str,
    entity_id: str,
    action: str,
    old_value: Optional[dict[str, Any]],
    new_value: Optional[dict[str, Any]],
    actor_type: str,
    actor_id: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    settings = get_settings()
    if settings.pii_redaction_enabled:
        configured = {item.lower() for item in settings.pii_redaction_fields}
        redact_keys = configured or set(PII_REDACTION_FALLBACK_FIELDS)
        old_value = _redact_pii(old_value, redact_keys)
        new_value = _redact_pii(new_value, redact_keys)
        if metadata is not None:
            metadata = _redact_pii(metadata, redact_keys)

    db.add(
        AuditLog(
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
            old_value=old_value,
            new_value=new_value,
            actor_type=actor_type,
            actor_id=actor_id,
            audit_meta=metadata,
        )
    )


def apply_transition(
    db: Session,
    *,
    analysis: Analysis,
    new_status: AnalysisStatus,
    actor_type: str = "SYSTEM",
    actor_id: Optional[str] = None,
    error_message: Optional[str] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> bool:
    """Move *analysis* to *new_status*; returns ``False`` for a repeated transition.

    ``completed`` and ``failed`` are terminal. A failure message is stored only
    when moving to ``failed``.
    """
    current = AnalysisStatus(analysis.status)

    if new_status == current:
        return False

    if new_status not in ALLOWED_TRANSITIONS.get(current, []):
        raise ValidationError(
            f"Invalid status transition: {current} -> {new_status}",
            details={"analysis_id": str(analysis.id)},
        )

    old_status = analysis.status
    analysis.status = new_status.value
    analysis.status_changed_at = datetime.now(timezone.utc)
    if new_status == AnalysisStatus.FAILED:
        analysis.error_message = error_message or "Extraction failed"

    logger.info("Analysis %s status %s -> %s", analysis.id, old_status, analysis.status)

    create_audit_log(
        db,
        entity_type="analysis",
        entity_id=str(analysis.id),
        action="STATUS_CHANGE",
        old_value={"status": old_status},
        new_value={"status": analysis.status, "error_message": analysis.error_message},
        actor_type=actor_type,
        actor_id=actor_id,
        metadata=metadata,
    )
    return True
