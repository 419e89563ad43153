from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any, Literal, Optional

from .log_context import get_request_id

AuditAction = Literal[
    "booking.created",
    "booking.cancelled",
    "booking.rescheduled",
    "booking.status_changed",
]
AuditInitiator = Literal["user", "system", "operator"]

_audit_logger = logging.getLogger("audit")
_audit_logger.setLevel(logging.INFO)
if not _audit_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    _audit_logger.addHandler(handler)
_audit_logger.propagate = False


def _to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.isoformat()
    if hasattr(value, "value"):
        return str(value.value)
    return str(value)


def emit_audit_log(
    *,
    action: AuditAction,
    initiator: AuditInitiator,
    booking_id: int,
    user_id: Optional[int],
    service_type: Optional[str],
    starts_at: Optional[datetime],
    duration_minutes: Optional[int],
    status_from: Optional[str],
    status_to: Optional[str],
    version: Optional[int],
    setup_total_fee: Optional[int] = None,
    message: Optional[str] = None,
    extra: Optional[dict[str, Any]] = None,
) -> None:
    """Emit one JSON line per booking mutation. Raises RuntimeError if logging fails."""
    payload: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": "info",
        "action": action,
        "initiator": initiator,
        "request_id": get_request_id(),
        "booking_id": booking_id,
        "user_id": user_id,
        "service_type": _to_str(service_type),
        "starts_at": _to_str(starts_at),
        "duration_minutes": duration_minutes,
        "status_from": _to_str(status_from),
        "status_to": _to_str(status_to),
        "version": version,
        "setup_total_fee": setup_total_fee,
    }
    if message is not None:
        payload["message"] = message
    if extra:
        payload.update({k: _to_str(v) if isinstance(v, datetime) else v for k, v in extra.items()})

    # Drop None values to keep the log compact.
    compact_payload = {k: v for k, v in payload.items() if v is not None}
    try:
        _audit_logger.info(json.dumps(compact_payload, ensure_ascii=True))
    except Exception as exc:
        raise RuntimeError("failed to emit audit log") from exc
