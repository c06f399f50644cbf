"""Audit trail for ledger-affecting and administrative actions."""

from typing import Any

from toptake.core.logging import current_request_id, get_logger
from toptake.models.audit_log import AuditLog

log = get_logger(__name__)


async def log_event(
    user_id: str | None,
    event_type: str,
    entity_type: str,
    entity_id: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Persist one audit row, tagged with the current request id so it can be matched to request logs."""
    entry = AuditLog(
        user_id=user_id,
        event_type=event_type,
        entity_type=entity_type,
        entity_id=entity_id,
        request_id=current_request_id(),
        metadata=metadata or {},
    )
    await entry.insert()
    log.debug("audit_event", event_type=event_type, entity_type=entity_type, entity_id=entity_id)
    return entry
