"""Audit event sinks."""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID

audit_logger = logging.getLogger("aquabill.audit")


class AuditSink(Protocol):
    """Receives domain events emitted by the billing core."""

    async def log_event(
        self,
        entity_type: str,
        entity_id: UUID | str | None,
        event: str,
        payload: dict[str, Any] | None = None,
    ) -> None: ...


class LoggingAuditSink:
    """Writes audit events as structured records to the ``aquabill.audit`` logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self._logger = logger or audit_logger

    async def log_event(
        self,
        entity_type: str,
        entity_id: UUID | str | None,
        event: str,
        payload: dict[str, Any] | None = None,
    ) -> None:
        self._logger.info(
            "%s.%s id=%s",
            entity_type,
            event,
            entity_id,
            extra={
                "audit_entity_type": entity_type,
                "audit_entity_id": str(entity_id) if entity_id else None,
                "audit_event": event,
                "audit_payload": payload or {},
            },
        )
