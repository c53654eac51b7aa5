"""Audit trail sink.

Audit persistence lives outside the payroll core; services only write
events to a sink. The default sink emits structured log records.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol
from uuid import UUID


class AuditSink(Protocol):
    """Write-only destination for audit events."""

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None: ...


class LoggingAuditSink:
    """Audit sink backed by the ``payroll_core.audit`` logger."""

    def __init__(self, logger: logging.Logger | None = None):
        self.logger = logger or logging.getLogger("payroll_core.audit")

    def record(
        self,
        entity_type: str,
        entity_id: UUID,
        action: str,
        actor_id: UUID | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        self.logger.info(
            "%s %s %s by %s",
            entity_type,
            entity_id,
            action,
            actor_id or "system",
            extra={
                "audit": {
                    "entity_type": entity_type,
                    "entity_id": str(entity_id),
                    "action": action,
                    "actor_id": str(actor_id) if actor_id else None,
                    "details": details or {},
                }
            },
        )
