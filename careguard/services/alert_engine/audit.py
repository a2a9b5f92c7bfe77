"""
Audit trail for alert and caregiver-chain state transitions.

Recording is best-effort: an audit backend failure is logged and never
interrupts the transition that produced it.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from careguard.core.logging import log_audit

logger = logging.getLogger(__name__)


class AuditLog(ABC):
    """Append-only audit sink"""

    def record(
        self,
        actor: Optional[str],
        action: str,
        resource_id: str,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        try:
            self._write(actor, action, resource_id, metadata or {})
        except Exception as e:
            logger.warning(f"Audit write failed for {action} on {resource_id}: {type(e).__name__}")

    @abstractmethod
    def _write(self, actor: Optional[str], action: str, resource_id: str, metadata: Dict[str, Any]) -> None:
        ...


class LoggingAuditLog(AuditLog):
    """Structured [AUDIT] log entries"""

    def _write(self, actor: Optional[str], action: str, resource_id: str, metadata: Dict[str, Any]) -> None:
        log_audit(action, actor, {"resource_id": resource_id, **metadata})
