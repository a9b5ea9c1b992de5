# Overview: Audit notifier contract and its database-backed implementation.

"""
Audit events are fire-and-forget relative to the ledger.

The engine calls notifier.record(...) only AFTER its unit of work has
committed. DatabaseAuditNotifier writes the AuditEvent in a separate
transaction and swallows (logs) every failure, so an audit problem can
never undo or fail a custody change.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from ..models import AuditEvent

logger = logging.getLogger(__name__)


# Actions
ASSIGN_ITEM = "ASSIGN_ITEM"
RETURN_ITEM = "RETURN_ITEM"
TRANSFER_WAREHOUSE = "TRANSFER_WAREHOUSE"
RECEIVE_ITEM = "RECEIVE_ITEM"
ADD_STOCK = "ADD_STOCK"
REVOKE_ACCESS = "REVOKE_ACCESS"
GRANT_ACCESS = "GRANT_ACCESS"
DEMOBILIZE = "DEMOBILIZE"
OFFBOARDING_TASK_UPDATE = "OFFBOARDING_TASK_UPDATE"
RECONCILE = "RECONCILE"

# Entity types
ENTITY_ITEM = "Item"
ENTITY_PEOPLE = "People"
ENTITY_WAREHOUSE = "Warehouse"
ENTITY_EMPLOYEE_ACCESS = "EmployeeAccess"
ENTITY_DEMOB_DOCUMENT = "DemobDocument"
ENTITY_OFFBOARDING_TASK = "OffboardingTask"

SYSTEM_ACTOR = "system"

# Column limits on audit_events
MAX_ENTITY_NAME = 200
MAX_PERFORMER = 100
MAX_EMAIL = 100
MAX_IP = 45
MAX_USER_AGENT = 255


def _truncate(value: Optional[str], limit: int) -> Optional[str]:
    if value is None:
        return None
    value = str(value)
    return value[:limit]


@dataclass(frozen=True)
class RequestMetadata:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    @classmethod
    def from_request(cls, request) -> "RequestMetadata":
        """Client IP from X-Forwarded-For (first hop) or the socket address."""
        forwarded = request.headers.get("X-Forwarded-For", "")
        ip = forwarded.split(",")[0].strip() if forwarded else request.remote_addr
        return cls(ip_address=ip or None, user_agent=request.headers.get("User-Agent"))


@dataclass(frozen=True)
class Actor:
    """Who triggered an operation, as written to the audit trail."""

    name: str = SYSTEM_ACTOR
    email: Optional[str] = None
    request_meta: Optional[RequestMetadata] = None


class AuditNotifier(Protocol):
    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        entity_name: Optional[str],
        performed_by: Optional[str],
        performed_by_email: Optional[str] = None,
        details: Optional[dict] = None,
        request_meta: Optional[RequestMetadata] = None,
    ) -> None:
        ...


class DatabaseAuditNotifier:
    """Persists AuditEvent rows; never raises into the caller."""

    def __init__(self, session):
        self.session = session

    def record(
        self,
        action: str,
        entity_type: str,
        entity_id: Any,
        entity_name: Optional[str],
        performed_by: Optional[str],
        performed_by_email: Optional[str] = None,
        details: Optional[dict] = None,
        request_meta: Optional[RequestMetadata] = None,
    ) -> None:
        meta = request_meta or RequestMetadata()
        try:
            event = AuditEvent(
                action=action,
                entity_type=entity_type,
                entity_id=None if entity_id is None else str(entity_id),
                entity_name=_truncate(entity_name, MAX_ENTITY_NAME),
                performed_by=_truncate(performed_by or SYSTEM_ACTOR, MAX_PERFORMER),
                performed_by_email=_truncate(performed_by_email, MAX_EMAIL),
                details=details,
                ip_address=_truncate(meta.ip_address, MAX_IP),
                user_agent=_truncate(meta.user_agent, MAX_USER_AGENT),
            )
            self.session.add(event)
            self.session.commit()
        except Exception:
            self.session.rollback()
            logger.warning(
                "Failed to record audit event %s for %s %s", action, entity_type, entity_id,
                exc_info=True,
            )


def list_audit_events(session, *, entity_type=None, entity_id=None, action=None, limit=100):
    query = session.query(AuditEvent)
    if entity_type:
        query = query.filter_by(entity_type=entity_type)
    if entity_id is not None:
        query = query.filter_by(entity_id=str(entity_id))
    if action:
        query = query.filter_by(action=action)
    return query.order_by(AuditEvent.created_at.desc(), AuditEvent.id.desc()).limit(limit).all()


def emit(notifier, action, entity_type, entity_id, entity_name, actor: Optional[Actor] = None, details=None) -> None:
    """Forward an event to any notifier; whatever it raises is logged and dropped."""
    actor = actor or Actor()
    try:
        notifier.record(
            action,
            entity_type,
            entity_id,
            entity_name,
            actor.name,
            actor.email,
            details,
            actor.request_meta,
        )
    except Exception:
        logger.warning("Audit notifier raised for %s %s %s", action, entity_type, entity_id, exc_info=True)
