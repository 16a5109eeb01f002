"""Audit sink for sensitive events.

Writes are fire-and-forget: callers commit their primary change first, then
log the event. A failing audit write is rolled back and logged, never raised.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from authcore.models.audit import AuditEvent

logger = logging.getLogger(__name__)


def _dumps(values: Optional[Dict[str, Any]]) -> Optional[str]:
    if not values:
        return None
    return json.dumps(values, ensure_ascii=False, default=str)


def get_changes(
    old_values: Optional[Dict[str, Any]],
    new_values: Optional[Dict[str, Any]],
) -> Tuple[Optional[Dict[str, Any]], Optional[Dict[str, Any]]]:
    """Reduce two snapshots to the keys whose values differ."""
    if not old_values or not new_values:
        return old_values or None, new_values or None

    changed_old: Dict[str, Any] = {}
    changed_new: Dict[str, Any] = {}
    for key in set(old_values) | set(new_values):
        if old_values.get(key) != new_values.get(key):
            if key in old_values:
                changed_old[key] = old_values[key]
            if key in new_values:
                changed_new[key] = new_values[key]
    return changed_old or None, changed_new or None


class AuditService:
    """Persist immutable audit trail entries."""

    @staticmethod
    def log_event(
        db: Session,
        *,
        action: str,
        entity: str,
        entity_id: Optional[str] = None,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Optional[AuditEvent]:
        try:
            event = AuditEvent(
                action=action,
                entity=entity,
                entity_id=entity_id,
                user_id=user_id,
                user_email=user_email,
                old_values=_dumps(old_values),
                new_values=_dumps(new_values),
                ip_address=ip_address,
                user_agent=user_agent,
            )
            db.add(event)
            db.commit()
            return event
        except Exception:
            db.rollback()
            logger.exception("Failed to write audit event %s for %s %s", action, entity, entity_id)
            return None


audit_service = AuditService()
