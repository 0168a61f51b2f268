from dataclasses import dataclass
from typing import Any, Dict, Optional
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.clock import Clock
from ..models.audit_log import AuditLog

logger = logging.getLogger(__name__)

@dataclass(frozen=True)
class RequestContext:
    """Who is acting, and from where."""
    user_id: Optional[int]
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

class AuditLogger:
    def __init__(self, db: Session, clock: Clock):
        self.db = db
        self.clock = clock

    def record(
        self,
        context: RequestContext,
        action: str,
        resource_type: str,
        description: str,
        resource_id: Optional[int] = None,
        details: Optional[Dict[str, Any]] = None,
        successful: bool = True
    ) -> Optional[AuditLog]:
        """Append an audit entry.

        Runs after the audited operation has committed. A failure here is
        logged and rolled back but never raised, so it cannot undo or fail
        the operation being audited.
        """
        entry = AuditLog(
            user_id=context.user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            description=description,
            ip_address=context.ip_address,
            user_agent=context.user_agent,
            timestamp=self.clock.now(),
            successful=successful,
            details=details,
        )
        try:
            self.db.add(entry)
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception(
                f"Failed to write audit log: {action} {resource_type}:{resource_id}"
            )
            return None
        return entry
