import logging
import uuid
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from vidsum.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


class AuditService:
    @staticmethod
    async def log(
        db: AsyncSession,
        event_type: str,
        source: str,
        status: str,
        user_id: Optional[str] = None,
        reference_id: Optional[str] = None,
        details: Optional[str] = None
    ) -> Optional[AuditLog]:
        """
        Append an audit row. The billing action it describes has already
        happened, so a failure here is logged and does not propagate.
        """
        log_entry = AuditLog(
            id=str(uuid.uuid4()),
            user_id=user_id,
            event_type=event_type,
            source=source,
            status=status,
            reference_id=reference_id,
            details=details
        )
        try:
            db.add(log_entry)
            await db.commit()
            return log_entry
        except SQLAlchemyError as e:
            await db.rollback()
            logger.error("[AUDIT] failed to record %s/%s: %s", source, event_type, e)
            return None

audit_service = AuditService()
