from typing import Optional, Dict, Any, List
import uuid

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.models.audit_log import AuditLog


class AuditService:
    """
    Audit service for state changes that are not ledger balances.

    Rows are added to the caller's transaction; nothing here commits.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str,
        entity_type: str,
        entity_id: Optional[uuid.UUID] = None,
        user_id: Optional[uuid.UUID] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        description: Optional[str] = None,
    ) -> AuditLog:
        """
        Create an audit log entry.

        Args:
            action: The action performed (COD_SETTLED, INVOICE_VOIDED, ...)
            entity_type: Type of entity (ORDER, INVOICE)
            entity_id: ID of the affected entity
            user_id: ID of the actor
            old_values: State before the change
            new_values: State after the change
            description: Human-readable description
        """
        audit_log = AuditLog(
            action=action,
            entity_type=entity_type,
            entity_id=entity_id,
            user_id=user_id,
            old_values=old_values,
            new_values=new_values,
            description=description,
        )
        self.db.add(audit_log)
        await self.db.flush()
        return audit_log

    async def get_entity_logs(
        self,
        entity_type: str,
        entity_id: uuid.UUID,
        action: Optional[str] = None,
    ) -> List[AuditLog]:
        """Audit trail of one entity, oldest first."""
        stmt = (
            select(AuditLog)
            .where(AuditLog.entity_type == entity_type, AuditLog.entity_id == entity_id)
            .order_by(AuditLog.created_at, AuditLog.id)
        )
        if action:
            stmt = stmt.where(AuditLog.action == action)
        result = await self.db.execute(stmt)
        return list(result.scalars().all())
