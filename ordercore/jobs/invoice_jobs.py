"""
Final Invoice Retry Jobs

Drains the invoice_generation_tasks queue: every delivered order whose
final invoice could not be issued at delivery time is retried here until
it succeeds or runs out of attempts.
"""

import logging
from datetime import datetime, timezone
from typing import Dict

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ordercore.core.exceptions import (
    InvoiceNumberCollisionError,
    NotFoundError,
    StorageUnavailableError,
    TaxReconciliationError,
    ValidationError,
)
from ordercore.models.invoice import InvoiceTaskStatus
from ordercore.services.invoice_service import InvoiceService

logger = logging.getLogger(__name__)


async def drain_final_invoice_queue(db: AsyncSession, limit: int = 50) -> Dict[str, int]:
    """
    Try once to issue the final invoice of each pending task.

    create_final is idempotent, so a task whose invoice was already issued
    by another caller simply completes.
    """
    service = InvoiceService(db)
    order_ids = [task.order_id for task in await service.get_pending_tasks(limit=limit)]
    counts = {"processed": 0, "completed": 0, "still_pending": 0, "failed": 0}

    for order_id in order_ids:
        counts["processed"] += 1
        try:
            await service.create_final(order_id)
            counts["completed"] += 1
            continue
        except (TaxReconciliationError, InvoiceNumberCollisionError, NotFoundError, ValidationError) as e:
            await db.rollback()
            logger.critical(f"Final invoice for order {order_id} cannot be issued: {e.message}")
            task = await service.record_task_failure(order_id, e, fatal=True)
        except (SQLAlchemyError, StorageUnavailableError) as e:
            await db.rollback()
            task = await service.record_task_failure(order_id, e)

        if task.status == InvoiceTaskStatus.FAILED.value:
            counts["failed"] += 1
        else:
            counts["still_pending"] += 1

    return counts


async def retry_pending_final_invoices():
    """Scheduled entry point; runs in its own session."""
    from ordercore.database import get_db_session

    logger.info("Starting final invoice retry run...")
    start_time = datetime.now(timezone.utc)

    try:
        async with get_db_session() as session:
            counts = await drain_final_invoice_queue(session)
    except SQLAlchemyError as e:
        logger.error(f"Final invoice retry run failed: {e}")
        return {"processed": 0, "completed": 0, "still_pending": 0, "failed": 0, "error": str(e)}

    duration = (datetime.now(timezone.utc) - start_time).total_seconds()
    logger.info(
        f"Final invoice retry run finished in {duration:.1f}s: "
        f"{counts['processed']} processed, {counts['completed']} issued, "
        f"{counts['still_pending']} pending, {counts['failed']} failed"
    )
    return counts
