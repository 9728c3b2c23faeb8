"""Background worker that delivers queued purchase receipts"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict

from payhook.core.metrics import receipts_sent_counter
from payhook.db.session import SessionLocal
from payhook.db.task_queue import (
    dequeue_task, get_task_status, mark_task_completed, mark_task_failed,
    mark_task_processing, requeue_task
)
from payhook.services.receipt_service import RECEIPT_TASK_TYPE, send_receipt

logger = logging.getLogger(__name__)


def _is_due(task_id: str) -> bool:
    meta = get_task_status(task_id) or {}
    retry_after = meta.get("retry_after")
    if not retry_after:
        return True
    return datetime.fromisoformat(retry_after) <= datetime.now(timezone.utc)


def process_receipt_task(task: Dict[str, Any], session_factory=SessionLocal) -> str:
    """Handle one dequeued receipt job

    Returns:
        'deferred', 'completed', 'retrying' or 'failed'
    """
    task_id = task["task_id"]
    if not _is_due(task_id):
        requeue_task(task)
        return "deferred"

    mark_task_processing(task_id)
    transaction_id = task["payload"]["transaction_id"]

    db = session_factory()
    try:
        sent = send_receipt(transaction_id, db)
    except ValueError as e:
        # Missing transaction or address will not fix itself
        mark_task_failed(task_id, str(e), retry=False)
        receipts_sent_counter.labels(status="failed").inc()
        return "failed"
    except Exception as e:
        logger.error(f"Receipt task {task_id} crashed: {e}", exc_info=True)
        sent = False
    finally:
        db.close()

    if sent:
        mark_task_completed(task_id, {"transaction_id": transaction_id})
        receipts_sent_counter.labels(status="sent").inc()
        return "completed"

    new_task_id = mark_task_failed(task_id, "receipt delivery failed")
    receipts_sent_counter.labels(status="retrying" if new_task_id else "failed").inc()
    return "retrying" if new_task_id else "failed"


async def receipt_worker_task(poll_timeout: int = 5):
    """Consume receipt jobs until cancelled"""
    logger.info("Receipt worker started")
    while True:
        try:
            task = await dequeue_task(RECEIPT_TASK_TYPE, timeout=poll_timeout)
            if task is None:
                continue
            status = await asyncio.to_thread(process_receipt_task, task)
            if status == "deferred":
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            logger.info("Receipt worker stopped")
            raise
        except Exception as e:
            logger.error(f"Receipt worker error: {e}", exc_info=True)
            await asyncio.sleep(5)
