"""Redis-based task queue for fire-and-forget background jobs

Jobs live in a Redis list per task type (``task:queue:<type>``) with a metadata
hash per job (``task:meta:<id>``). Failed jobs are re-enqueued as new jobs
until ``max_retries`` is reached.
"""
import json
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

from payhook.db.redis import get_redis_client, get_async_redis_client

logger = logging.getLogger(__name__)

QUEUE_KEY_PREFIX = "task:queue:"
META_KEY_PREFIX = "task:meta:"
PROCESSING_SET_KEY = "task:processing"

# Metadata for finished jobs is kept for a day
TASK_META_TTL = 24 * 60 * 60


def enqueue_task(
    task_type: str,
    payload: Dict[str, Any],
    retry_count: int = 0,
    max_retries: int = 3
) -> str:
    """Enqueue a task to the Redis queue

    Args:
        task_type: Type of task (e.g., 'send_receipt')
        payload: JSON-serializable task payload
        retry_count: Current retry attempt (0 for new tasks)
        max_retries: Maximum number of automatic retries

    Returns:
        task_id: Unique task identifier
    """
    task_id = str(uuid.uuid4())
    created_at = datetime.now(timezone.utc).isoformat()

    task_data = {
        "task_id": task_id,
        "task_type": task_type,
        "payload": payload,
        "retry_count": retry_count,
        "max_retries": max_retries,
        "created_at": created_at,
        "status": "pending"
    }

    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client = get_redis_client()
    client.hset(meta_key, mapping={
        "task_id": task_id,
        "task_type": task_type,
        "payload": json.dumps(payload),
        "retry_count": str(retry_count),
        "max_retries": str(max_retries),
        "created_at": created_at,
        "status": "pending"
    })
    client.expire(meta_key, TASK_META_TTL)
    client.lpush(f"{QUEUE_KEY_PREFIX}{task_type}", json.dumps(task_data))

    logger.info(f"Enqueued task {task_id} of type {task_type} (retry_count={retry_count})")
    return task_id


async def dequeue_task(task_type: str, timeout: int = 5) -> Optional[Dict[str, Any]]:
    """Dequeue a task from the Redis queue (blocking up to ``timeout`` seconds)"""
    client = get_async_redis_client()
    if client is None:
        logger.error("Async Redis client not available")
        return None

    try:
        result = await client.brpop(f"{QUEUE_KEY_PREFIX}{task_type}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        return json.loads(task_json)
    except Exception as e:
        logger.error(f"Error dequeuing task: {e}", exc_info=True)
        return None


def get_task_status(task_id: str) -> Optional[Dict[str, Any]]:
    """Get task status and metadata, or None if unknown/expired"""
    client = get_redis_client()
    meta = client.hgetall(f"{META_KEY_PREFIX}{task_id}")
    if not meta:
        return None

    if "payload" in meta:
        meta["payload"] = json.loads(meta["payload"])
    for field in ("retry_count", "max_retries"):
        if field in meta:
            meta[field] = int(meta[field])
    return meta


def mark_task_processing(task_id: str) -> None:
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client.hset(meta_key, mapping={
        "status": "processing",
        "started_at": datetime.now(timezone.utc).isoformat()
    })
    client.sadd(PROCESSING_SET_KEY, task_id)


def mark_task_completed(task_id: str, result: Optional[Dict[str, Any]] = None) -> None:
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"
    client.hset(meta_key, mapping={
        "status": "completed",
        "completed_at": datetime.now(timezone.utc).isoformat()
    })
    if result:
        client.hset(meta_key, "result", json.dumps(result))
    client.srem(PROCESSING_SET_KEY, task_id)

    logger.info(f"Marked task {task_id} as completed")


def mark_task_failed(task_id: str, error: str, retry: bool = True) -> Optional[str]:
    """Mark task as failed and optionally schedule a retry

    Args:
        task_id: Task identifier
        error: Error message
        retry: Whether to schedule automatic retry

    Returns:
        New task_id if a retry was scheduled, None otherwise
    """
    client = get_redis_client()
    meta_key = f"{META_KEY_PREFIX}{task_id}"

    meta = client.hgetall(meta_key)
    if not meta:
        logger.warning(f"Task {task_id} metadata not found")
        return None

    retry_count = int(meta.get("retry_count", "0"))
    max_retries = int(meta.get("max_retries", "3"))
    payload = json.loads(meta.get("payload") or "{}")
    client.srem(PROCESSING_SET_KEY, task_id)

    if retry and retry_count < max_retries:
        new_retry_count = retry_count + 1
        delay_seconds = min(300, 2 ** new_retry_count)

        client.hset(meta_key, mapping={"status": "retrying", "error": error})
        new_task_id = enqueue_task(
            task_type=meta.get("task_type"),
            payload=payload,
            retry_count=new_retry_count,
            max_retries=max_retries
        )
        # Worker skips a job until its retry_after has passed
        retry_after = datetime.now(timezone.utc) + timedelta(seconds=delay_seconds)
        client.hset(f"{META_KEY_PREFIX}{new_task_id}", "retry_after", retry_after.isoformat())

        logger.info(
            f"Task {task_id} failed (attempt {retry_count + 1}/{max_retries + 1}), "
            f"retry {new_task_id} in {delay_seconds}s: {error}"
        )
        return new_task_id

    client.hset(meta_key, mapping={
        "status": "failed",
        "error": error,
        "failed_at": datetime.now(timezone.utc).isoformat()
    })
    logger.warning(f"Task {task_id} failed permanently after {retry_count + 1} attempts: {error}")
    return None


def requeue_task(task_data: Dict[str, Any]) -> None:
    """Put a dequeued task back at the tail of its queue (not yet due)"""
    client = get_redis_client()
    client.lpush(f"{QUEUE_KEY_PREFIX}{task_data['task_type']}", json.dumps(task_data))
