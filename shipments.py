"""
Shipment outbox.

Orders are persisted first and a `shipment_task` row is written alongside; the
carrier is only contacted from here, after the checkout response has gone out.
Tasks are claimed atomically so two workers never run the same one.
"""
import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

import config
from database import create_document, get_collection, get_documents, to_object_id, utcnow
from errors import ShipmentValidationError
from schemas import ShipmentTask

logger = logging.getLogger(__name__)

COLLECTION = "shipment_task"


def enqueue(order_id: str, kind: str = "create", reason: Optional[str] = None,
            delay_seconds: int = 0) -> str:
    task = ShipmentTask(
        order_id=str(order_id),
        kind=kind,
        next_attempt_at=utcnow() + timedelta(seconds=delay_seconds),
        reason=reason,
    )
    inserted = create_document(COLLECTION, task)
    shipment_status = "pending" if kind == "create" else "cancel_pending"
    _update_order(order_id, {"shipment_status": shipment_status, "shipment_error": None})
    logger.info(f"Queued shipment {kind} task for order {order_id}")
    return str(inserted)


def retry_delay(attempts: int) -> int:
    return config.SHIPMENT_RETRY_BASE * (2 ** max(attempts - 1, 0))


def _update_order(order_id: str, fields: Dict[str, Any]) -> None:
    oid = to_object_id(order_id)
    if oid is None:
        return
    fields = dict(fields)
    fields["updated_at"] = utcnow()
    get_collection("order").update_one({"_id": oid}, {"$set": fields})


def _claim(now: datetime, skip: Optional[List[Any]] = None) -> Optional[dict]:
    """Take the next due task, or one whose running lease has lapsed."""
    stale = now - timedelta(seconds=config.SHIPMENT_LEASE_SECONDS)
    return get_collection(COLLECTION).find_one_and_update(
        {
            "$or": [
                {"status": "pending", "next_attempt_at": {"$lte": now}},
                {"status": "running", "updated_at": {"$lte": stale}},
            ],
            "_id": {"$nin": skip or []},
        },
        {"$set": {"status": "running", "updated_at": now}, "$inc": {"attempts": 1}},
        sort=[("next_attempt_at", 1)],
        return_document=ReturnDocument.AFTER,
    )


def _finish(task: dict, status: str, error: Optional[str] = None, next_attempt_at: Optional[datetime] = None) -> None:
    fields = {"status": status, "last_error": error, "updated_at": utcnow()}
    if next_attempt_at is not None:
        fields["next_attempt_at"] = next_attempt_at
    get_collection(COLLECTION).update_one({"_id": task["_id"]}, {"$set": fields})


async def _run_create(client, order: dict) -> None:
    items = get_documents("order_item", {"order_id": str(order["_id"])})
    data = await client.create_shipment(order, items)
    data = data if isinstance(data, dict) else {}
    order_id = str(order["_id"])
    carrier_ids = {
        "shiprocket_order_id": str(data["order_id"]) if data.get("order_id") is not None else None,
        "shiprocket_shipment_id": str(data["shipment_id"]) if data.get("shipment_id") is not None else None,
    }
    current = get_collection("order").find_one({"_id": order["_id"]}, {"status": 1})
    if current and current.get("status") == "cancelled" and carrier_ids["shiprocket_order_id"]:
        # cancelled while the carrier call was in flight
        logger.warning(f"Order {order_id} was cancelled during shipment creation; queueing carrier cancel")
        _update_order(order_id, carrier_ids)
        enqueue(order_id, "cancel", reason="Order cancelled")
        return
    _update_order(order_id, {**carrier_ids, "shipment_status": "created", "shipment_error": None})


async def _run_cancel(client, order: dict, reason: Optional[str]) -> None:
    await client.cancel_shipment(order.get("shiprocket_order_id") or "", reason or "Order cancelled")
    _update_order(str(order["_id"]), {"shipment_status": "cancelled", "shipment_error": None})


async def run_task(client, task: dict) -> bool:
    """Execute one claimed task. Returns True on success."""
    order_id = task["order_id"]
    oid = to_object_id(order_id)
    order = get_collection("order").find_one({"_id": oid}) if oid else None
    if order is None:
        logger.error(f"Shipment task {task['_id']} refers to missing order {order_id}")
        _finish(task, "failed", "Order not found")
        return False
    if task["kind"] == "create" and order.get("status") == "cancelled":
        logger.info(f"Order {order_id} cancelled before shipment was created; skipping")
        _finish(task, "done", "Order cancelled")
        _update_order(order_id, {"shipment_status": "cancelled"})
        return True

    try:
        if task["kind"] == "cancel":
            await _run_cancel(client, order, task.get("reason"))
        else:
            await _run_create(client, order)
    except ShipmentValidationError as e:
        # incomplete address data will not fix itself on retry
        logger.error(f"Shipment {task['kind']} for order {order_id} rejected: {e.message}")
        _finish(task, "failed", e.message)
        _update_order(order_id, {"shipment_status": "failed", "shipment_error": e.message})
        return False
    except Exception as e:
        message = getattr(e, "message", None) or str(e)
        attempts = task.get("attempts", 1)
        if attempts >= config.SHIPMENT_MAX_ATTEMPTS:
            logger.error(f"Shipment {task['kind']} for order {order_id} failed after {attempts} attempts: {message}")
            _finish(task, "failed", message)
            _update_order(order_id, {"shipment_status": "failed", "shipment_error": message})
        else:
            delay = retry_delay(attempts)
            logger.warning(f"Shipment {task['kind']} for order {order_id} failed (attempt {attempts}), "
                           f"retrying in {delay}s: {message}")
            _finish(task, "pending", message, next_attempt_at=utcnow() + timedelta(seconds=delay))
        return False

    _finish(task, "done")
    logger.info(f"Shipment {task['kind']} for order {order_id} completed")
    return True


async def process_due(client, now: Optional[datetime] = None, limit: int = 20) -> int:
    """Run up to `limit` due tasks; returns how many were attempted."""
    seen: List[Any] = []
    while len(seen) < limit:
        task = _claim(now or utcnow(), seen)
        if task is None:
            break
        seen.append(task["_id"])
        await run_task(client, task)
    return len(seen)


def retry_failed(order_id: str) -> str:
    order = get_collection("order").find_one({"_id": to_object_id(order_id)})
    kind = "cancel" if order and order.get("status") == "cancelled" and order.get("shiprocket_order_id") else "create"
    return enqueue(order_id, kind)


async def run_worker(get_client, interval: float = config.SHIPMENT_POLL_INTERVAL) -> None:
    logger.info(f"Shipment worker started (poll every {interval}s)")
    while True:
        try:
            await process_due(get_client())
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Shipment worker iteration failed")
        await asyncio.sleep(interval)
