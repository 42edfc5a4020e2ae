"""Redis-backed scan-label job queue and its retry/refund worker loop.

Jobs are JSON objects on a Redis list: producers LPUSH, the worker BRPOPs, so
the list is FIFO. A failing job is pushed back with ``attempts + 1`` until the
attempt budget is spent; the order is then marked failed and the service cost
refunded through the ledger.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, replace
import json
import logging
import threading
from typing import Any, Callable, Mapping, Optional
from uuid import uuid4

import redis

from orderdesk.credit import SERVICE_CREDIT_COST
from orderdesk.database import transaction
from orderdesk.ledger import BalanceLedger
from orderdesk.orders import OrderStore

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_KEY = "queue:scan-label"
DEFAULT_SERVICE_TYPE = "scan_label"
FAILURE_ERROR_CODE = "PROCESSING_ERROR"
FAILURE_ERROR_REASON = "Exceeded retry attempts"
REFUND_REASON = "scan-refund"


@dataclass(frozen=True)
class ScanJob:
    job_id: str
    account_id: str
    order_id: Optional[str] = None
    service_type: Optional[str] = None
    tracking_code: Optional[str] = None
    label_url: Optional[str] = None
    attempts: int = 0
    client_request_id: Optional[str] = None

    @classmethod
    def new(cls, account_id: Any, order_id: Any = None, **fields: Any) -> "ScanJob":
        return cls(
            job_id=str(uuid4()),
            account_id=str(account_id),
            order_id=None if order_id is None else str(order_id),
            **fields,
        )

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True)

    @classmethod
    def from_json(cls, raw: Any) -> "ScanJob":
        """Decode a queue payload; raises ValueError when it is not a scan job."""
        if isinstance(raw, (bytes, bytearray)):
            raw = raw.decode("utf-8")
        payload = json.loads(raw)
        if not isinstance(payload, Mapping):
            raise ValueError("Scan job payload must be a JSON object")
        missing = [key for key in ("job_id", "account_id") if not payload.get(key)]
        if missing:
            raise ValueError(f"Scan job payload missing keys: {', '.join(missing)}")
        return cls(
            job_id=str(payload["job_id"]),
            account_id=str(payload["account_id"]),
            order_id=payload.get("order_id"),
            service_type=payload.get("service_type"),
            tracking_code=payload.get("tracking_code"),
            label_url=payload.get("label_url"),
            attempts=int(payload.get("attempts", 0)),
            client_request_id=payload.get("client_request_id"),
        )


class RedisScanQueue:
    def __init__(self, client: redis.Redis, key: str = DEFAULT_QUEUE_KEY) -> None:
        self.client = client
        self.key = key

    @classmethod
    def from_url(cls, url: str, key: str = DEFAULT_QUEUE_KEY) -> "RedisScanQueue":
        return cls(redis.from_url(url), key=key)

    def enqueue(self, job: ScanJob) -> None:
        self.client.lpush(self.key, job.to_json())

    def dequeue(self, timeout_seconds: int = 5) -> Optional[ScanJob]:
        """Block up to ``timeout_seconds``; None on timeout or an undecodable payload."""
        item = self.client.brpop([self.key], timeout=timeout_seconds)
        if item is None:
            return None
        _, raw = item
        try:
            return ScanJob.from_json(raw)
        except (ValueError, TypeError) as exc:
            logger.warning("Dropping undecodable scan job from %s: %s", self.key, exc)
            return None

    def depth(self) -> int:
        return int(self.client.llen(self.key))


ScanHandler = Callable[[ScanJob], None]


class ScanWorker:
    def __init__(
        self,
        queue: RedisScanQueue,
        handler: ScanHandler,
        ledger: BalanceLedger,
        orders: OrderStore,
        max_attempts: int = 3,
        dequeue_timeout_seconds: int = 5,
    ) -> None:
        if max_attempts <= 0:
            raise ValueError(f"max_attempts must be positive, got {max_attempts}")
        self.queue = queue
        self.handler = handler
        self.ledger = ledger
        self.orders = orders
        self.max_attempts = max_attempts
        self.dequeue_timeout_seconds = dequeue_timeout_seconds

    def run_once(self) -> Optional[str]:
        """Process at most one job; returns the outcome or None when the queue was empty."""
        job = self.queue.dequeue(self.dequeue_timeout_seconds)
        if job is None:
            return None
        try:
            self.handler(job)
        except Exception:
            logger.exception("Scan job failed: job=%s order=%s attempts=%s", job.job_id, job.order_id, job.attempts)
            return self._handle_failure(job)
        logger.info("Scan job completed: job=%s order=%s", job.job_id, job.order_id)
        return "completed"

    def run_forever(self, stop_event: Optional[threading.Event] = None) -> None:
        stop = stop_event or threading.Event()
        logger.info(
            "Scan worker started: queue=%s max_attempts=%s",
            self.queue.key,
            self.max_attempts,
        )
        while not stop.is_set():
            self.run_once()
        logger.info("Scan worker stopped: queue=%s", self.queue.key)

    def _handle_failure(self, job: ScanJob) -> str:
        next_attempt = job.attempts + 1
        if next_attempt < self.max_attempts:
            self.queue.enqueue(replace(job, attempts=next_attempt))
            return "retried"
        if not job.order_id:
            logger.warning("Dropping scan job without order after %s attempts: job=%s", next_attempt, job.job_id)
            return "dropped"
        self._fail_and_refund(job)
        return "failed"

    def _fail_and_refund(self, job: ScanJob) -> None:
        order = self.orders.get_order(job.order_id)
        if order is None:
            logger.warning("Scan job references unknown order: job=%s order=%s", job.job_id, job.order_id)
            return
        service_type = job.service_type or order.service_type or DEFAULT_SERVICE_TYPE
        refund = SERVICE_CREDIT_COST.get(service_type, SERVICE_CREDIT_COST[DEFAULT_SERVICE_TYPE])
        with transaction(self.ledger.db):
            self.orders.mark_failed(order.order_id, FAILURE_ERROR_CODE, FAILURE_ERROR_REASON)
            self.ledger.credit_for_order(order.account_id, order.order_id, refund, reason=REFUND_REASON)
        logger.warning(
            "Scan order failed after retries: order=%s account=%s refunded=%s",
            order.order_id,
            order.account_id,
            refund,
        )
