"""
Durable at-least-once retry queue.

Failed units of work are stored as ``RetryOperation`` rows so they survive a
restart. A unit of work is a ``(kind, payload)`` pair; the callable that
performs it is registered per kind together with its ``RetryPolicy``.
``RetryWorker`` sweeps the table on a fixed interval.
"""
import json
import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy.exc import IntegrityError

from models import db
from models.retry_operation import RetryOperation
from utils.audit import log_event

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    max_retries: int = 3
    initial_delay: float = 1.0  # seconds
    backoff_multiplier: float = 2.0
    max_delay: float = 30.0

    def delay_for(self, retries: int) -> timedelta:
        seconds = min(self.initial_delay * self.backoff_multiplier ** retries, self.max_delay)
        return timedelta(seconds=seconds)


@dataclass
class SweepStats:
    attempted: int = 0
    succeeded: int = 0
    rescheduled: int = 0
    dropped: int = 0
    skipped: bool = False


def _error_text(error) -> str:
    if error is None:
        return None
    return str(error)[:2000] or error.__class__.__name__


class RetryQueue:
    def __init__(self, default_policy: RetryPolicy = None):
        self._handlers = {}
        self._default_policy = default_policy or RetryPolicy()
        self._sweep_lock = threading.Lock()

    def register(self, kind: str, handler, policy: RetryPolicy = None):
        """handler(payload) must raise on failure."""
        self._handlers[kind] = (handler, policy or self._default_policy)

    def policy_for(self, kind: str) -> RetryPolicy:
        if kind not in self._handlers:
            raise KeyError(f"No retry handler registered for {kind!r}")
        return self._handlers[kind][1]

    def enqueue(self, op_key: str, kind: str, payload: dict, error=None, now: datetime = None) -> RetryOperation:
        policy = self.policy_for(kind)
        now = now or datetime.utcnow()

        op = RetryOperation.query.filter_by(op_key=op_key).first()
        if op is None:
            op = RetryOperation(
                op_key=op_key,
                kind=kind,
                retries=0,
                next_retry_at=now + policy.delay_for(0),
            )
            db.session.add(op)
        op.payload_json = json.dumps(payload, default=str)
        op.last_error = _error_text(error)

        try:
            db.session.commit()
        except IntegrityError:
            # registered concurrently under the same key
            db.session.rollback()
            op = RetryOperation.query.filter_by(op_key=op_key).first()

        logger.warning(f"Operation {op_key} failed, added to retry queue: {error}")
        return op

    def sweep(self, now: datetime = None) -> SweepStats:
        if not self._sweep_lock.acquire(blocking=False):
            logger.debug("Retry sweep already running, skipping")
            return SweepStats(skipped=True)
        try:
            now = now or datetime.utcnow()
            stats = SweepStats()
            due = (
                RetryOperation.query
                .filter(RetryOperation.next_retry_at <= now)
                .order_by(RetryOperation.next_retry_at.asc(), RetryOperation.id.asc())
                .all()
            )
            for op in due:
                self._run(op, now, stats)
            return stats
        finally:
            self._sweep_lock.release()

    def _run(self, op: RetryOperation, now: datetime, stats: SweepStats):
        entry = self._handlers.get(op.kind)
        if entry is None:
            logger.error(f"No handler for retry operation {op.op_key} (kind={op.kind}), leaving it queued")
            return
        handler, policy = entry
        stats.attempted += 1
        logger.info(f"Retrying operation {op.op_key} (attempt {op.retries + 1})")

        try:
            handler(json.loads(op.payload_json))
        except Exception as exc:
            op.retries += 1
            op.last_error = _error_text(exc)
            if op.retries >= policy.max_retries:
                key, retries = op.op_key, op.retries
                db.session.delete(op)
                log_event(
                    "RETRY_DROPPED",
                    entity="retry_operation",
                    entity_id=key,
                    metadata={"retries": retries, "error": _error_text(exc)},
                    source="worker",
                    commit=False,
                )
                db.session.commit()
                stats.dropped += 1
                logger.error(f"Operation {key} failed after {retries} retries, dropping it: {exc}")
            else:
                delay = policy.delay_for(op.retries)
                op.next_retry_at = now + delay
                db.session.commit()
                stats.rescheduled += 1
                logger.info(
                    f"Operation {op.op_key} failed, will retry in {delay.total_seconds():.0f}s "
                    f"(attempt {op.retries}/{policy.max_retries})"
                )
            return

        key = op.op_key
        db.session.delete(op)
        db.session.commit()
        stats.succeeded += 1
        logger.info(f"Operation {key} succeeded on retry")


class RetryWorker:
    """Runs RetryQueue.sweep every ``interval`` seconds on one thread."""

    def __init__(self, app, queue: RetryQueue, interval: float = 5):
        self.app = app
        self.queue = queue
        self.interval = interval
        self._stop = threading.Event()
        self._thread = None

    def start(self):
        if self._thread and self._thread.is_alive():
            return self._thread
        self._stop.clear()
        self._thread = threading.Thread(target=self.run_forever, name="retry-worker", daemon=True)
        self._thread.start()
        return self._thread

    def stop(self, timeout: float = None):
        self._stop.set()
        if self._thread:
            self._thread.join(timeout)

    def run_forever(self):
        logger.info(f"Retry worker started, sweeping every {self.interval}s")
        while not self._stop.wait(self.interval):
            self.run_once()
        logger.info("Retry worker stopped")

    def run_once(self) -> SweepStats:
        with self.app.app_context():
            try:
                stats = self.queue.sweep()
            except Exception:
                db.session.rollback()
                logger.exception("Retry sweep failed")
                return SweepStats()
            if stats.attempted:
                logger.info(
                    f"Retry sweep: {stats.succeeded} ok, {stats.rescheduled} rescheduled, {stats.dropped} dropped"
                )
            return stats
