"""
Module: observability.py
Description: Key/value logging and in-process metrics for the Finance Tracker.

Log lines look like:
    2026-10-19 15:30:00 | INFO | finance-tracker | Chat intent | intent=balance

Metrics are kept in memory and served on /metrics; they reset on restart.

Usage:
    from services.observability import logger, metrics, timed

    @timed("chat.interpret")
    async def interpret(prompt, user_id):
        logger.info("Chat intent", intent="balance")

Author: Finance Tracker Team
"""

import os
import time
import asyncio
import logging
import functools
from collections import defaultdict, deque
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Callable, Deque, Dict, Mapping, Optional


LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# =============================================================================
# Logging
# =============================================================================

def _render_fields(fields: Mapping[str, Any]) -> str:
    parts = []
    for key, value in fields.items():
        text = str(value)
        if " " in text or not text:
            text = repr(text)
        parts.append(f"{key}={text}")
    return " ".join(parts)


class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that appends key=value fields.

    `bind()` returns a child that repeats the given fields on every line.
    """

    def __init__(
        self,
        name: str = "finance-tracker",
        level: Optional[str] = None,
        fields: Optional[Dict[str, Any]] = None,
    ):
        self._logger = logging.getLogger(name)
        self._fields = dict(fields or {})

        if not self._logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
            self._logger.addHandler(handler)
            self._logger.setLevel(level or os.getenv("LOG_LEVEL", "INFO").upper())

    def bind(self, **fields) -> "StructuredLogger":
        return StructuredLogger(self._logger.name, fields={**self._fields, **fields})

    def _log(self, level: int, message: str, fields: Dict[str, Any], exc_info: bool = False) -> None:
        if not self._logger.isEnabledFor(level):
            return
        merged = {**self._fields, **fields}
        line = f"{message} | {_render_fields(merged)}" if merged else message
        self._logger.log(level, line, exc_info=exc_info)

    def debug(self, message: str, **fields) -> None:
        self._log(logging.DEBUG, message, fields)

    def info(self, message: str, **fields) -> None:
        self._log(logging.INFO, message, fields)

    def warning(self, message: str, **fields) -> None:
        self._log(logging.WARNING, message, fields)

    def error(self, message: str, **fields) -> None:
        self._log(logging.ERROR, message, fields)

    def exception(self, message: str, **fields) -> None:
        """Log at ERROR with the active traceback attached."""
        self._log(logging.ERROR, message, fields, exc_info=True)


# =============================================================================
# Metrics
# =============================================================================

def metric_key(name: str, tags: Optional[Mapping[str, str]] = None) -> str:
    """`name` or `name:k1=v1,k2=v2` with tags sorted by key."""
    if not tags:
        return name
    return name + ":" + ",".join(f"{k}={tags[k]}" for k in sorted(tags))


class MetricsCollector:
    """Counters, gauges and a bounded window of timing samples per key."""

    MAX_TIMING_SAMPLES = 1000
    # Percentiles need a minimum sample count to mean anything
    MIN_SAMPLES_FOR_P95 = 20

    def __init__(self):
        self.started_at = datetime.utcnow()
        self.counters: Dict[str, int] = defaultdict(int)
        self.gauges: Dict[str, float] = {}
        self.timings: Dict[str, Deque[float]] = defaultdict(
            lambda: deque(maxlen=self.MAX_TIMING_SAMPLES)
        )

    def increment(self, name: str, value: int = 1, tags: Optional[Mapping[str, str]] = None) -> None:
        self.counters[metric_key(name, tags)] += value

    def gauge(self, name: str, value: float, tags: Optional[Mapping[str, str]] = None) -> None:
        self.gauges[metric_key(name, tags)] = value

    def timing(self, name: str, duration_ms: float, tags: Optional[Mapping[str, str]] = None) -> None:
        self.timings[metric_key(name, tags)].append(duration_ms)

    def _describe_samples(self, samples) -> Dict[str, Any]:
        ordered = sorted(samples)
        count = len(ordered)
        return {
            "count": count,
            "avg_ms": sum(ordered) / count,
            "min_ms": ordered[0],
            "max_ms": ordered[-1],
            "p50_ms": ordered[count // 2],
            "p95_ms": ordered[int(count * 0.95)] if count >= self.MIN_SAMPLES_FOR_P95 else None,
        }

    def get_summary(self) -> Dict[str, Any]:
        """Snapshot of everything recorded since start or the last reset."""
        return {
            "uptime_seconds": (datetime.utcnow() - self.started_at).total_seconds(),
            "counters": dict(self.counters),
            "gauges": dict(self.gauges),
            "timings": {
                key: self._describe_samples(samples)
                for key, samples in self.timings.items()
                if samples
            },
        }

    def reset(self) -> None:
        self.counters.clear()
        self.gauges.clear()
        self.timings.clear()


logger = StructuredLogger()

metrics = MetricsCollector()


# =============================================================================
# Timing
# =============================================================================

@contextmanager
def timed_block(name: str):
    """
    Time the enclosed block and count it under `<name>.success` or
    `<name>.error`. Exceptions propagate.
    """
    outcome = "success"
    started = time.perf_counter()
    try:
        yield
    except Exception:
        outcome = "error"
        raise
    finally:
        elapsed_ms = (time.perf_counter() - started) * 1000
        metrics.increment(f"{name}.{outcome}")
        metrics.timing(name, elapsed_ms)
        logger.debug("Timed block finished", block=name, outcome=outcome, ms=f"{elapsed_ms:.2f}")


def timed(name: Optional[str] = None) -> Callable:
    """Decorator form of `timed_block` for plain and async callables."""
    def decorator(func: Callable) -> Callable:
        block_name = name or func.__qualname__

        if asyncio.iscoroutinefunction(func):
            @functools.wraps(func)
            async def run_async(*args, **kwargs):
                with timed_block(block_name):
                    return await func(*args, **kwargs)
            return run_async

        @functools.wraps(func)
        def run_sync(*args, **kwargs):
            with timed_block(block_name):
                return func(*args, **kwargs)
        return run_sync

    return decorator


# =============================================================================
# Domain Events
# =============================================================================

def log_chat_request(user_id: str, message_length: int) -> None:
    logger.bind(user_id=user_id[:8]).info("Chat request", msg_length=message_length)
    metrics.increment("chat.requests")


def log_chat_intent(intent: str) -> None:
    logger.info("Chat intent", intent=intent)
    metrics.increment("chat.intents", tags={"intent": intent})


def log_transaction_mutation(action: str, transaction_id: str, source: str = "api") -> None:
    """Record a created/updated/deleted transaction, tagged by where it came from."""
    logger.info(f"Transaction {action}", transaction_id=transaction_id[:8], source=source)
    metrics.increment(f"transactions.{action}", tags={"source": source})
