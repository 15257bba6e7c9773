# Overview: Fire-and-forget notification dispatch for order, stock, batch and invoice events.

"""
Notification sink.

Services call notify(kind, payload) after a successful commit. Dispatch never
blocks or fails the caller: sinks run on a background thread pool (or inline
when NOTIFICATIONS_ASYNC is off) and their exceptions are logged, not raised.
Delivery, retries and templates belong to whatever sink is registered (e-mail,
queue, webhook); the default sink only logs.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
import threading
from typing import Callable

from flask import current_app

KIND_ORDER_CONFIRMED = "order-confirmed"
KIND_LOW_STOCK = "low-stock"
KIND_BATCH_EXPIRING = "batch-expiring"
KIND_PAYMENT_DUE = "payment-due"
KIND_PRODUCTION_REPORT = "production-report"

VALID_NOTIFICATION_KINDS = {
    KIND_ORDER_CONFIRMED,
    KIND_LOW_STOCK,
    KIND_BATCH_EXPIRING,
    KIND_PAYMENT_DUE,
    KIND_PRODUCTION_REPORT,
}

Sink = Callable[[str, dict], None]

_sinks: list[Sink] = []
_sinks_lock = threading.Lock()
_executor: ThreadPoolExecutor | None = None
_executor_lock = threading.Lock()


def register_sink(sink: Sink) -> None:
    with _sinks_lock:
        _sinks.append(sink)


def clear_sinks() -> None:
    with _sinks_lock:
        _sinks.clear()


def _get_executor() -> ThreadPoolExecutor:
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(max_workers=4, thread_name_prefix="notify")
        return _executor


def _deliver(sinks: list[Sink], kind: str, payload: dict, logger) -> None:
    if not sinks:
        logger.info("notification %s: %s", kind, payload)
        return
    for sink in sinks:
        try:
            sink(kind, payload)
        except Exception:
            logger.exception("Notification sink failed for %s", kind)


def notify(kind: str, payload: dict) -> None:
    """
    Dispatch a notification and return immediately.

    Must be called after the triggering transaction committed; the result is
    never awaited.
    """
    if kind not in VALID_NOTIFICATION_KINDS:
        raise ValueError(f"unknown notification kind: {kind}")

    app = current_app._get_current_object()
    logger = app.logger
    with _sinks_lock:
        sinks = list(_sinks)

    if not app.config.get("NOTIFICATIONS_ASYNC", True):
        _deliver(sinks, kind, payload, logger)
        return

    try:
        _get_executor().submit(_deliver, sinks, kind, payload, logger)
    except RuntimeError:
        # Executor already shut down (interpreter exit)
        logger.exception("Could not dispatch notification %s", kind)
