"""
Polling channel.

A PaymentPoller asks one provider about one payment reference until the
stored status is terminal or it is stopped. Each poller owns one daemon
thread whose wait between ticks is a threading.Event, so stop() cancels the
pending tick immediately. A query already in flight when stop() is called is
allowed to finish but its result is dropped.
"""
from __future__ import annotations

import threading
from typing import Callable

import structlog

from reconciler.config import poll_interval
from reconciler.errors import ProviderUnavailable, ReconcilerError
from reconciler.normalizer import normalize
from reconciler.providers.base import ProviderAdapter
from reconciler.providers.factory import build_adapter
from reconciler.reconcile import Reconciler
from reconciler.status import CanonicalStatus, ProviderKind

logger = structlog.get_logger(__name__)


class PaymentPoller:
    def __init__(
        self,
        provider_reference: str | None,
        adapter: ProviderAdapter,
        reconciler: Reconciler,
        interval: float | None = None,
        on_finish: Callable[["PaymentPoller"], None] | None = None,
    ):
        self.provider_reference = provider_reference
        self.adapter = adapter
        self.reconciler = reconciler
        self.interval = poll_interval() if interval is None else interval
        self.is_polling = False
        self.last_status: CanonicalStatus | None = None
        self.last_error: str | None = None
        self._on_finish = on_finish
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._log = logger.bind(provider=adapter.name, provider_reference=provider_reference)

    @property
    def provider_kind(self) -> ProviderKind:
        return self.adapter.kind

    def state(self) -> dict:
        return {
            "provider_reference": self.provider_reference,
            "is_polling": self.is_polling,
            "last_status": self.last_status.value if self.last_status else None,
            "last_error": self.last_error,
        }

    def start(self) -> bool:
        """Begin polling. Returns False when there is nothing to poll or it already runs."""
        with self._lock:
            if not self.provider_reference or self.is_polling:
                return False
            self.is_polling = True
            self._stop_event = threading.Event()
            self._thread = threading.Thread(
                target=self._run,
                args=(self._stop_event,),
                name=f"poller-{self.provider_reference}",
                daemon=True,
            )
            self._thread.start()
        self._log.info("polling_started", interval=self.interval)
        return True

    def stop(self) -> None:
        with self._lock:
            was_polling = self.is_polling
            self._stop_event.set()
            self.is_polling = False
        if was_polling:
            self._log.info("polling_stopped")

    def join(self, timeout: float | None = None) -> None:
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)

    def check_now(self) -> CanonicalStatus | None:
        """One synchronous check outside the loop, e.g. a manual retry."""
        self._tick(threading.Event())
        return self.last_status

    def _run(self, stop_event: threading.Event) -> None:
        try:
            # first check happens immediately, not after one interval
            while not stop_event.is_set():
                try:
                    self._tick(stop_event)
                except Exception as e:
                    self._log.exception("polling_tick_failed")
                    with self._lock:
                        if not stop_event.is_set():
                            self.last_error = str(e)
                if stop_event.wait(self.interval):
                    break
        finally:
            if self._on_finish is not None:
                self._on_finish(self)

    def _halt(self, stop_event: threading.Event) -> None:
        stop_event.set()
        if stop_event is self._stop_event:
            self.is_polling = False

    def _tick(self, stop_event: threading.Event) -> None:
        try:
            snapshot = self.adapter.query_status(self.provider_reference)
        except ProviderUnavailable as e:
            with self._lock:
                if stop_event.is_set():
                    return
                self.last_error = e.message
            self._log.warning("polling_provider_unavailable", error=e.message)
            return
        except ReconcilerError as e:
            with self._lock:
                if stop_event.is_set():
                    return
                self.last_error = e.message
                self._halt(stop_event)
            self._log.error("polling_aborted", error=e.message, error_type=type(e).__name__)
            return

        with self._lock:
            if stop_event.is_set():
                self._log.info("polling_result_discarded", raw_status=snapshot.raw_status)
                return
            # the lock covers the write only; the confirmation goes out after release
            result = self.reconciler.apply_snapshot(
                self.provider_kind, snapshot, provider_reference=self.provider_reference, channel="poll",
                dispatch=False,
            )
            if not result.found:
                self.last_status = normalize(self.provider_kind, snapshot.raw_status)
                self.last_error = f"No payment intent for reference {self.provider_reference}"
                self._halt(stop_event)
                return
            self.last_status = result.status
            self.last_error = None
            if result.is_terminal:
                self._halt(stop_event)
        if result.first_entry_to_paid:
            self.reconciler.notify(result.order_id, result.status)
        if result.is_terminal:
            self._log.info("polling_finished", status=result.status.value)


class PollingScheduler:
    """Owns at most one running poller per order."""

    def __init__(self, reconciler: Reconciler, adapter_factory=build_adapter, interval: float | None = None):
        self.reconciler = reconciler
        self.adapter_factory = adapter_factory
        self.interval = interval
        self._pollers: dict[str, PaymentPoller] = {}
        self._lock = threading.Lock()

    def schedule(self, order_id: str, provider_kind: ProviderKind, provider_reference: str) -> PaymentPoller:
        poller = PaymentPoller(
            provider_reference,
            self.adapter_factory(provider_kind),
            self.reconciler,
            interval=self.interval,
            on_finish=lambda p: self._finished(order_id, p),
        )
        with self._lock:
            previous = self._pollers.get(order_id)
            self._pollers[order_id] = poller
        if previous is not None:
            previous.stop()
        poller.start()
        return poller

    def get(self, order_id: str) -> PaymentPoller | None:
        with self._lock:
            return self._pollers.get(order_id)

    def cancel(self, order_id: str) -> bool:
        with self._lock:
            poller = self._pollers.pop(order_id, None)
        if poller is None:
            return False
        poller.stop()
        return True

    def active(self) -> dict[str, dict]:
        with self._lock:
            pollers = dict(self._pollers)
        return {order_id: p.state() for order_id, p in pollers.items()}

    def shutdown(self, timeout: float = 1.0) -> None:
        with self._lock:
            pollers = list(self._pollers.values())
            self._pollers.clear()
        for poller in pollers:
            poller.stop()
        for poller in pollers:
            poller.join(timeout)
        if pollers:
            logger.info("polling_scheduler_shutdown", stopped=len(pollers))

    def _finished(self, order_id: str, poller: PaymentPoller) -> None:
        with self._lock:
            if self._pollers.get(order_id) is poller:
                del self._pollers[order_id]
