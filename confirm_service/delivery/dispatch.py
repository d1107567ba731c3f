"""Best-effort handoff of outbound e-mail to a worker pool."""

from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor

from ..domain.contracts import Email, Mailer
from .. import metrics

logger = logging.getLogger(__name__)


class DeliveryDispatcher:
    """Hands messages to a ``Mailer`` without blocking the caller.

    Delivery is best-effort: there is no retry and no confirmation back to the
    requester. Failures are logged and counted, never raised. When the mailer
    reports ``synchronous = True`` the send runs inline on the calling thread.
    """

    def __init__(self, mailer: Mailer, *, max_workers: int = 4) -> None:
        self.mailer = mailer
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="confirm-mail")

    def dispatch(self, email: Email) -> Future | None:
        if getattr(self.mailer, "synchronous", False):
            self._deliver(email)
            return None
        return self._executor.submit(self._deliver, email)

    def _deliver(self, email: Email) -> None:
        try:
            self.mailer.send(email)
        except Exception:
            metrics.DELIVERY_FAILURES.inc()
            logger.exception("confirm: failed to send e-mail %r", email.subject)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
