"""
Fiscal Retry - Submission Retry Scheduler
=========================================
Holds at most one pending retry per document and runs it when due.

Doctrine:
- Every ticket carries its own CancellationToken. Scheduling a new retry
  for a document cancels the ticket it replaces.
- The scheduler never touches documents. It hands due tickets to the bound
  callback (the state machine), which re-checks the token under the
  document lock before doing anything.
- Waiting happens on the dispatcher thread and holds no document lock.
- run_due() drives due tickets on the calling thread; tests pair it with
  a FixedClock instead of sleeping.
"""

from __future__ import annotations

import heapq
import itertools
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Optional

from fiscal.retry.policy import RetryPolicy
from fiscal.time import Clock, SystemClock

logger = logging.getLogger("fiscal.retry")


class CancellationToken:
    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


@dataclass(frozen=True)
class RetryTicket:
    document_id: str
    attempt_number: int
    due_at: datetime
    sequence: int
    token: CancellationToken = field(compare=False, repr=False)


@dataclass(frozen=True)
class RetryDecision:
    document_id: str
    attempt_number: int
    exhausted: bool
    delay_seconds: Optional[float] = None
    ticket: Optional[RetryTicket] = None

    @property
    def scheduled(self) -> bool:
        return self.ticket is not None


RetryCallback = Callable[[RetryTicket], None]


class SubmissionRetryScheduler:
    """
    Bounded exponential-backoff scheduler.

    Usage:
        scheduler = SubmissionRetryScheduler(RetryPolicy(), clock)
        scheduler.bind(state_machine.run_retry)
        scheduler.start()
    """

    def __init__(
        self,
        policy: RetryPolicy,
        clock: Optional[Clock] = None,
        *,
        workers: int = 2,
        poll_interval: float = 0.25,
    ):
        if workers < 1:
            raise ValueError("workers must be >= 1.")
        self._policy = policy
        self._clock = clock or SystemClock()
        self._workers = workers
        self._poll_interval = poll_interval
        self._lock = threading.Lock()
        self._wakeup = threading.Condition(self._lock)
        self._tickets: dict[str, RetryTicket] = {}
        self._heap: list[tuple[datetime, int, str]] = []
        self._sequence = itertools.count(1)
        self._callback: Optional[RetryCallback] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self._dispatcher: Optional[threading.Thread] = None
        self._stopping = False

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def bind(self, callback: RetryCallback) -> None:
        if not callable(callback):
            raise TypeError("callback must be callable.")
        self._callback = callback

    # ══════════════════════════════════════════════════════════
    # SCHEDULING
    # ══════════════════════════════════════════════════════════

    def schedule_retry(self, document_id: str, attempt_number: int) -> RetryDecision:
        if self._policy.is_exhausted(attempt_number):
            logger.warning(
                f"Retry chain exhausted for {document_id} after {attempt_number} attempts"
            )
            return RetryDecision(document_id, attempt_number, exhausted=True)

        delay = self._policy.delay_for(attempt_number)
        with self._wakeup:
            previous = self._tickets.get(document_id)
            if previous is not None:
                previous.token.cancel()
            ticket = RetryTicket(
                document_id=document_id,
                attempt_number=attempt_number,
                due_at=self._clock.now_utc() + timedelta(seconds=delay),
                sequence=next(self._sequence),
                token=CancellationToken(),
            )
            self._tickets[document_id] = ticket
            heapq.heappush(self._heap, (ticket.due_at, ticket.sequence, document_id))
            self._wakeup.notify()

        logger.info(
            f"Retry {attempt_number} for {document_id} scheduled in {delay:.1f}s"
        )
        return RetryDecision(
            document_id, attempt_number, exhausted=False, delay_seconds=delay, ticket=ticket
        )

    def cancel(self, document_id: str) -> bool:
        with self._lock:
            ticket = self._tickets.pop(document_id, None)
        if ticket is None or ticket.token.cancelled:
            return False
        ticket.token.cancel()
        logger.info(f"Pending retry for {document_id} cancelled")
        return True

    def pending(self, document_id: str) -> Optional[RetryTicket]:
        with self._lock:
            ticket = self._tickets.get(document_id)
        if ticket is None or ticket.token.cancelled:
            return None
        return ticket

    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for ticket in self._tickets.values() if not ticket.token.cancelled)

    # ══════════════════════════════════════════════════════════
    # EXECUTION
    # ══════════════════════════════════════════════════════════

    def _take_due(self) -> list[RetryTicket]:
        """Pop due heap entries. Caller holds self._lock."""
        now = self._clock.now_utc()
        due: list[RetryTicket] = []
        while self._heap and self._heap[0][0] <= now:
            _, sequence, document_id = heapq.heappop(self._heap)
            ticket = self._tickets.get(document_id)
            if ticket is None or ticket.sequence != sequence or ticket.token.cancelled:
                continue
            due.append(ticket)
        return due

    def _run_ticket(self, ticket: RetryTicket) -> None:
        try:
            if ticket.token.cancelled:
                return
            if self._callback is None:
                logger.error(f"Retry for {ticket.document_id} dropped: no callback bound")
                return
            self._callback(ticket)
        except Exception:
            logger.exception(f"Retry job for {ticket.document_id} failed")
        finally:
            with self._lock:
                if self._tickets.get(ticket.document_id) is ticket:
                    del self._tickets[ticket.document_id]

    def run_due(self) -> int:
        """Run every due ticket on the calling thread. Returns how many ran."""
        with self._lock:
            due = self._take_due()
        for ticket in due:
            self._run_ticket(ticket)
        return len(due)

    def start(self) -> None:
        with self._lock:
            if self._dispatcher is not None:
                return
            self._stopping = False
            self._executor = ThreadPoolExecutor(
                max_workers=self._workers, thread_name_prefix="fiscal-retry"
            )
            self._dispatcher = threading.Thread(
                target=self._dispatch_loop, name="fiscal-retry-dispatcher", daemon=True
            )
        self._dispatcher.start()
        logger.info("Retry scheduler started")

    def _dispatch_loop(self) -> None:
        while True:
            with self._wakeup:
                if self._stopping:
                    return
                due = self._take_due()
                if not due:
                    self._wakeup.wait(self._poll_interval)
                    continue
                executor = self._executor
            for ticket in due:
                executor.submit(self._run_ticket, ticket)

    def shutdown(self, wait: bool = True) -> None:
        with self._wakeup:
            self._stopping = True
            self._wakeup.notify_all()
            dispatcher, executor = self._dispatcher, self._executor
            self._dispatcher = None
            self._executor = None
        if dispatcher is not None:
            dispatcher.join()
        if executor is not None:
            executor.shutdown(wait=wait)
        logger.info("Retry scheduler stopped")
