"""One visitor's spin → prize → registration journey."""
import asyncio
import logging
import random
import time
from datetime import date
from typing import Optional, Protocol

from .models import RequestContext, SpinPhase, SpinTiming, Submission, TrackingResult
from .prizes import PrizeTable, default_table
from .utils import check_email, gen_id, utcnow

logger = logging.getLogger(__name__)


class IllegalTransition(Exception):
    def __init__(self, event: str, phase: SpinPhase, detail: str = ""):
        self.event = event
        self.phase = phase
        msg = f"cannot {event} while {phase.value}"
        super().__init__(f"{msg}: {detail}" if detail else msg)


class RegistrationValidationError(ValueError):
    pass


class PersistenceError(RuntimeError):
    pass


class LeadSink(Protocol):
    def save(self, submission: Submission) -> bool: ...


class TrackingSink(Protocol):
    async def track(self, email: str, prize_amount: int,
                    context: RequestContext) -> TrackingResult: ...


class SpinSession:
    def __init__(
        self,
        table: Optional[PrizeTable] = None,
        timing: Optional[SpinTiming] = None,
        rng: Optional[random.Random] = None,
        session_id: Optional[str] = None,
    ):
        self.id = session_id or gen_id()
        self.table = table or default_table
        self.timing = timing or SpinTiming()
        self._rng = rng or random.SystemRandom()

        self.phase = SpinPhase.IDLE
        self.terminal_angle: Optional[float] = None
        self.prize_amount: Optional[int] = None
        self.is_spinning = False
        self.submission: Optional[Submission] = None
        self.discarded = False
        self.created_at = time.monotonic()

        self._handles: list[asyncio.TimerHandle] = []
        self._tracking: set[asyncio.Task] = set()
        self._registering = False

    @property
    def has_resolved(self) -> bool:
        return self.phase in (SpinPhase.RESOLVED, SpinPhase.REGISTERED)

    def _guard(self, event: str) -> None:
        if self.discarded:
            raise IllegalTransition(event, self.phase, "session discarded")

    # --- spin ---

    def start_spin(self) -> float:
        self._guard("start spin")
        if self.phase is SpinPhase.SPINNING:
            logger.debug("session %s already spinning, ignoring start", self.id)
            return self.terminal_angle
        if self.phase is not SpinPhase.IDLE:
            raise IllegalTransition("start spin", self.phase)

        self.terminal_angle = self._rng.random() * 360 + 360 * self.timing.min_revolutions
        self.prize_amount = None
        self.is_spinning = True
        self.phase = SpinPhase.SPINNING
        logger.info("session %s spin started, terminal angle %.3f", self.id, self.terminal_angle)
        return self.terminal_angle

    def stop_spin(self) -> None:
        """The wheel has visually come to rest."""
        if self.discarded or self.phase is not SpinPhase.SPINNING:
            return
        self.is_spinning = False

    def complete_spin(self) -> int:
        self._guard("complete spin")
        if self.has_resolved:
            logger.debug("session %s already resolved, ignoring completion", self.id)
            return self.prize_amount
        if self.phase is not SpinPhase.SPINNING:
            raise IllegalTransition("complete spin", self.phase)
        if self.is_spinning:
            raise IllegalTransition("complete spin", self.phase, "wheel still in motion")

        self.prize_amount = self.table.resolve(self.terminal_angle)
        self.phase = SpinPhase.RESOLVED
        logger.info("session %s resolved to %s", self.id, self.prize_amount)
        return self.prize_amount

    def schedule_completion(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Stop the wheel after the spin duration, resolve after the settle delay."""
        self._guard("schedule completion")
        loop = loop or asyncio.get_running_loop()
        stop_at = self.timing.spin_duration_seconds
        self._handles.append(loop.call_later(stop_at, self.stop_spin))
        self._handles.append(loop.call_later(
            stop_at + self.timing.settle_delay_seconds, self._timer_complete))

    def _timer_complete(self) -> None:
        if self.discarded:
            return
        try:
            self.complete_spin()
        except IllegalTransition as exc:
            logger.warning("session %s timer completion rejected: %s", self.id, exc)

    def discard(self) -> None:
        for handle in self._handles:
            handle.cancel()
        self._handles.clear()
        if not self.discarded:
            logger.info("session %s discarded in phase %s", self.id, self.phase.value)
        self.discarded = True

    # --- registration ---

    async def register(
        self,
        email: str,
        lead_sink: LeadSink,
        tracking_sink: Optional[TrackingSink] = None,
        context: Optional[RequestContext] = None,
        birthday: Optional[date] = None,
    ) -> Submission:
        self._guard("register")
        if self.phase is not SpinPhase.RESOLVED or self._registering:
            raise IllegalTransition("register", self.phase)
        normalized = check_email(email)
        if normalized is None:
            raise RegistrationValidationError(f"invalid email address: {email!r}")

        context = context or RequestContext()
        submission = Submission(
            email=normalized,
            prize_amount=self.prize_amount,
            timestamp=utcnow(),
            client_ip=context.client_ip,
            user_agent=context.user_agent,
            birthday=birthday,
        )

        self._registering = True
        try:
            if tracking_sink is not None:
                task = asyncio.create_task(self._track(tracking_sink, submission, context))
                self._tracking.add(task)
                task.add_done_callback(self._tracking.discard)

            try:
                saved = await asyncio.to_thread(lead_sink.save, submission)
            except Exception:
                logger.exception("session %s lead sink raised", self.id)
                saved = False
            if not saved:
                raise PersistenceError("failed to save submission")

            self.submission = submission
            self.phase = SpinPhase.REGISTERED
            logger.info("session %s registered for %s", self.id, self.prize_amount)
            return submission
        finally:
            self._registering = False

    async def _track(self, sink: TrackingSink, submission: Submission,
                     context: RequestContext) -> Optional[TrackingResult]:
        try:
            result = await sink.track(submission.email, submission.prize_amount, context)
        except Exception as exc:  # noqa: BLE001
            logger.warning("session %s conversion tracking failed: %s", self.id, exc)
            return None
        if not (result.lead_sent and result.purchase_sent):
            logger.warning("session %s conversion tracking incomplete: %s", self.id, result)
        return result

    async def drain(self) -> None:
        """Wait for outstanding tracking calls."""
        if self._tracking:
            await asyncio.gather(*list(self._tracking))


class SessionRegistry:
    """In-memory map of live sessions, owned by the web process.

    Sessions older than ``ttl_seconds`` are discarded (timers included)
    the next time a session is created.
    """

    def __init__(self, ttl_seconds: float = 3600):
        self.ttl_seconds = ttl_seconds
        self._sessions: dict[str, SpinSession] = {}

    def create(self, table: Optional[PrizeTable] = None,
               timing: Optional[SpinTiming] = None) -> SpinSession:
        self.prune()
        session = SpinSession(table=table, timing=timing)
        self._sessions[session.id] = session
        return session

    def get(self, session_id: str) -> Optional[SpinSession]:
        return self._sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return False
        session.discard()
        return True

    def forget(self, session_id: str) -> None:
        """Drop a finished session without touching its pending work."""
        self._sessions.pop(session_id, None)

    def prune(self) -> int:
        cutoff = time.monotonic() - self.ttl_seconds
        stale = [sid for sid, s in self._sessions.items() if s.created_at < cutoff]
        for sid in stale:
            self.discard(sid)
        return len(stale)

    def __len__(self) -> int:
        return len(self._sessions)
