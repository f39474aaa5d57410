"""Single-writer holder of one active pipeline session per owner."""

from collections.abc import Callable, Iterable
from threading import RLock

from jobpilot.agents.state import PipelineSession, utcnow
from jobpilot.core.enums import IN_FLIGHT_STATES, REVIEW_STATES, PipelineState
from jobpilot.core.errors import (
    InvalidTransitionError,
    SessionBusyError,
    SessionNotFoundError,
    StaleSessionError,
)
from jobpilot.core.logging import get_logger
from jobpilot.services.activity import DEFAULT_LIMIT, ActivityLog

logger = get_logger(__name__)

Mutator = Callable[[PipelineSession], None]


class SessionStore:
    """Stores sessions keyed by owner id.

    Every write goes through ``transition`` or ``mutate``; both copy the
    stored session, apply the change to the copy and swap it in only when
    the change succeeds, so a failed precondition never leaves a partial
    write behind. Readers always receive deep copies.
    """

    def __init__(self, activity_limit: int = DEFAULT_LIMIT) -> None:
        self.activity_limit = activity_limit
        self._sessions: dict[str, PipelineSession] = {}
        self._activity: dict[str, ActivityLog] = {}
        self._lock = RLock()

    def create(self, session: PipelineSession, *, advance_to: PipelineState | None = None) -> PipelineSession:
        """Install a fresh session for its owner, replacing a finished one.

        ``advance_to`` moves the new session out of its initial state in the
        same critical section, so two concurrent starts cannot both win.
        """
        with self._lock:
            existing = self._sessions.get(session.owner_id)
            if existing is not None:
                self._check_replaceable(existing)
                self._activity.pop(existing.session_id, None)
            stored = session.model_copy(deep=True)
            if advance_to is not None:
                stored.state = advance_to
            self._sessions[session.owner_id] = stored
            self._activity[session.session_id] = ActivityLog(self.activity_limit)
            return self._snapshot(stored)

    def get(self, owner_id: str, session_id: str | None = None) -> PipelineSession:
        with self._lock:
            session = self._require(owner_id, session_id)
            return self._snapshot(session)

    def peek(self, owner_id: str) -> PipelineSession | None:
        with self._lock:
            session = self._sessions.get(owner_id)
            return self._snapshot(session) if session else None

    def transition(
        self,
        owner_id: str,
        session_id: str,
        expected: PipelineState | Iterable[PipelineState],
        target: PipelineState,
        mutate: Mutator | None = None,
        *,
        background: bool = False,
    ) -> PipelineSession:
        """Atomic compare-and-set on ``state``.

        Raises SessionBusyError when the session is mid-stage and
        InvalidTransitionError when it is in any other unexpected state.
        """
        allowed = {expected} if isinstance(expected, PipelineState) else set(expected)
        with self._lock:
            current = self._require(owner_id, session_id, background=background)
            if current.state not in allowed:
                if current.state in IN_FLIGHT_STATES:
                    raise SessionBusyError(f"busy: pipeline is {current.state.value}")
                names = ", ".join(sorted(state.value for state in allowed))
                raise InvalidTransitionError(
                    f"Cannot move to {target.value} from {current.state.value} (expected {names})"
                )
            working = current.model_copy(deep=True)
            if mutate is not None:
                mutate(working)
            working.state = target
            working.updated_at = utcnow()
            self._sessions[owner_id] = working
            return self._snapshot(working)

    def mutate(self, owner_id: str, session_id: str, mutate: Mutator, *, background: bool = False) -> PipelineSession:
        with self._lock:
            current = self._require(owner_id, session_id, background=background)
            working = current.model_copy(deep=True)
            mutate(working)
            working.updated_at = utcnow()
            self._sessions[owner_id] = working
            return self._snapshot(working)

    def log(self, owner_id: str, session_id: str, message: str) -> None:
        with self._lock:
            session = self._sessions.get(owner_id)
            if session is None or session.session_id != session_id:
                logger.debug("Dropped activity for stale session", extra={"extra": {"session_id": session_id}})
                return
            activity = self._activity[session_id]
        activity.append(message)
        logger.info(message, extra={"extra": {"owner_id": owner_id, "session_id": session_id}})

    def reset(self, owner_id: str) -> bool:
        with self._lock:
            session = self._sessions.pop(owner_id, None)
            if session is None:
                return False
            self._activity.pop(session.session_id, None)
            return True

    def _require(self, owner_id: str, session_id: str | None, *, background: bool = False) -> PipelineSession:
        session = self._sessions.get(owner_id)
        if session is None:
            if background:
                raise StaleSessionError(f"Pipeline {session_id} is no longer active")
            raise SessionNotFoundError("No active pipeline for this user")
        if session_id is not None and session.session_id != session_id:
            if background:
                raise StaleSessionError(f"Pipeline {session_id} is no longer active")
            raise SessionNotFoundError(f"Pipeline {session_id} not found")
        return session

    def _check_replaceable(self, existing: PipelineSession) -> None:
        if existing.state in IN_FLIGHT_STATES:
            raise SessionBusyError(f"busy: pipeline is {existing.state.value}")
        if existing.state in REVIEW_STATES:
            raise InvalidTransitionError("A review is pending; approve, reject or reset the current pipeline first")
        if existing.state == PipelineState.ERROR and not existing.error_recoverable:
            raise InvalidTransitionError("The last pipeline failed; reset before starting again")

    def _snapshot(self, session: PipelineSession) -> PipelineSession:
        copy = session.model_copy(deep=True)
        activity = self._activity.get(session.session_id)
        copy.activity_log = activity.entries() if activity else []
        return copy
