"""Run session lifecycle: Idle → Active ⇄ Paused → Completed.

A ``RunSessionMachine`` owns everything that changes during a run (buffered
samples, the accepted trajectory, the accumulator).  Sample ingestion and the
1 Hz tick are serialized under one lock; observers only ever receive frozen
``RunSession`` snapshots taken after a complete update.

``SessionRegistry`` is the per-process table of live machines.  It is an
explicit object (the web app keeps one in ``app.extensions``) and enforces at
most one active session per owner.
"""

from __future__ import annotations

import logging
import threading
import uuid
from collections import deque
from collections.abc import Callable
from dataclasses import asdict, dataclass
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from .appconfig import get_section
from .errors import INVALID_TRANSITION, SESSION_ALREADY_ACTIVE, SessionNotFound, StateError
from .geo import GeoSample, GeoSampleFilter
from .metrics import DistanceAccumulator

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(UTC)


class SessionState(Enum):
    IDLE = "Idle"
    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class RunSession:
    """Immutable view of a session at one point in time."""

    id: str
    owner_id: str
    state: SessionState
    start_time: datetime | None
    end_time: datetime | None
    elapsed_seconds: float
    distance_meters: float
    route: tuple[GeoSample, ...]
    average_pace_min_per_km: float
    current_pace_min_per_km: float
    peak_speed_mps: float
    calories_estimate: int
    gems_earned: int = 0
    is_flagged: bool = False

    @property
    def average_speed_mps(self) -> float:
        if self.elapsed_seconds <= 0:
            return 0.0
        return self.distance_meters / self.elapsed_seconds

    def to_dict(self, include_route: bool = False) -> dict[str, Any]:
        data = asdict(self)
        data["state"] = self.state.value
        data["start_time"] = self.start_time.isoformat() if self.start_time else None
        data["end_time"] = self.end_time.isoformat() if self.end_time else None
        data["average_speed_mps"] = self.average_speed_mps
        if include_route:
            data["route"] = [point.to_dict() for point in self.route]
        else:
            data.pop("route")
            data["route_points"] = len(self.route)
        return data


class RunSessionMachine:
    """State machine driving the filter and accumulator for one run."""

    def __init__(
        self,
        owner_id: str,
        session_id: str | None = None,
        *,
        sample_filter: GeoSampleFilter | None = None,
        accumulator: DistanceAccumulator | None = None,
        clock: Clock = utc_now,
        tick_seconds: float = 1.0,
        run_ticker: bool = True,
    ) -> None:
        self.owner_id = owner_id
        self.session_id = session_id or str(uuid.uuid4())
        self.sample_filter = sample_filter or GeoSampleFilter()
        self.accumulator = accumulator or DistanceAccumulator()
        self.clock = clock
        self.tick_seconds = tick_seconds
        self.run_ticker = run_ticker

        self._lock = threading.RLock()
        self._state = SessionState.IDLE
        self._pending: deque[GeoSample] = deque()
        self._route: list[GeoSample] = []
        self._position: GeoSample | None = None
        self._start_time: datetime | None = None
        self._end_time: datetime | None = None
        self._active_since: datetime | None = None
        self._banked_seconds = 0.0
        self._final: RunSession | None = None
        self._observers: list[Callable[[RunSession], None]] = []
        self._ticker: threading.Thread | None = None
        self._ticker_stop = threading.Event()

    @classmethod
    def from_config(cls, owner_id: str, config: dict[str, Any] | None, **kwargs) -> RunSessionMachine:
        tracking = get_section(config, "tracking")
        kwargs.setdefault("tick_seconds", float(tracking["tick_seconds"]))
        return cls(
            owner_id,
            sample_filter=GeoSampleFilter.from_config(tracking),
            accumulator=DistanceAccumulator.from_config(tracking),
            **kwargs,
        )

    # ---- lifecycle -----------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._state

    def start(self) -> RunSession:
        with self._lock:
            self._require(SessionState.IDLE, action="start")
            now = self.clock()
            self.accumulator.reset()
            self._pending.clear()
            self._route.clear()
            self._position = None
            self._start_time = now
            self._active_since = now
            self._banked_seconds = 0.0
            self._state = SessionState.ACTIVE
            snapshot = self._snapshot(now)
            self._start_ticker()
        logger.info("session %s started for owner %s", self.session_id, self.owner_id)
        self._publish(snapshot)
        return snapshot

    def pause(self) -> RunSession:
        with self._lock:
            self._require(SessionState.ACTIVE, action="pause")
            now = self.clock()
            self._update(now)
            self._banked_seconds = self._elapsed(now)
            self._active_since = None
            self._pending.clear()
            self._state = SessionState.PAUSED
            snapshot = self._snapshot(now)
            ticker = self._detach_ticker()
        self._join_ticker(ticker)
        self._publish(snapshot)
        return snapshot

    def resume(self) -> RunSession:
        with self._lock:
            self._require(SessionState.PAUSED, action="resume")
            now = self.clock()
            self._active_since = now
            self._state = SessionState.ACTIVE
            snapshot = self._snapshot(now)
            self._start_ticker()
        self._publish(snapshot)
        return snapshot

    def finish(self) -> RunSession:
        """Stop the run and return the final, immutable session."""
        with self._lock:
            self._require(SessionState.ACTIVE, SessionState.PAUSED, action="finish")
            now = self.clock()
            if self._state is SessionState.ACTIVE:
                self._update(now)
                self._banked_seconds = self._elapsed(now)
            self._active_since = None
            self._pending.clear()
            self._end_time = now
            self._state = SessionState.COMPLETED
            self._final = self._snapshot(now)
            snapshot = self._final
            ticker = self._detach_ticker()
        self._join_ticker(ticker)
        logger.info(
            "session %s completed: %.1f m in %.0f s",
            self.session_id,
            snapshot.distance_meters,
            snapshot.elapsed_seconds,
        )
        self._publish(snapshot)
        return snapshot

    # ---- sample stream -------------------------------------------------------

    def ingest(self, sample: GeoSample) -> bool:
        """Buffer *sample* for the next tick.

        Returns False when the sample was dropped because the run is paused.
        """
        with self._lock:
            if self._state is SessionState.PAUSED:
                return False
            self._require(SessionState.ACTIVE, action="ingest")
            self._pending.append(sample)
            return True

    def tick(self) -> RunSession | None:
        with self._lock:
            if self._state is not SessionState.ACTIVE:
                return None
            now = self.clock()
            self._update(now)
            snapshot = self._snapshot(now)
        self._publish(snapshot)
        return snapshot

    def snapshot(self) -> RunSession:
        with self._lock:
            if self._final is not None:
                return self._final
            return self._snapshot(self.clock())

    def subscribe(self, observer: Callable[[RunSession], None]) -> None:
        self._observers.append(observer)

    # ---- internals -----------------------------------------------------------

    def _require(self, *states: SessionState, action: str) -> None:
        if self._state not in states:
            raise StateError(
                INVALID_TRANSITION,
                f"cannot {action} session {self.session_id} in state {self._state.value}",
                self.session_id,
            )

    def _elapsed(self, now: datetime) -> float:
        if self._active_since is None:
            return self._banked_seconds
        return self._banked_seconds + max((now - self._active_since).total_seconds(), 0.0)

    def _update(self, now: datetime) -> None:
        while self._pending:
            self._apply(self._pending.popleft())
        self.accumulator.tick(self._elapsed(now))

    def _apply(self, sample: GeoSample) -> None:
        decision = self.sample_filter.evaluate(
            sample,
            self._position,
            self._route[-1] if self._route else None,
            len(self._route),
        )
        if decision.append_to_route:
            self._route.append(sample)
        if decision.accepted and decision.delta_meters > 0:
            speed = sample.instant_speed_mps
            if speed is None and self._position is not None:
                seconds = sample.seconds_since(self._position)
                speed = decision.delta_meters / seconds if seconds > 0 else None
            self.accumulator.add(decision.delta_meters, speed)
        if decision.moves_position:
            self._position = sample

    def _snapshot(self, now: datetime) -> RunSession:
        acc = self.accumulator
        return RunSession(
            id=self.session_id,
            owner_id=self.owner_id,
            state=self._state,
            start_time=self._start_time,
            end_time=self._end_time,
            elapsed_seconds=self._elapsed(now),
            distance_meters=acc.distance_meters,
            route=tuple(self._route),
            average_pace_min_per_km=acc.average_pace_min_per_km,
            current_pace_min_per_km=acc.current_pace_min_per_km,
            peak_speed_mps=acc.peak_speed_mps,
            calories_estimate=acc.calories_estimate,
        )

    def _publish(self, snapshot: RunSession) -> None:
        for observer in list(self._observers):
            try:
                observer(snapshot)
            except Exception:
                logger.exception("session observer failed for %s", self.session_id)

    # Tickers are started and detached only while holding _lock.

    def _start_ticker(self) -> None:
        if not self.run_ticker:
            return
        stop = threading.Event()

        def _loop() -> None:
            while not stop.wait(self.tick_seconds):
                self.tick()

        self._ticker_stop = stop
        self._ticker = threading.Thread(target=_loop, name=f"tick-{self.session_id}", daemon=True)
        self._ticker.start()

    def _detach_ticker(self) -> threading.Thread | None:
        self._ticker_stop.set()
        ticker, self._ticker = self._ticker, None
        return ticker

    def _join_ticker(self, ticker: threading.Thread | None) -> None:
        # Joined outside _lock: the ticker may be waiting on it inside tick()
        if ticker is not None and ticker is not threading.current_thread():
            ticker.join(timeout=self.tick_seconds * 2)


class SessionRegistry:
    """Live sessions of this process, at most one active per owner."""

    def __init__(self, machine_factory: Callable[[str], RunSessionMachine] | None = None) -> None:
        self._factory = machine_factory or RunSessionMachine
        self._lock = threading.Lock()
        self._sessions: dict[str, RunSessionMachine] = {}
        self._by_owner: dict[str, str] = {}

    def start(self, owner_id: str) -> RunSessionMachine:
        with self._lock:
            existing = self._by_owner.get(owner_id)
            if existing is not None:
                raise StateError(
                    SESSION_ALREADY_ACTIVE,
                    f"owner {owner_id} already has session {existing} in progress",
                    existing,
                )
            machine = self._factory(owner_id)
            machine.start()
            self._sessions[machine.session_id] = machine
            self._by_owner[owner_id] = machine.session_id
            return machine

    def get(self, session_id: str, owner_id: str | None = None) -> RunSessionMachine:
        with self._lock:
            machine = self._sessions.get(session_id)
        # Another owner's session is reported as missing, not forbidden
        if machine is None or (owner_id is not None and machine.owner_id != owner_id):
            raise SessionNotFound(session_id)
        return machine

    def active_session_id(self, owner_id: str) -> str | None:
        with self._lock:
            return self._by_owner.get(owner_id)

    def complete(self, session_id: str, owner_id: str | None = None) -> RunSession:
        """Stop the session and return its final snapshot.

        The machine stays registered, so a finish that fails to persist can be
        retried from the same snapshot; call ``release`` once the outcome is
        settled.  The owner may start a new session straight away.
        """
        machine = self.get(session_id, owner_id)
        try:
            completed = machine.finish()
        except StateError:
            if machine.state is not SessionState.COMPLETED:
                raise
            completed = machine.snapshot()
        with self._lock:
            if self._by_owner.get(machine.owner_id) == session_id:
                del self._by_owner[machine.owner_id]
        return completed

    def release(self, session_id: str) -> None:
        with self._lock:
            machine = self._sessions.pop(session_id, None)
            if machine is not None and self._by_owner.get(machine.owner_id) == session_id:
                del self._by_owner[machine.owner_id]

    def finish(self, session_id: str, owner_id: str | None = None) -> RunSession:
        completed = self.complete(session_id, owner_id)
        self.release(session_id)
        return completed

    def __contains__(self, session_id: str) -> bool:
        with self._lock:
            return session_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
