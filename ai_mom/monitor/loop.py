"""Sense → infer → react loop.

``MonitorLoop`` owns the session lifecycle and the only mutable
:class:`MonitorStatus`.  A session runs one daemon timer thread that calls
:meth:`MonitorLoop.cycle` every ``interval_sec`` seconds.  Speech and event
logging are submitted to an executor and never awaited by the cycle.
"""

import logging
import threading
import time
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

from ai_mom.model.errors import MissingCredential, MonitorError, SessionActive
from ai_mom.model.models import (
    EventRecord,
    Frame,
    MonitoringMode,
    MonitorState,
    MonitorStatus,
    Verdict,
)
from ai_mom.storage.events import EventSink, NullEventSink

logger = logging.getLogger(__name__)

DEFAULT_INTERVAL_SEC = 6.0

READY_MESSAGE = "Mom is ready."
WATCHING_MESSAGE = "Mom is watching..."
HAPPY_MESSAGE = "Mom is happy."
PAUSED_MESSAGE = "Monitoring paused."
ERROR_MESSAGE = "Something went wrong."

StatusObserver = Callable[[MonitorStatus], None]


class Sampler(Protocol):
    def capture(self) -> Frame: ...


class VerdictClient(Protocol):
    def analyze(self, frame: Frame, mode: MonitoringMode, credential: str) -> Verdict: ...


class Announcer(Protocol):
    def announce(self, text: str) -> bool: ...


@dataclass
class Session:
    """start() から stop() までの監視セッション."""

    mode: MonitoringMode
    credential: str
    token: int
    started_at: float = field(default_factory=time.time)
    stop_event: threading.Event = field(default_factory=threading.Event)
    in_flight: threading.Lock = field(default_factory=threading.Lock)
    thread: threading.Thread | None = None


class MonitorLoop:
    """監視ループ本体. 状態遷移とスケジューリングを担当する."""

    def __init__(
        self,
        sampler: Sampler,
        client: VerdictClient,
        announcer: Announcer,
        sink: EventSink | None = None,
        *,
        interval_sec: float = DEFAULT_INTERVAL_SEC,
        subject_id: str = "anon",
        executor: Executor | None = None,
    ) -> None:
        """初期化

        Args:
            sampler: フレーム取得 (FrameSampler)
            client: 推論APIクライアント (GeminiClient)
            announcer: 読み上げチャネル (AnnouncementChannel)
            sink: 違反イベントの書き込み先. None なら保存しない
            interval_sec: サイクル間隔(秒)
            subject_id: イベントに付与する利用者ID
            executor: 副作用(読み上げ・記録)を流す Executor

        """
        if interval_sec <= 0:
            msg = f"interval_sec must be positive, got {interval_sec}"
            raise ValueError(msg)

        self.sampler = sampler
        self.client = client
        self.announcer = announcer
        self.sink = sink if sink is not None else NullEventSink()
        self.interval_sec = interval_sec
        self.subject_id = subject_id

        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="ai-mom-effects"
        )
        self._lock = threading.RLock()
        self._session: Session | None = None
        self._generation = 0
        self._status = MonitorStatus(state=MonitorState.IDLE, message=READY_MESSAGE)
        self._observers: list[StatusObserver] = []
        self._last_verdict: Verdict | None = None
        self._counters = {
            "cycles": 0,
            "good": 0,
            "warnings": 0,
            "errors": 0,
            "skipped": 0,
            "discarded": 0,
        }

    # ------------------------------------------------------------------
    # Observation
    @property
    def status(self) -> MonitorStatus:
        return self._status

    @property
    def is_active(self) -> bool:
        return self._session is not None

    @property
    def mode(self) -> MonitoringMode | None:
        session = self._session
        return session.mode if session else None

    def subscribe(self, observer: StatusObserver) -> None:
        """状態が変わるたびに呼ばれるコールバックを登録."""
        with self._lock:
            self._observers.append(observer)

    def unsubscribe(self, observer: StatusObserver) -> None:
        with self._lock:
            if observer in self._observers:
                self._observers.remove(observer)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            last = self._last_verdict
            return {
                **self._counters,
                "active": self._session is not None,
                "last_verdict": (
                    {"status": last.outcome, "message": last.message} if last else None
                ),
            }

    # ------------------------------------------------------------------
    # Lifecycle
    def start(self, mode: MonitoringMode | str, credential: str | None) -> MonitorStatus:
        """監視を開始する.

        Raises:
            MissingCredential: APIキーが空の場合（セッションは作られない）
            SessionActive: 既にセッションが動いている場合

        """
        mode = MonitoringMode(mode)
        if not credential:
            msg = "an API key is required before monitoring can start"
            raise MissingCredential(msg)

        with self._lock:
            if self._session is not None:
                msg = f"monitoring already active in {self._session.mode.value} mode"
                raise SessionActive(msg)
            self._generation += 1
            session = Session(mode=mode, credential=credential, token=self._generation)
            self._session = session
            status = self._set_status(
                MonitorState.IDLE, WATCHING_MESSAGE, active=True, mode=mode
            )
        self._notify(status)

        session.thread = threading.Thread(
            target=self._run,
            args=(session,),
            name=f"ai-mom-monitor-{session.token}",
            daemon=True,
        )
        session.thread.start()
        logger.info(
            "Monitoring started | mode=%s interval=%ss", mode.value, self.interval_sec
        )
        return status

    def stop(self) -> MonitorStatus:
        """監視を停止する. 停止済みなら何もしない.

        An in-flight cycle is not interrupted; its result is discarded when it
        resolves.
        """
        with self._lock:
            session = self._session
            if session is None:
                return self._status
            self._session = None
            session.stop_event.set()
            status = self._set_status(
                MonitorState.IDLE, PAUSED_MESSAGE, active=False, mode=session.mode
            )
        self._notify(status)
        logger.info("Monitoring stopped | mode=%s", session.mode.value)
        return status

    def close(self) -> None:
        """Teardown: stop the session and release the side-effect executor."""
        self.stop()
        if self._owns_executor:
            self._executor.shutdown(wait=False)

    def _run(self, session: Session) -> None:
        while not session.stop_event.wait(self.interval_sec):
            self._cycle(session)

    # ------------------------------------------------------------------
    # Cycle
    def cycle(self) -> bool:
        """Run one capture → analyze → react sequence now.

        Returns:
            bool: サイクルを実行した場合True、セッションなし・実行中でスキップした場合False

        """
        session = self._session
        if session is None:
            return False
        return self._cycle(session)

    def _cycle(self, session: Session) -> bool:
        if not session.in_flight.acquire(blocking=False):
            with self._lock:
                self._counters["skipped"] += 1
            logger.info("Cycle skipped: previous cycle still in flight")
            return False

        try:
            with self._lock:
                if not self._is_current(session):
                    return False
                self._counters["cycles"] += 1
                analyzing = self._set_status(
                    MonitorState.ANALYZING,
                    self._status.message,
                    active=True,
                    mode=session.mode,
                )
            self._notify(analyzing)

            try:
                frame = self.sampler.capture()
                verdict = self.client.analyze(frame, session.mode, session.credential)
            except MonitorError as e:
                logger.warning("Cycle failed: %s: %s", e.__class__.__name__, e)
                self._apply_error(session)
            except Exception:
                logger.exception("Unexpected error during cycle")
                self._apply_error(session)
            else:
                self._apply_verdict(session, verdict)
            return True
        finally:
            session.in_flight.release()

    def _apply_verdict(self, session: Session, verdict: Verdict) -> None:
        with self._lock:
            if not self._is_current(session):
                self._counters["discarded"] += 1
                logger.info("Verdict discarded: session no longer active")
                return
            self._last_verdict = verdict
            if verdict.is_bad:
                self._counters["warnings"] += 1
                status = self._set_status(
                    MonitorState.WARNING, verdict.message, active=True, mode=session.mode
                )
            else:
                self._counters["good"] += 1
                status = self._set_status(
                    MonitorState.GOOD, HAPPY_MESSAGE, active=True, mode=session.mode
                )
        self._notify(status)

        logger.info("Verdict | mode=%s outcome=%s", session.mode.value, verdict.outcome)
        if verdict.is_bad:
            event = EventRecord(
                mode=session.mode,
                message=verdict.message,
                category="violation",
                subject_id=self.subject_id,
            )
            self._dispatch("announce", self.announcer.announce, verdict.message)
            self._dispatch("record", self.sink.record, event)

    def _apply_error(self, session: Session) -> None:
        with self._lock:
            if not self._is_current(session):
                self._counters["discarded"] += 1
                return
            self._counters["errors"] += 1
            status = self._set_status(
                MonitorState.ERROR,
                self._status.message or ERROR_MESSAGE,
                active=True,
                mode=session.mode,
            )
        self._notify(status)

    # ------------------------------------------------------------------
    # Helpers
    def _is_current(self, session: Session) -> bool:
        current = self._session
        return current is not None and current.token == session.token

    def _set_status(
        self,
        state: MonitorState,
        message: str,
        *,
        active: bool,
        mode: MonitoringMode | None,
    ) -> MonitorStatus:
        """状態を更新する. 呼び出し側は self._lock を保持していること."""
        status = MonitorStatus(state=state, message=message, active=active, mode=mode)
        self._status = status
        return status

    def _notify(self, status: MonitorStatus) -> None:
        """Call observers with the lock released so they may call back into the loop."""
        with self._lock:
            observers = list(self._observers)
        for observer in observers:
            try:
                observer(status)
            except Exception:
                logger.exception("Status observer failed")

    def _dispatch(self, name: str, func: Callable[..., Any], *args: Any) -> None:
        """副作用を投げっぱなしで実行する."""
        try:
            self._executor.submit(self._call_quietly, name, func, *args)
        except RuntimeError as e:
            logger.warning("Side effect %s not dispatched: %s", name, e)

    @staticmethod
    def _call_quietly(name: str, func: Callable[..., Any], *args: Any) -> None:
        try:
            func(*args)
        except Exception as e:  # noqa: BLE001
            logger.warning("Side effect %s failed: %s", name, e)
