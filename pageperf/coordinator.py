"""
Session coordinator: one full analysis run per page session.

    start -> (readiness check, retried) -> run: detect -> collect -> score -> recommend -> publish

Lifecycle rules:
- a new start() supersedes the live run for that session (observers released,
  task cancelled best-effort); anything the old run still writes is rejected by
  the store's generation check
- progress per session is published in non-decreasing order
- unexpected faults are caught here: session -> error, resources released
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from .aggregator import MetricsAggregator
from .config import AnalyzerConfig
from .errors import PreconditionFailure, with_retry
from .models import AnalysisResult, MetricKind, PageFeatures, Session, SessionStatus
from .page.base import PageSource, ResourceScope
from .recommendations import generate_recommendations
from .scoring import score_bundle
from .server.notifier import Notifier
from .session_store import SessionStore

logger = logging.getLogger("pageperf.coordinator")

PageResolver = Callable[[str], Awaitable["PageSource | None"]]

NOT_READY_MESSAGE = "Please refresh the page and try again. The analyzer needs to be initialized."

PROGRESS_DETECT = 10
PROGRESS_CONFIGURATION = 30
PROGRESS_STRUCTURE = 50
PROGRESS_MEASURING = 70
PROGRESS_PER_METRIC = 6
PROGRESS_RECOMMENDING = 90
PROGRESS_DONE = 100


@dataclass(frozen=True)
class StartResult:
    accepted: bool
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        if self.accepted:
            return {"success": True}
        return {"success": False, "error": self.reason or "rejected"}


@dataclass(frozen=True)
class StatusReport:
    status: SessionStatus
    progress: int = 0
    message: str = ""
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"status": self.status.value}
        if self.status == SessionStatus.RUNNING:
            out["progress"] = self.progress
            out["message"] = self.message
        elif self.status == SessionStatus.COMPLETED:
            out["result"] = self.result
        elif self.status == SessionStatus.ERROR:
            out["error"] = self.error
        return out


@dataclass
class _Run:
    session: Session
    page: PageSource
    scope: ResourceScope
    task: asyncio.Task[Any] | None = None


class SessionCoordinator:
    """Orchestrates runs and owns session lifecycle (start, progress, completion, error, teardown)."""

    def __init__(
        self,
        resolve_page: PageResolver,
        *,
        config: AnalyzerConfig | None = None,
        store: SessionStore | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.config = config or AnalyzerConfig()
        self.store = store if store is not None else SessionStore(ttl_ms=self.config.cache_ttl_ms)
        self.notifier = notifier if notifier is not None else Notifier()
        self._resolve_page = resolve_page
        self._sessions: dict[str, Session] = {}
        self._pages: dict[str, PageSource] = {}
        self._runs: dict[str, _Run] = {}
        self._ensure_ready = with_retry(
            max_attempts=self.config.ready_attempts,
            delay=self.config.ready_delay,
            backoff=self.config.ready_backoff,
        )(self._check_ready)

    # ─────────────────────────────────────────────────────────────────────────
    # Public API
    # ─────────────────────────────────────────────────────────────────────────

    async def start(self, session_id: str) -> StartResult:
        sid = str(session_id or "").strip()
        if not sid:
            return StartResult(False, "No session id provided")

        self._supersede(sid)
        generation = self.store.start(sid)
        session = Session(session_id=sid, resource_identifier="", generation=generation)
        session.status = SessionStatus.RUNNING
        session.message = "Waiting for page..."
        self._sessions[sid] = session
        logger.info("analysis_start session=%s generation=%s", sid, generation)

        try:
            page = await self._ensure_ready(sid)
        except PreconditionFailure as exc:
            if not self.store.is_current(sid, generation):
                await self._release_orphan_page(sid)
                return StartResult(False, "Superseded by a newer analysis")
            page = self._pages.get(sid)
            session.resource_identifier = page.url if page is not None else ""
            self._fail(session, exc.reason)
            return StartResult(False, exc.reason)

        if not self.store.is_current(sid, generation):
            await self._release_orphan_page(sid)
            return StartResult(False, "Superseded by a newer analysis")

        session.resource_identifier = page.url
        run = _Run(session=session, page=page, scope=ResourceScope(f"{sid}#{generation}"))
        self._runs[sid] = run
        run.task = asyncio.create_task(self._run_guarded(run), name=f"pageperf-run-{sid}")
        return StartResult(True)

    async def run(self, session: Session, page: PageSource, scope: ResourceScope) -> AnalysisResult | None:
        self._progress(session, PROGRESS_DETECT, "Checking page framework...")
        features = PageFeatures.from_dict(await page.detect_features())
        if not features.is_target_framework:
            logger.info("analysis_not_target session=%s", session.session_id)
            result = AnalysisResult(is_target_framework=False, features=features)
            return result if self._complete(session, result) else None

        self._progress(session, PROGRESS_CONFIGURATION, "Detecting configuration...")
        self._progress(session, PROGRESS_STRUCTURE, "Analyzing page structure...")
        self._progress(session, PROGRESS_MEASURING, "Measuring performance...")

        def on_metric(done: int, _total: int, kind: MetricKind) -> None:
            self._progress(session, PROGRESS_MEASURING + done * PROGRESS_PER_METRIC, f"Measured {kind.value}")

        bundle = await MetricsAggregator(page, self.config, scope=scope).collect(on_progress=on_metric)
        logger.info(
            "analysis_metrics session=%s paint=%s layout=%s interaction=%s",
            session.session_id,
            bundle.paint.value,
            bundle.layout.value,
            bundle.interaction.value,
        )

        self._progress(session, PROGRESS_RECOMMENDING, "Generating recommendations...")
        scores = score_bundle(bundle, features.router)
        recommendations = generate_recommendations(bundle, scores, features)
        result = AnalysisResult(
            is_target_framework=True,
            features=features,
            bundle=bundle,
            scores=scores,
            recommendations=tuple(recommendations),
        )
        return result if self._complete(session, result) else None

    def get_status(self, session_id: str) -> StatusReport:
        session = self._sessions.get(session_id)
        if session is not None and session.status == SessionStatus.RUNNING:
            return StatusReport(SessionStatus.RUNNING, progress=session.progress, message=session.message)

        page = self._pages.get(session_id)
        if page is not None:
            current: str | None = page.url
        else:
            current = session.resource_identifier if session is not None else None
        entry = self.store.get(session_id, current)
        if entry is None:
            return StatusReport(SessionStatus.NOT_STARTED)
        if entry.error is not None:
            return StatusReport(SessionStatus.ERROR, error=entry.error)
        assert entry.result is not None
        return StatusReport(SessionStatus.COMPLETED, progress=PROGRESS_DONE, result=entry.result.to_dict())

    async def status(self, session_id: str) -> StatusReport:
        """get_status() against the page's live URL rather than the last one seen."""
        page = self._pages.get(session_id)
        if page is not None:
            try:
                await page.current_url()
            except Exception as exc:  # noqa: BLE001
                logger.warning("page_url_refresh_failed session=%s error=%s", session_id, exc)
        return self.get_status(session_id)

    def clear(self, session_id: str) -> bool:
        self._supersede(session_id)
        self._sessions.pop(session_id, None)
        return self.store.clear(session_id)

    def clear_all(self) -> int:
        for sid in list(self._runs):
            self._supersede(sid)
        self._sessions.clear()
        return self.store.clear_all()

    async def teardown(self, session_id: str) -> bool:
        """Page closed: release the run, forget the session and its page."""
        had_session = session_id in self._sessions or session_id in self._pages
        self.clear(session_id)
        page = self._pages.pop(session_id, None)
        if page is not None:
            try:
                await page.close()
            except Exception as exc:  # noqa: BLE001
                logger.warning("page_close_failed session=%s error=%s", session_id, exc)
        logger.info("session_teardown session=%s", session_id)
        return had_session

    async def wait(self, session_id: str, timeout: float | None = None) -> StatusReport:
        run = self._runs.get(session_id)
        if run is not None and run.task is not None:
            await asyncio.wait({run.task}, timeout=timeout)
        return await self.status(session_id)

    async def close(self) -> None:
        for sid in list(set(self._sessions) | set(self._pages)):
            await self.teardown(sid)

    def live_observations(self, session_id: str) -> int:
        run = self._runs.get(session_id)
        return run.scope.live_observations if run is not None else 0

    # ─────────────────────────────────────────────────────────────────────────
    # Internals
    # ─────────────────────────────────────────────────────────────────────────

    async def _check_ready(self, session_id: str) -> PageSource:
        try:
            page = self._pages.get(session_id) or await self._resolve_page(session_id)
        except Exception as exc:  # noqa: BLE001
            raise PreconditionFailure(f"Could not reach the page: {exc}") from exc
        if page is None:
            raise PreconditionFailure(NOT_READY_MESSAGE, details={"sessionId": session_id})
        self._pages[session_id] = page
        try:
            alive = await page.ping()
        except Exception as exc:  # noqa: BLE001
            raise PreconditionFailure(NOT_READY_MESSAGE, details={"error": str(exc)}) from exc
        if not alive:
            raise PreconditionFailure(NOT_READY_MESSAGE, details={"sessionId": session_id})
        return page

    async def _run_guarded(self, run: _Run) -> None:
        session = run.session
        try:
            await self.run(session, run.page, run.scope)
        except asyncio.CancelledError:
            logger.info("analysis_cancelled session=%s generation=%s", session.session_id, session.generation)
            raise
        except Exception as exc:  # noqa: BLE001
            logger.exception("analysis_failed session=%s", session.session_id)
            self._fail(session, str(exc) or type(exc).__name__)
        finally:
            run.scope.release_all()
            if self._runs.get(session.session_id) is run:
                del self._runs[session.session_id]

    async def _release_orphan_page(self, session_id: str) -> None:
        # Torn down (or cleared) while the readiness check was in flight.
        if session_id in self._sessions:
            return
        page = self._pages.pop(session_id, None)
        if page is None:
            return
        logger.info("orphan_page_closed session=%s", session_id)
        try:
            await page.close()
        except Exception as exc:  # noqa: BLE001
            logger.warning("page_close_failed session=%s error=%s", session_id, exc)

    def _supersede(self, session_id: str) -> None:
        run = self._runs.pop(session_id, None)
        if run is None:
            return
        logger.info("analysis_superseded session=%s generation=%s", session_id, run.session.generation)
        run.scope.release_all()
        if run.task is not None and not run.task.done():
            run.task.cancel()

    def _is_current(self, session: Session) -> bool:
        return self._sessions.get(session.session_id) is session and self.store.is_current(
            session.session_id, session.generation
        )

    def _progress(self, session: Session, progress: int, message: str) -> None:
        if not self._is_current(session):
            return
        if progress < session.progress:
            return
        session.progress = progress
        session.message = message
        logger.info("analysis_progress session=%s progress=%s %s", session.session_id, progress, message)
        self.notifier.progress(session.session_id, progress, message)

    def _complete(self, session: Session, result: AnalysisResult) -> bool:
        written = self.store.write(
            session.session_id, session.generation, session.resource_identifier, result=result
        )
        if not written or not self._is_current(session):
            logger.info("analysis_result_dropped session=%s generation=%s", session.session_id, session.generation)
            return False
        self._progress(session, PROGRESS_DONE, "Analysis complete")
        session.status = SessionStatus.COMPLETED
        self.notifier.completed(session.session_id, result.to_dict())
        return True

    def _fail(self, session: Session, reason: str) -> None:
        written = self.store.write(session.session_id, session.generation, session.resource_identifier, error=reason)
        if not written or not self._is_current(session):
            logger.info("analysis_error_dropped session=%s generation=%s", session.session_id, session.generation)
            return
        session.status = SessionStatus.ERROR
        session.message = reason
        self.notifier.error(session.session_id, reason)
