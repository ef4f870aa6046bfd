"""
Explain Service

Drives the two-phase query drill-down:
- an immediate provisional detail built from local data
- the asynchronous explain-analyze result (or failure) patched in

Only the current session may change the displayed detail. A new ``open``
or ``close`` cancels the in-flight request, and any late completion of an
older session is discarded.
"""

import asyncio
from dataclasses import replace
from typing import Callable, List, Optional, Sequence

from dbpulse.analysis.plan_hints import suggest_from_plan
from dbpulse.analysis.reconciliation import samples_for_hash
from dbpulse.analysis.window_metrics import classify_severity, is_modifying_query
from dbpulse.core.constants import DetailStatus, ExecutionMode, ExplainPhase
from dbpulse.core.exceptions import BackendRejectedError, DBPulseError, user_friendly_error_message
from dbpulse.core.logger import get_logger, log_exception
from dbpulse.models.query_metrics_models import (
    ExplainResult,
    ExplainSession,
    QueryDetail,
    RawExecutionSample,
    ReconciledQueryView,
    TimingStats,
)

logger = get_logger('services.explain')

ANALYZING_TEXT = "Analyzing execution plan..."

SessionListener = Callable[[ExplainSession], None]

_STATUS_BY_MODE = {
    ExecutionMode.ESTIMATE: DetailStatus.SAFE_MODE,
    ExecutionMode.ANALYZE: DetailStatus.EXECUTED,
    # Unknown mode never claims the statement was run
    ExecutionMode.UNKNOWN: DetailStatus.SAFE_MODE,
}


def expected_execution_mode(query_text: str) -> ExecutionMode:
    """Modifying statements are expected to be estimated, never run"""
    return ExecutionMode.ESTIMATE if is_modifying_query(query_text) else ExecutionMode.ANALYZE


def build_placeholder_detail(
    view: ReconciledQueryView,
    samples: Sequence[RawExecutionSample] = (),
) -> QueryDetail:
    """Provisional detail from row-level stats and local samples only"""
    query_text = view.full_query or view.short_query
    history = samples_for_hash(samples, view.query_hash)
    latest = history[0] if history else None
    return QueryDetail(
        query_hash=view.query_hash,
        query_text=query_text,
        status=DetailStatus.ANALYZING,
        provisional=True,
        avg_execution_time_ms=view.avg_time_ms,
        total_calls=view.call_count,
        resources=view.resources,
        explain_text=ANALYZING_TEXT,
        timing=TimingStats.from_values([s.execution_time_ms for s in history]),
        planning_time_ms=latest.planning_time_ms if latest else None,
        execution_time_ms=latest.execution_time_ms if latest else None,
        is_modifying_query=is_modifying_query(query_text),
    )


def apply_explain_result(detail: QueryDetail, result: ExplainResult) -> QueryDetail:
    """Completed detail: plan, timing and suggestion replaced"""
    execution_time = result.execution_time_ms
    if execution_time is None:
        execution_time = detail.execution_time_ms
    suggestion = result.suggestion or suggest_from_plan(
        result.explain_plan,
        classify_severity(execution_time if execution_time is not None else detail.avg_execution_time_ms),
    )
    return replace(
        detail,
        status=_STATUS_BY_MODE[result.execution_mode],
        provisional=False,
        explain_text=result.explain_plan,
        execution_time_ms=execution_time,
        planning_time_ms=result.planning_time_ms if result.planning_time_ms is not None else detail.planning_time_ms,
        execution_mode=result.execution_mode,
        suggestion=suggestion,
        error_message=None,
    )


def apply_explain_failure(detail: QueryDetail, message: str) -> QueryDetail:
    """Failed detail: local stats kept, only plan text and badge replaced"""
    return replace(
        detail,
        status=DetailStatus.FAILED,
        provisional=False,
        explain_text=f"Execution plan analysis failed: {message}",
        error_message=message,
    )


class ExplainOrchestrator:
    """
    Explain session state machine

    IDLE -> REQUESTED -> COMPLETED | FAILED, with CANCELLED when a new
    session starts or the view closes while a request is in flight.

    Usage:
        orchestrator = ExplainOrchestrator(client)
        orchestrator.add_listener(render)
        orchestrator.open(view, database_id, samples)
    """

    def __init__(self, client):
        self._client = client
        self._session: Optional[ExplainSession] = None
        self._session_counter = 0
        self._task: Optional[asyncio.Task] = None
        self._listeners: List[SessionListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def session(self) -> Optional[ExplainSession]:
        return self._session

    @property
    def current_session_id(self) -> Optional[int]:
        return self._session.session_id if self._session else None

    @property
    def phase(self) -> ExplainPhase:
        return self._session.phase if self._session else ExplainPhase.IDLE

    @property
    def detail(self) -> Optional[QueryDetail]:
        return self._session.detail if self._session else None

    def add_listener(self, listener: SessionListener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: SessionListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def _notify(self, session: ExplainSession) -> None:
        for listener in list(self._listeners):
            try:
                listener(session)
            except Exception as e:
                log_exception(logger, e, "Explain listener failed")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def open(
        self,
        view: ReconciledQueryView,
        database_id: int,
        samples: Sequence[RawExecutionSample] = (),
    ) -> ExplainSession:
        """
        Start a drill-down for ``view``

        Must be called from a running event loop. Returns the provisional
        session immediately; the explain request runs in the background.
        """
        cancelled = self._cancel_in_flight()
        if cancelled is not None:
            self._notify(cancelled)

        self._session_counter += 1
        detail = build_placeholder_detail(view, samples)
        session = ExplainSession(
            session_id=self._session_counter,
            query=detail.query_text,
            database_id=database_id,
            phase=ExplainPhase.REQUESTED,
            detail=detail,
        )
        self._session = session
        logger.info(
            f"Explain session {session.session_id} opened for {view.query_hash} "
            f"(expected mode: {expected_execution_mode(detail.query_text).value})"
        )
        self._notify(session)

        self._task = asyncio.get_running_loop().create_task(
            self._run(session.session_id, database_id, detail.query_text),
            name=f"explain-{session.session_id}",
        )
        return session

    def close(self) -> None:
        """Close the drill-down; an in-flight request is cancelled"""
        cancelled = self._cancel_in_flight()
        session, self._session = self._session, None
        if cancelled is not None:
            self._notify(cancelled)
        elif session is not None:
            logger.debug(f"Explain session {session.session_id} closed")

    async def wait(self) -> Optional[ExplainSession]:
        """Wait for the in-flight request to settle and return the session"""
        task = self._task
        if task is not None and not task.done():
            await asyncio.wait([task])
        return self._session

    def _cancel_in_flight(self) -> Optional[ExplainSession]:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

        session = self._session
        if session is None or session.phase != ExplainPhase.REQUESTED:
            return None
        cancelled = replace(session, phase=ExplainPhase.CANCELLED)
        self._session = cancelled
        logger.debug(f"Explain session {session.session_id} cancelled")
        return cancelled

    async def _run(self, session_id: int, database_id: int, query: str) -> None:
        try:
            result = await self._client.explain_analyze(database_id, query)
        except BackendRejectedError as e:
            self.apply_failure(session_id, e.user_message)
        except DBPulseError as e:
            self.apply_failure(session_id, user_friendly_error_message(e))
        except Exception as e:
            log_exception(logger, e, f"Explain session {session_id} failed")
            self.apply_failure(session_id, user_friendly_error_message(e))
        else:
            self.apply_result(session_id, result)

    def _is_current(self, session_id: int) -> bool:
        session = self._session
        return (
            session is not None
            and session.session_id == session_id
            and session.phase == ExplainPhase.REQUESTED
        )

    def apply_result(self, session_id: int, result: ExplainResult) -> bool:
        """Apply a completed explain; False when the session is stale"""
        if not self._is_current(session_id):
            logger.debug(f"Discarding stale explain result for session {session_id}")
            return False

        session = self._session
        expected = expected_execution_mode(session.query)
        if result.execution_mode != expected:
            logger.warning(
                f"Explain session {session_id}: backend mode {result.execution_mode.value} "
                f"differs from expected {expected.value}"
            )

        self._session = replace(
            session,
            phase=ExplainPhase.COMPLETED,
            detail=apply_explain_result(session.detail, result),
        )
        self._notify(self._session)
        return True

    def apply_failure(self, session_id: int, message: str) -> bool:
        """Apply a failed explain; False when the session is stale"""
        if not self._is_current(session_id):
            logger.debug(f"Discarding stale explain failure for session {session_id}")
            return False

        logger.warning(f"Explain session {session_id} failed: {message}")
        session = self._session
        self._session = replace(
            session,
            phase=ExplainPhase.FAILED,
            detail=apply_explain_failure(session.detail, message),
        )
        self._notify(self._session)
        return True
