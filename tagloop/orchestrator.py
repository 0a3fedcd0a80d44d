"""Multi-turn orchestration: stream, dispatch, run tools, feed results back."""

from __future__ import annotations

import asyncio
import logging

from tagloop.errors import ErrorKind, GenerationError, TurnCancelled, classify_error
from tagloop.keys import Credential, KeyPool
from tagloop.llm.base import LLMProvider
from tagloop.models import ParserState, Session, ToolCall, ToolExecution, TurnOutcome, TurnState
from tagloop.platform_client import PlatformClient
from tagloop.streaming import StreamDispatcher
from tagloop.tools.base import ToolContext
from tagloop.tools.feedback import format_feedback
from tagloop.tools.registry import ToolRegistry

LOGGER = logging.getLogger(__name__)


class Orchestrator:
    """Runs one user turn as an explicit state machine.

    Each model response is streamed through a StreamDispatcher. If it
    contained tool calls they are executed in order, their results are
    appended as the next user message and the model is asked again, up to
    ``max_tool_depth`` times.
    """

    def __init__(
        self,
        llm: LLMProvider,
        tool_registry: ToolRegistry,
        platform: PlatformClient,
        key_pool: KeyPool,
        max_tool_depth: int = 10,
        max_retries: int = 3,
        retry_base_delay_seconds: float = 2.0,
    ) -> None:
        self._llm = llm
        self._tool_registry = tool_registry
        self._platform = platform
        self._key_pool = key_pool
        self._dispatcher = StreamDispatcher(platform)
        self._max_tool_depth = max_tool_depth
        self._max_retries = max_retries
        self._retry_base_delay_seconds = retry_base_delay_seconds

    async def run(
        self,
        session: Session,
        messages: list[dict[str, str]],
        context: ToolContext | None = None,
    ) -> TurnOutcome:
        """Process one user turn; ``messages`` is the history ending with the user input."""

        history = list(messages)
        context = context or ToolContext(session_id=session.session_id)
        outcome = TurnOutcome(state=TurnState.AWAITING_GENERATION, depth=session.depth, messages=history)
        state = TurnState.AWAITING_GENERATION
        parser_state: ParserState | None = None
        executions: list[ToolExecution] = []

        while state not in (TurnState.COMPLETE, TurnState.ABORTED_PARTIAL):
            if state is TurnState.AWAITING_GENERATION:
                parser_state = None
                if session.aborted:
                    state = TurnState.ABORTED_PARTIAL
                elif session.depth >= self._max_tool_depth:
                    LOGGER.info("Session %s reached tool depth limit (%d)", session.session_id, self._max_tool_depth)
                    state = TurnState.COMPLETE
                else:
                    state = TurnState.STREAMING

            elif state is TurnState.STREAMING:
                parser_state = await self._generate(session, history)
                outcome.responses.append(parser_state.buffer)
                state = TurnState.ABORTED_PARTIAL if session.aborted else TurnState.ACTIONS_DISPATCHED

            elif state is TurnState.ACTIONS_DISPATCHED:
                history.append({"role": "assistant", "content": parser_state.buffer})
                state = TurnState.EXECUTING if parser_state.tool_calls else TurnState.COMPLETE

            elif state is TurnState.EXECUTING:
                executions = await self._execute_all(parser_state.tool_calls, context)
                outcome.executions.extend(executions)
                state = TurnState.FEEDBACK_APPENDED

            elif state is TurnState.FEEDBACK_APPENDED:
                history.append({"role": "user", "content": format_feedback(executions)})
                session.depth += 1
                if session.aborted:
                    LOGGER.info("Session %s cancelled while tools ran, not calling the model again", session.session_id)
                    state = TurnState.ABORTED_PARTIAL
                    parser_state = None
                else:
                    state = TurnState.AWAITING_GENERATION

        if state is TurnState.ABORTED_PARTIAL:
            await self._finish_aborted(session, parser_state, history, outcome, context)
        else:
            await self._platform.on_complete()

        outcome.state = state
        outcome.depth = session.depth
        return outcome

    async def _finish_aborted(
        self,
        session: Session,
        parser_state: ParserState | None,
        history: list[dict[str, str]],
        outcome: TurnOutcome,
        context: ToolContext,
    ) -> None:
        """Run tool calls already present in a cancelled response; no further model call."""

        LOGGER.info("Session %s aborted", session.session_id)
        if parser_state is not None and parser_state.buffer:
            history.append({"role": "assistant", "content": parser_state.buffer})
            calls = self._dispatcher.collect_tool_calls(parser_state)
            if calls:
                LOGGER.info("Executing %d tool(s) despite abort", len(calls))
                executions = await self._execute_all(calls, context)
                outcome.executions.extend(executions)
                history.append({"role": "user", "content": format_feedback(executions)})
            if parser_state.anything_emitted or calls:
                await self._platform.on_complete()

    async def _execute_all(self, calls: list[ToolCall], context: ToolContext) -> list[ToolExecution]:
        executions = []
        for call in calls:
            result = await self._tool_registry.execute(call, context)
            if not result.success:
                LOGGER.info("Tool %s failed: %s", call.tool_name, result.error)
            executions.append(ToolExecution(call=call, result=result))
        return executions

    async def _generate(self, session: Session, history: list[dict[str, str]]) -> ParserState:
        """Stream one model response, retrying with rotated credentials on failure."""

        retries = 0
        while True:
            parser_state = ParserState()
            credential = self._key_pool.current()
            try:
                await self._stream_once(session, history, credential, parser_state)
                return parser_state
            except TurnCancelled:
                LOGGER.info("Session %s cancelled mid-stream", session.session_id)
                return parser_state
            except Exception as exc:  # noqa: BLE001
                kind = classify_error(exc)
                delay = self._next_delay(kind, credential, retries)
                if delay is None:
                    error = GenerationError(exc, partial_buffer=parser_state.buffer, attempts=session.attempt + 1)
                    LOGGER.error("Generation for session %s failed: %s", session.session_id, exc)
                    await self._platform.on_error(error)
                    raise error from exc

            retries += 1
            session.attempt += 1
            LOGGER.warning(
                "Retrying session %s (attempt %d) after %s in %.1fs",
                session.session_id,
                session.attempt,
                kind.value,
                delay,
            )
            if delay and not session.aborted:
                await asyncio.sleep(delay)
            if session.aborted:
                return ParserState()

    def _next_delay(self, kind: ErrorKind, credential: Credential, retries: int) -> float | None:
        """Rotate credentials for the failure and return the backoff delay, or None to give up."""

        if kind is ErrorKind.FATAL or retries >= self._max_retries:
            return None
        backoff = self._retry_base_delay_seconds * 2**retries
        if kind is ErrorKind.RATE_LIMIT:
            return 0.0 if self._key_pool.mark_rate_limited(credential) else backoff
        if kind is ErrorKind.PERMISSION_DENIED:
            return 0.0 if self._key_pool.mark_permission_denied(credential) else None
        self._key_pool.rotate(credential)
        return backoff

    async def _stream_once(
        self,
        session: Session,
        history: list[dict[str, str]],
        credential: Credential,
        parser_state: ParserState,
    ) -> None:
        stream = self._llm.stream(history, credential)
        try:
            async for chunk in stream:
                if session.aborted:
                    return
                if chunk:
                    await self._dispatcher.feed(parser_state, chunk, session)
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                await aclose()
        if not session.aborted:
            await self._dispatcher.finish(parser_state, session)
