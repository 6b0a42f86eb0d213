"""Fragment stream and run handle.

A run emits zero or more ``FragmentEvent``s in generation order followed
by exactly one ``TerminalEvent``. The handle is lazy (nothing runs until
it is consumed), forward-only and not restartable.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any, Literal

from agentrelay.errors import RunFailed, RunRejected

logger = logging.getLogger(__name__)

GENERIC_FAILURE_MESSAGE = "Something went wrong while processing your request. Please try again."


@dataclass(frozen=True)
class FragmentEvent:
    text: str


@dataclass(frozen=True)
class TerminalEvent:
    """The single closing event of a run.

    message is caller-facing (rejection text or the generic failure
    message); error carries the internal cause and is only logged.
    """

    status: Literal["success", "rejected", "failed"]
    session_token: str | None = None
    result: Any = None
    message: str | None = None
    error: str | None = None
    kind: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


RunEvent = FragmentEvent | TerminalEvent


def failed_terminal(cause: str, kind: str, session_token: str | None = None) -> TerminalEvent:
    return TerminalEvent(
        status="failed",
        session_token=session_token,
        message=GENERIC_FAILURE_MESSAGE,
        error=cause,
        kind=kind,
    )


class RunHandle:
    def __init__(
        self,
        run_id: str,
        session_token: str,
        driver: Callable[[RunHandle], Awaitable[TerminalEvent]],
    ):
        self.run_id = run_id
        self.session_token = session_token
        self._driver = driver
        self._queue: asyncio.Queue[RunEvent] = asyncio.Queue()
        self._finished = asyncio.Event()
        self._terminal: TerminalEvent | None = None
        self._task: asyncio.Task | None = None
        self._started = False
        self._closed = False

    async def sink(self, text: str) -> None:
        """Accept a fragment from the active worker."""
        if self._closed or self._terminal is not None:
            return
        await self._queue.put(FragmentEvent(text))

    def _finish(self, terminal: TerminalEvent) -> None:
        if self._terminal is not None:
            return
        self._terminal = terminal
        self._queue.put_nowait(terminal)
        self._finished.set()

    async def _drive(self) -> None:
        try:
            terminal = await self._driver(self)
        except asyncio.CancelledError:
            self._finish(failed_terminal("run cancelled by caller", "cancelled"))
            raise
        except Exception as e:
            logger.error(f"Run {self.run_id} crashed: {e}", exc_info=True)
            terminal = failed_terminal(str(e), "internal")
        self._finish(terminal)

    async def events(self) -> AsyncIterator[RunEvent]:
        """Yield fragments then the terminal event. Closing the iterator cancels the run."""
        if self._started:
            raise RuntimeError(f"Run {self.run_id} has already been consumed; start a new run")
        self._started = True
        self._task = asyncio.create_task(self._drive(), name=f"run-{self.run_id}")
        try:
            while True:
                event = await self._queue.get()
                yield event
                if isinstance(event, TerminalEvent):
                    return
        finally:
            self._closed = True
            if not self._task.done():
                logger.info(f"Run {self.run_id}: stream closed before completion, cancelling")
                self._task.cancel()

    async def fragments(self) -> AsyncIterator[str]:
        """Yield only the text fragments; the terminal is kept for ``wait()``."""
        events = self.events()
        try:
            async for event in events:
                if isinstance(event, FragmentEvent):
                    yield event.text
        finally:
            await events.aclose()

    async def wait(self) -> TerminalEvent:
        """Return the terminal event, draining the run if nobody consumed it."""
        if not self._started:
            async for _ in self.events():
                pass
        await self._finished.wait()
        return self._terminal

    async def completed(self) -> str | None:
        """Resolve with the continuation token, or raise on rejection/failure."""
        terminal = await self.wait()
        if terminal.status == "rejected":
            raise RunRejected(terminal.message or "", session_token=terminal.session_token)
        if terminal.status == "failed":
            raise RunFailed(
                terminal.message or GENERIC_FAILURE_MESSAGE,
                kind=terminal.kind or "failure",
                cause=terminal.error,
                session_token=terminal.session_token,
            )
        return terminal.session_token

    @property
    def terminal(self) -> TerminalEvent | None:
        return self._terminal


@dataclass
class RunCallbacks:
    """Completion-callback API: on_text per fragment, on_error for
    rejection or failure, then on_completed last with the token (None
    when the run failed). Callbacks may be plain functions or coroutines."""

    on_text: Callable[[str], Any] | None = None
    on_completed: Callable[[str | None], Any] | None = None
    on_error: Callable[[str], Any] | None = None


async def _call(callback: Callable[..., Any] | None, *args: Any) -> None:
    if callback is None:
        return
    outcome = callback(*args)
    if inspect.isawaitable(outcome):
        await outcome


async def deliver(handle: RunHandle, callbacks: RunCallbacks) -> TerminalEvent:
    """Drive ``handle`` to completion, reporting through ``callbacks``."""
    terminal: TerminalEvent | None = None
    async for event in handle.events():
        if isinstance(event, FragmentEvent):
            await _call(callbacks.on_text, event.text)
        else:
            terminal = event

    if terminal.status != "success":
        await _call(callbacks.on_error, terminal.message or GENERIC_FAILURE_MESSAGE)
    await _call(callbacks.on_completed, terminal.session_token if terminal.status != "failed" else None)
    return terminal
