"""
Debounced, cancellable queries.

One DebouncedQuery drives one input stream (search box keystrokes, map
pan-settle events). It moves through idle -> typing -> querying -> idle,
keeps exactly one live CancelToken, and only ever hands the result of the
most recently issued query to its callback.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from enum import Enum
from typing import Awaitable, Callable, Generic, Optional, TypeVar

V = TypeVar("V")
R = TypeVar("R")

logger = logging.getLogger(__name__)

_token_seq = itertools.count(1)


class QueryState(str, Enum):
    IDLE = "idle"
    TYPING = "typing"  # quiet-period timer armed
    QUERYING = "querying"  # network in flight


class CancelToken:
    """Abort flag shared by every provider call of one query."""

    def __init__(self, seq: Optional[int] = None):
        self.seq = seq if seq is not None else next(_token_seq)
        self._aborted = False

    @property
    def aborted(self) -> bool:
        return self._aborted

    def cancel(self) -> None:
        self._aborted = True

    def __repr__(self) -> str:
        return f"CancelToken(seq={self.seq}, aborted={self._aborted})"


class DebouncedQuery(Generic[V, R]):
    """
    Quiet-period debounce plus supersede-on-fire cancellation.

    `runner(value, token)` performs the query; `on_result(value, result)` is
    called only for the latest issued query and never after close().
    """

    def __init__(
        self,
        runner: Callable[[V, CancelToken], Awaitable[R]],
        on_result: Optional[Callable[[V, R], None]] = None,
        quiet_period: float = 0.3,
        name: str = "query",
    ):
        self._runner = runner
        self._on_result = on_result
        self.quiet_period = quiet_period
        self.name = name
        self._state = QueryState.IDLE
        self._timer: Optional[asyncio.Task] = None
        self._inflight: Optional[asyncio.Task] = None
        self._token: Optional[CancelToken] = None
        self._seq = 0
        self._last_fired: Optional[V] = None
        self._has_fired = False
        self._closed = False

    @property
    def state(self) -> QueryState:
        return self._state

    @property
    def last_fired(self) -> Optional[V]:
        return self._last_fired

    @property
    def current_seq(self) -> int:
        return self._seq

    @property
    def closed(self) -> bool:
        return self._closed

    def push(self, value: V) -> None:
        """Register a new input value and restart the quiet-period timer."""
        if self._closed:
            return
        self._cancel_timer()
        self._state = QueryState.TYPING
        self._timer = asyncio.get_running_loop().create_task(self._settle(value))

    async def fire_now(self, value: V) -> Optional[R]:
        """Fire immediately, bypassing the timer. Returns None when superseded."""
        if self._closed:
            return None
        self._cancel_timer()
        return await self._fire(value)

    def cancel(self) -> None:
        """Drop the pending timer and abort the in-flight query."""
        self._cancel_timer()
        self._abort_inflight()
        self._state = QueryState.IDLE

    def close(self) -> None:
        """Teardown: nothing fires and no callback runs afterwards."""
        self._closed = True
        self.cancel()

    def _cancel_timer(self) -> None:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None

    def _abort_inflight(self) -> None:
        if self._token is not None:
            self._token.cancel()
        if (
            self._inflight is not None
            and not self._inflight.done()
            and self._inflight is not asyncio.current_task()
        ):
            self._inflight.cancel()
        self._inflight = None

    async def _settle(self, value: V) -> None:
        await asyncio.sleep(self.quiet_period)
        self._timer = None
        if self._has_fired and value == self._last_fired:
            self._state = QueryState.IDLE
            return
        try:
            await self._fire(value, owns_task=True)
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("%s: debounced query for %r failed", self.name, value)
            self._state = QueryState.IDLE

    async def _fire(self, value: V, owns_task: bool = False) -> Optional[R]:
        self._abort_inflight()
        if owns_task:
            self._inflight = asyncio.current_task()
        self._seq += 1
        token = CancelToken(self._seq)
        self._token = token
        self._last_fired = value
        self._has_fired = True
        self._state = QueryState.QUERYING

        result = await self._runner(value, token)

        if token.aborted or token.seq != self._seq or self._closed:
            logger.debug("%s: dropping stale result #%s for %r", self.name, token.seq, value)
            return None
        self._state = QueryState.IDLE
        self._token = None
        self._inflight = None
        if self._on_result is not None:
            self._on_result(value, result)
        return result
