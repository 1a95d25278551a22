"""Merges terminal input, task results and internal actions into one stream.

Three producers feed the multiplexer from any thread:
- the keyboard listener pushes raw KeyPress / TerminalResize values,
- background tasks post result actions,
- the dispatcher posts follow-up actions.

The dispatch thread calls `next_action()` and blocks on a single condition
variable until one of the three queues has something. Ready queues are served
in the order input → results → internal; a queue that has been passed over
`starvation_limit` times in a row is served next regardless of order.

Raw keys are translated by the injected `key_mapper` on the dispatch thread, so
the mapping always sees the state left by the previous action.
"""

import logging
import threading
import time
from collections import deque
from typing import Callable, Deque, Dict, Optional, Union
from fsm.domain.actions import Action, Quit, Resize, Tick
from fsm.domain.models import KeyPress, TerminalResize

RawInput = Union[KeyPress, TerminalResize]

INPUT = "input"
RESULT = "result"
INTERNAL = "internal"
SOURCES = (INPUT, RESULT, INTERNAL)


class EventMultiplexer:
    """Thread-safe three-source action queue with tick generation.

    Args:
        key_mapper: Pure translation of a KeyPress into an Action (None = ignore).
        tick_interval: Seconds between Ticks. An idle wait ends with Tick after this long;
            under a steady stream of actions a Tick is still interleaved once per interval.
        starvation_limit: Max consecutive times a ready source may be skipped.
    """

    def __init__(
        self,
        key_mapper: Callable[[KeyPress], Optional[Action]],
        tick_interval: float = 0.25,
        starvation_limit: int = 8,
    ):
        if starvation_limit < 1:
            raise ValueError("starvation_limit must be >= 1")
        self.key_mapper = key_mapper
        self.tick_interval = tick_interval
        self.starvation_limit = starvation_limit
        self.logger = logging.getLogger(__name__)
        self._cond = threading.Condition()
        self._queues: Dict[str, Deque] = {name: deque() for name in SOURCES}
        self._passed_over: Dict[str, int] = {name: 0 for name in SOURCES}
        self._closed = False
        self._last_tick: Optional[float] = None

    # ── Producers ──────────────────────────────────────────────────────────────

    def _put(self, source: str, item) -> None:
        with self._cond:
            if self._closed:
                return
            self._queues[source].append(item)
            self._cond.notify()

    def push_input(self, raw: RawInput) -> None:
        self._put(INPUT, raw)

    def post_result(self, action: Action) -> None:
        self._put(RESULT, action)

    def post_action(self, action: Action) -> None:
        self._put(INTERNAL, action)

    def close(self) -> None:
        """Wake the consumer; every later `next_action` returns Quit."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        with self._cond:
            return self._closed

    def pending(self) -> Dict[str, int]:
        with self._cond:
            return {name: len(q) for name, q in self._queues.items()}

    # ── Consumer ───────────────────────────────────────────────────────────────

    def _select_source(self) -> Optional[str]:
        """Pick the next ready source (lock held)."""
        ready = [name for name in SOURCES if self._queues[name]]
        if not ready:
            return None
        starving = [name for name in ready if self._passed_over[name] >= self.starvation_limit]
        chosen = starving[0] if starving else ready[0]
        for name in ready:
            if name != chosen:
                self._passed_over[name] += 1
        self._passed_over[chosen] = 0
        return chosen

    def _translate(self, raw: RawInput) -> Optional[Action]:
        if isinstance(raw, TerminalResize):
            return Resize(width=raw.width, height=raw.height)
        return self.key_mapper(raw)

    def _tick(self, now: float) -> Tick:
        self._last_tick = now
        return Tick()

    def next_action(self, timeout: Optional[float] = None) -> Action:
        """Block until an action is ready; Tick after `timeout` (default tick_interval) of silence.

        A Tick is also returned ahead of queued actions once `tick_interval` has
        passed since the previous one, so a flood of results cannot starve it.
        """
        wait_for = self.tick_interval if timeout is None else timeout
        deadline = time.monotonic() + wait_for
        while True:
            with self._cond:
                if self._last_tick is None:
                    self._last_tick = time.monotonic()
                while True:
                    if self._closed:
                        return Quit()
                    now = time.monotonic()
                    if now - self._last_tick >= self.tick_interval and any(self._queues.values()):
                        return self._tick(now)
                    source = self._select_source()
                    if source is not None:
                        item = self._queues[source].popleft()
                        break
                    remaining = deadline - now
                    if remaining <= 0:
                        return self._tick(now)
                    self._cond.wait(remaining)

            if source != INPUT:
                return item
            action = self._translate(item)
            if action is not None:
                return action
            self.logger.debug(f"Unmapped key ignored: {item!r}")
