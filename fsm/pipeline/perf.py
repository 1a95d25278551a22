import logging
import threading
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List
from fsm.domain.actions import Action


@dataclass
class ActionStats:
    count: int = 0
    total_s: float = 0.0
    max_s: float = 0.0
    slow_count: int = 0

    @property
    def avg_ms(self) -> float:
        return (self.total_s / self.count) * 1000 if self.count else 0.0


class ActionMonitor:
    """Per-action-type dispatch timings. Slow actions are logged as outliers."""

    def __init__(self, slow_threshold_ms: float = 50.0, clock: Callable[[], float] = time.perf_counter):
        self.slow_threshold_s = slow_threshold_ms / 1000.0
        self._clock = clock
        self._lock = threading.Lock()
        self._stats: Dict[str, ActionStats] = {}
        self.logger = logging.getLogger(__name__)

    @contextmanager
    def measure(self, action: Action) -> Iterator[None]:
        start = self._clock()
        try:
            yield
        finally:
            self.record(type(action).__name__, self._clock() - start)

    def record(self, name: str, elapsed: float) -> None:
        with self._lock:
            stats = self._stats.setdefault(name, ActionStats())
            stats.count += 1
            stats.total_s += elapsed
            stats.max_s = max(stats.max_s, elapsed)
            slow = elapsed > self.slow_threshold_s
            if slow:
                stats.slow_count += 1
        if slow:
            self.logger.warning(f"SLOW_ACTION: {name} took {elapsed * 1000:.1f}ms")

    def snapshot(self) -> Dict[str, ActionStats]:
        with self._lock:
            return {name: ActionStats(**vars(s)) for name, s in self._stats.items()}

    def summary_lines(self, top: int = 10) -> List[str]:
        """Slowest action types by max duration, for the shutdown log."""
        rows = sorted(self.snapshot().items(), key=lambda kv: kv[1].max_s, reverse=True)[:top]
        return [
            f"{name}: n={s.count} avg={s.avg_ms:.2f}ms max={s.max_s * 1000:.2f}ms slow={s.slow_count}"
            for name, s in rows
        ]
