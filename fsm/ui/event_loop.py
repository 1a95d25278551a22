import logging
from typing import Callable, Optional
from fsm.pipeline.multiplexer import EventMultiplexer
from fsm.pipeline.perf import ActionMonitor
from fsm.ui.dispatcher import ActionDispatcher
from fsm.ui.state import UISnapshot, UIState


class EventLoop:
    """Single dispatch thread: next_action → dispatch → redraw, until Quit.

    Args:
        multiplexer: Source of actions.
        dispatcher: Applies them to `state`.
        state: Read for snapshots after actions that requested a redraw.
        render: Called with a UISnapshot whenever a redraw is due.
        monitor: Optional ActionMonitor timing each dispatch.
    """

    def __init__(
        self,
        multiplexer: EventMultiplexer,
        dispatcher: ActionDispatcher,
        state: UIState,
        render: Optional[Callable[[UISnapshot], None]] = None,
        monitor: Optional[ActionMonitor] = None,
    ):
        self.multiplexer = multiplexer
        self.dispatcher = dispatcher
        self.state = state
        self.render = render
        self.monitor = monitor or ActionMonitor()
        self.logger = logging.getLogger(__name__)

    def step(self, timeout: Optional[float] = None) -> bool:
        """Process one action. Returns False once the application should stop."""
        action = self.multiplexer.next_action(timeout)
        with self.monitor.measure(action):
            running = self.dispatcher.dispatch(action)
        if self.render is not None and self.state.take_redraw():
            self.render(self.state.snapshot())
        return running

    def run(self) -> None:
        self.logger.info("Event loop started")
        try:
            while self.step():
                pass
        finally:
            registry = self.dispatcher.registry
            cancelled = registry.cancel_all()
            registry.shutdown(wait=False)
            self.multiplexer.close()
            self.logger.info(f"Event loop stopped ({cancelled} task(s) cancelled)")
            for line in self.monitor.summary_lines():
                self.logger.debug(f"ACTION_STATS: {line}")
