from conftest import FakeClock
from fsm.domain.actions import MoveSelectionDown, Tick
from fsm.pipeline.perf import ActionMonitor


def test_measure_records_per_action_type():
    clock = FakeClock()
    monitor = ActionMonitor(slow_threshold_ms=50, clock=clock)

    with monitor.measure(Tick()):
        clock.advance(0.002)
    with monitor.measure(Tick()):
        clock.advance(0.004)

    stats = monitor.snapshot()["Tick"]
    assert stats.count == 2
    assert round(stats.avg_ms, 3) == 3.0
    assert round(stats.max_s, 3) == 0.004
    assert stats.slow_count == 0


def test_slow_action_is_logged(caplog):
    clock = FakeClock()
    monitor = ActionMonitor(slow_threshold_ms=10, clock=clock)

    with caplog.at_level("WARNING", logger="fsm.pipeline.perf"):
        with monitor.measure(MoveSelectionDown()):
            clock.advance(0.5)

    assert "SLOW_ACTION: MoveSelectionDown" in caplog.text
    assert monitor.snapshot()["MoveSelectionDown"].slow_count == 1


def test_summary_lines_sorted_by_max():
    monitor = ActionMonitor()
    monitor.record("Fast", 0.001)
    monitor.record("Slow", 0.030)

    lines = monitor.summary_lines()

    assert lines[0].startswith("Slow:")
    assert lines[1].startswith("Fast:")
