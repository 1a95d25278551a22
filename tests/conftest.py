import time
import pytest
import yaml
from dataclasses import dataclass, field
from pathlib import Path
from typing import List
from fsm.config.models import CacheConfig, UiConfig
from fsm.domain.actions import Action
from fsm.domain.models import ObjectInfo, ObjectKind
from fsm.infrastructure.dir_scanner import DirectoryScanner
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import TaskRegistry
from fsm.ui.dispatcher import ActionDispatcher
from fsm.ui.state import UIState

# ============================================================================
# Clock
# ============================================================================

class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()

# ============================================================================
# Object helpers
# ============================================================================

def make_info(path, kind: ObjectKind = ObjectKind.FILE, **kwargs) -> ObjectInfo:
    path = Path(path)
    return ObjectInfo(path=path, name=path.name, kind=kind, **kwargs)


@pytest.fixture
def small_cache(clock):
    """Single-shard cache with capacity 2 on the fake clock."""
    return MetadataCache(CacheConfig(max_capacity=2, num_shards=1), clock=clock)

# ============================================================================
# Configuration Fixtures
# ============================================================================

@pytest.fixture
def config_yaml_path(tmp_path):
    """Creates a temporary YAML config file."""
    conf_dir = tmp_path / "conf"
    conf_dir.mkdir()
    conf_file = conf_dir / "fsm.yaml"

    content = {
        'general': {
            'task_workers': 4,
            'debug': True,
        },
        'cache': {
            'max_capacity': 1000,
            'ttl': 120,
            'tti': 60,
            'num_shards': 8,
        },
        'ui': {
            'show_hidden': True,
            'page_size': 10,
        },
    }

    with open(conf_file, 'w') as f:
        yaml.dump(content, f)

    return conf_file

# ============================================================================
# File System Fixtures
# ============================================================================

@pytest.fixture
def sample_tree(tmp_path):
    """Directory with ["b.txt", "A/", "a.txt", ".hidden"] plus a nested file."""
    root = tmp_path / "tree"
    root.mkdir()
    (root / "b.txt").write_text("bravo\n")
    (root / "a.txt").write_text("alpha\nneedle here\n")
    (root / "A").mkdir()
    (root / "A" / "inner.txt").write_text("x" * 20)
    (root / ".hidden").write_text("secret")
    return root

# ============================================================================
# Dispatcher Fixtures
# ============================================================================

@dataclass
class DispatcherEnv:
    dispatcher: ActionDispatcher
    state: UIState
    registry: TaskRegistry
    scanner: DirectoryScanner
    cache: MetadataCache
    clock: FakeClock
    emitted: List[Action] = field(default_factory=list)
    results: List[Action] = field(default_factory=list)

    def drain(self, timeout: float = 5.0) -> None:
        """Feed background results back into the dispatcher until all tasks are done."""
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            while self.results:
                self.dispatcher.dispatch(self.results.pop(0))
            if self.registry.active_count() == 0 and not self.results:
                return
            time.sleep(0.01)
        raise AssertionError("background tasks did not finish in time")


@pytest.fixture
def make_env(clock):
    """Factory for a dispatcher wired to list-backed emit/result channels."""
    registries = []

    def factory(root: Path, show_hidden: bool = False) -> DispatcherEnv:
        emitted: List[Action] = []
        results: List[Action] = []
        cache = MetadataCache(CacheConfig(max_capacity=1024, num_shards=4), clock=clock)
        scanner = DirectoryScanner(cache, show_hidden=show_hidden)
        registry = TaskRegistry(result_sink=results.append, max_workers=4)
        registries.append(registry)
        state = UIState(cwd=root, show_hidden=show_hidden, clock=clock)
        dispatcher = ActionDispatcher(
            state=state,
            scanner=scanner,
            registry=registry,
            emit=emitted.append,
            post_result=results.append,
            cache=cache,
            config=UiConfig(page_size=2),
        )
        return DispatcherEnv(dispatcher, state, registry, scanner, cache, clock, emitted, results)

    yield factory
    for registry in registries:
        registry.shutdown(wait=True)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "unit: marks tests as unit tests"
    )
