import os
import typer
from dataclasses import dataclass
from pathlib import Path
from typing import Optional
from fsm.config.loader import load_config
from fsm.config.models import AppConfig
from fsm.infrastructure.clipboard import Clipboard
from fsm.infrastructure.dir_scanner import DirectoryScanner
from fsm.infrastructure.logging import setup_logging
from fsm.infrastructure.metadata_cache import MetadataCache
from fsm.infrastructure.task_registry import TaskRegistry
from fsm.pipeline.multiplexer import EventMultiplexer
from fsm.pipeline.perf import ActionMonitor
from fsm.ui.dashboard import Dashboard
from fsm.ui.dispatcher import ActionDispatcher
from fsm.ui.event_loop import EventLoop
from fsm.ui.keyboard import KeyboardListener
from fsm.ui.state import UIState

DEFAULT_CONFIG_PATH = Path("conf/fsm.yaml")

app = typer.Typer(help="fsm - terminal file manager")


@dataclass
class Runtime:
    """Wired components of one session."""
    config: AppConfig
    state: UIState
    cache: MetadataCache
    scanner: DirectoryScanner
    registry: TaskRegistry
    multiplexer: EventMultiplexer
    dispatcher: ActionDispatcher
    monitor: ActionMonitor


def build_runtime(config: AppConfig, root: Path) -> Runtime:
    state = UIState(
        cwd=root,
        show_hidden=config.ui.show_hidden,
        clipboard=Clipboard(max_items=config.ui.clipboard_max_items),
    )
    cache = MetadataCache(config.cache)
    scanner = DirectoryScanner(cache, show_hidden=config.ui.show_hidden)

    dispatcher_ref = {}

    def key_mapper(key):
        return dispatcher_ref["dispatcher"].map_input(key)

    multiplexer = EventMultiplexer(key_mapper, tick_interval=config.ui.tick_interval_ms / 1000.0)
    registry = TaskRegistry(result_sink=multiplexer.post_result, max_workers=config.general.task_workers)
    dispatcher = ActionDispatcher(
        state=state,
        scanner=scanner,
        registry=registry,
        emit=multiplexer.post_action,
        post_result=multiplexer.post_result,
        cache=cache,
        config=config.ui,
    )
    dispatcher_ref["dispatcher"] = dispatcher
    monitor = ActionMonitor(slow_threshold_ms=config.ui.slow_action_ms)
    return Runtime(config, state, cache, scanner, registry, multiplexer, dispatcher, monitor)


def apply_overrides(
    config: AppConfig,
    debug: Optional[bool] = None,
    show_hidden: Optional[bool] = None,
    shards: Optional[int] = None,
    capacity: Optional[int] = None,
) -> AppConfig:
    """Return a re-validated copy of `config` with CLI values applied."""
    data = config.model_dump()
    if debug is not None:
        data["general"]["debug"] = debug
    if show_hidden is not None:
        data["ui"]["show_hidden"] = show_hidden
    if shards is not None:
        data["cache"]["num_shards"] = shards
    if capacity is not None:
        data["cache"]["max_capacity"] = capacity
    return AppConfig(**data)


@app.command()
def browse(
    path: Optional[Path] = typer.Argument(None, help="Directory to open (default: current directory)"),
    config_path: Path = typer.Option(DEFAULT_CONFIG_PATH, "--config", "-c", help="Path to YAML config"),
    debug: Optional[bool] = typer.Option(None, "--debug/--no-debug", help="Enable verbose debug logging"),
    log_path: Optional[Path] = typer.Option(None, "--log-path", help="Path to log file (overrides config)"),
    show_hidden: Optional[bool] = typer.Option(None, "--show-hidden/--hide-hidden", help="Show dotfiles"),
    shards: Optional[int] = typer.Option(None, "--shards", help="Override metadata cache shard count"),
    capacity: Optional[int] = typer.Option(None, "--capacity", help="Override metadata cache capacity (entries)"),
):
    """Browse a directory tree."""
    try:
        if config_path.exists():
            config = load_config(config_path)
        elif config_path != DEFAULT_CONFIG_PATH:
            typer.secho(f"Error: config file not found: {config_path}", fg=typer.colors.RED, err=True)
            raise typer.Exit(code=1)
        else:
            config = AppConfig()
        config = apply_overrides(config, debug=debug, show_hidden=show_hidden, shards=shards, capacity=capacity)
    except ValueError as e:
        typer.secho(f"Error: invalid configuration: {e}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    root = Path(os.path.abspath(os.path.expanduser(str(path or Path.cwd()))))
    if not root.is_dir():
        typer.secho(f"Error: not a directory: {root}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)
    if not os.access(root, os.R_OK | os.X_OK):
        typer.secho(f"Error: permission denied: {root}", fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1)

    log_file = Path(log_path or config.general.log_path or "/tmp/fsm/fsm.log")
    logger = setup_logging(log_file.parent, debug=config.general.debug, log_path=log_file)
    logger.info(f"Starting fsm in {root} (shards={config.cache.num_shards}, capacity={config.cache.max_capacity})")

    runtime = build_runtime(config, root)
    dashboard = Dashboard()
    keyboard = KeyboardListener(runtime.multiplexer.push_input)
    loop = EventLoop(runtime.multiplexer, runtime.dispatcher, runtime.state, render=dashboard.render, monitor=runtime.monitor)

    try:
        if config.cache.sweep_interval_s:
            runtime.cache.start_sweeper(config.cache.sweep_interval_s)
        runtime.dispatcher.start(root)
        keyboard.start()
        try:
            dashboard.start(runtime.state.snapshot())
            loop.run()
        finally:
            keyboard.stop()
            dashboard.stop()
            runtime.registry.shutdown(wait=False)
            runtime.cache.stop_sweeper()
            runtime.cache.health_check()
            stats = runtime.cache.stats()
            logger.info(
                f"Cache: entries={runtime.cache.entry_count()}, hits={stats.hits}, misses={stats.misses}, "
                f"evictions={stats.evictions}, expirations={stats.expirations}"
            )

    except KeyboardInterrupt:
        logger.info("Stopped by user (Ctrl+C)")
        typer.secho("\nStopped by user (Ctrl+C)", fg=typer.colors.YELLOW)
        raise typer.Exit(code=130)


if __name__ == "__main__":
    app()
