"""Cerebro entrypoint -- wires the task engine together and runs the heartbeat.

Usage:
    python main.py
    python main.py --config /path/to/config.yaml
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
from dataclasses import dataclass

from core.bus import AsyncIOBus
from core.config import AppConfig, load_config
from core.data.recurring import RecurringTaskStore
from core.data.store import Store
from core.data.tasks import TaskStore
from core.duration import duration_seconds, parse_duration
from core.protocols import TaskRunner
from core.registry import PluginRegistry
from core.time_context import TimeContext
from engine.brains import Brain, BrainRegistry, TaskCommandHandler
from engine.executor import TaskExecutor
from engine.notifications import TaskNotificationService
from engine.operations import TaskService
from engine.reports import ReportScheduler
from plugins.runners.fallback import FallbackRunner
from plugins.runners.openclaw import OpenClawRunner
from scheduler.heartbeat import HeartbeatDriver
from scheduler.scheduler import Scheduler


def setup_logging(level: str) -> None:
    """Configure logging for the application."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )
    # Quiet down noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Cerebro task scheduling engine")
    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to config.yaml (default: ~/.cerebro/config.yaml)",
    )
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: ~/.cerebro/.env)",
    )
    return parser.parse_args()


def build_runner(config: AppConfig) -> TaskRunner:
    """Primary OpenClaw runner, wrapped with a fallback agent when configured."""
    timeout = duration_seconds(config.runner.timeout)
    primary = OpenClawRunner(
        brains=config.brains,
        cli_path=config.runner.cli_path,
        thinking=config.runner.thinking,
        timeout_seconds=timeout,
    )
    if not config.runner.fallback_agent_id:
        return primary
    fallback = OpenClawRunner(
        brains=config.brains,
        cli_path=config.runner.cli_path,
        thinking=config.runner.thinking,
        timeout_seconds=timeout,
        agent_override=config.runner.fallback_agent_id,
    )
    return FallbackRunner(primary, fallback)


def _load_notifiers(config: AppConfig, registry: PluginRegistry) -> None:
    logger = logging.getLogger("cerebro.plugins")
    discord = config.integrations.discord
    if not discord.enabled:
        return
    if not discord.bot_token or discord.bot_token.startswith("${"):
        logger.error("Discord is enabled but no bot token is set")
        return
    from plugins.integrations.discord import DiscordNotifier

    registry.register("notifier", DiscordNotifier(
        bot_token=discord.bot_token,
        default_channel_id=discord.default_channel_id,
    ))


@dataclass
class Engine:
    """Every long-lived component, wired together."""

    config: AppConfig
    store: Store
    task_store: TaskStore
    recurring_store: RecurringTaskStore
    bus: AsyncIOBus
    registry: PluginRegistry
    executor: TaskExecutor
    scheduler: Scheduler
    brains: BrainRegistry
    heartbeat: HeartbeatDriver
    tasks: TaskService


def build_engine(
    config: AppConfig,
    time_context: TimeContext | None = None,
    runner: TaskRunner | None = None,
) -> Engine:
    """Construct the engine from config. Nothing is started."""
    logger = logging.getLogger("cerebro")
    time_context = time_context or TimeContext.production()

    store = Store(config.database_path)
    task_store = TaskStore(store, time_context)
    recurring_store = RecurringTaskStore(
        store,
        time_context,
        first_run_delay=parse_duration(config.scheduler.first_run_delay),
    )

    bus = AsyncIOBus(events_dir=config.events_path if config.logging.audit_events else None)
    registry = PluginRegistry()
    runner = runner or build_runner(config)
    registry.register("runner", runner)
    _load_notifiers(config, registry)
    logger.info("Plugin registry: %s", registry.summary())

    executor = TaskExecutor(
        task_store=task_store,
        runner=runner,
        bus=bus,
        time_context=time_context,
    )
    scheduler = Scheduler(
        recurring_store,
        time_context,
        tz=config.scheduler.tzinfo,
        honor_day_of_week=config.scheduler.honor_day_of_week,
    )

    brains = BrainRegistry(bus)
    command_handler = TaskCommandHandler(task_store)
    for brain_config in config.brains:
        brains.register(Brain(
            brain_config,
            task_store=task_store,
            executor=executor,
            time_context=time_context,
            message_handler=command_handler,
        ))
    if not config.brains:
        logger.warning("No brains configured; recurring tasks will be created but never run")

    # Side-effect subscribers
    TaskNotificationService(bus=bus, registry=registry, brains=brains)
    ReportScheduler(
        bus=bus,
        task_store=task_store,
        recurring_store=recurring_store,
        time_context=time_context,
    )

    heartbeat = HeartbeatDriver(
        brains=brains,
        scheduler=scheduler,
        task_store=task_store,
        bus=bus,
        interval_seconds=duration_seconds(config.scheduler.heartbeat_interval),
    )
    tasks = TaskService(
        task_store=task_store,
        recurring_store=recurring_store,
        executor=executor,
        scheduler=scheduler,
        heartbeat=heartbeat,
        brains=brains,
        bus=bus,
    )

    return Engine(
        config=config,
        store=store,
        task_store=task_store,
        recurring_store=recurring_store,
        bus=bus,
        registry=registry,
        executor=executor,
        scheduler=scheduler,
        brains=brains,
        heartbeat=heartbeat,
        tasks=tasks,
    )


async def run(config_path: str | None = None, env_path: str | None = None) -> None:
    """Initialize all components and run until interrupted."""
    config = load_config(config_path=config_path, env_path=env_path)
    setup_logging(config.logging.level)
    logger = logging.getLogger("cerebro")
    logger.info("Configuration loaded from %s", config.home_path)

    engine = build_engine(config)
    engine.task_store.requeue_interrupted()

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handler support
            pass

    await engine.heartbeat.start()
    logger.info(
        "Cerebro running with %d brain(s), %d recurring task(s), timezone %s",
        len(engine.brains.all()),
        len(engine.recurring_store.find_active()),
        config.scheduler.timezone,
    )

    try:
        await stop_event.wait()
    except asyncio.CancelledError:
        pass
    finally:
        logger.info("Shutting down...")
        await engine.heartbeat.stop()

        for notifier in engine.registry.get_all("notifier"):
            try:
                if hasattr(notifier, "close"):
                    await notifier.close()
            except Exception as e:
                logger.error("Error closing notifier %s: %s", notifier.name, e)

        engine.store.close()
        logger.info("Shutdown complete")


def main() -> None:
    args = parse_args()
    setup_logging("INFO")
    try:
        asyncio.run(run(config_path=args.config, env_path=args.env))
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
