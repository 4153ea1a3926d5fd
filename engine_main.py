"""Momentum nudge engine entry point.

Wires storage, context, scoring, tools, inference and the orchestrator, then
runs until interrupted.
"""
from __future__ import annotations

import asyncio
import os
import sys
from dataclasses import dataclass
from typing import Any, Dict, Optional

from loguru import logger

from agent.cooldowns import CooldownController
from agent.loop import DecisionOrchestrator
from config.config_loader import load_config
from context.aggregator import ContextAggregator
from core.activity_log import ActivityLog
from core.side_effects import cancel_pending
from habit.defaults import default_habits
from habit.engine import ScoringEngine
from habit.models import resolve_zone
from habit.storage import SQLiteHabitStore
from inference.backends import OfflineHeuristicBackend, OllamaRuntime, RestBackend
from inference.capabilities import Capabilities
from inference.client import InferenceClient
from inference.router import InferenceRouter
from integrations.accounts import LocalAccountIntegration
from notifications.dispatcher import NotificationDispatcher
from tools.executor import ToolExecutor, ToolRegistry
from tools.handlers import ActionHandlers


def configure_logging(config: Dict[str, Any]):
    cfg = config.get("logging", {})
    level = cfg.get("level", "INFO")
    logger.remove()
    logger.configure(extra={"source": "engine"})
    log_file = cfg.get("file", "logs/momentum_{time:YYYY-MM-DD}.log")
    log_dir = os.path.dirname(log_file)
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
    logger.add(
        log_file,
        rotation=cfg.get("rotation", "1 day"),
        retention=cfg.get("retention", "30 days"),
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level} | {extra[source]} | {name}:{function}:{line} | {message}",
    )
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level}</level> | <magenta>{extra[source]}</magenta> | {message}",
    )


@dataclass
class Engine:
    storage: SQLiteHabitStore
    aggregator: ContextAggregator
    scoring: ScoringEngine
    dispatcher: NotificationDispatcher
    orchestrator: DecisionOrchestrator
    client: InferenceClient
    activity: ActivityLog
    rest: Optional[RestBackend] = None
    runtime: Optional[OllamaRuntime] = None

    async def aclose(self):
        self.orchestrator.stop()
        await cancel_pending()
        if self.runtime is not None:
            await self.runtime.aclose()
        if self.rest is not None:
            await self.rest.aclose()
        self.activity.uninstall()
        self.storage.close()


async def build_engine(config: Dict[str, Any]) -> Engine:
    activity = ActivityLog(config["logging"].get("activity_log_size", 200))
    activity.install()

    storage_cfg = config["storage"]
    storage = SQLiteHabitStore(storage_cfg["db_path"], storage_cfg.get("max_cycles", 200))
    await storage.seed_defaults(default_habits())
    settings = await storage.get_settings()

    aggregator = ContextAggregator(zone=resolve_zone(config.get("context", {}).get("timezone")))
    scoring = ScoringEngine(storage)
    dispatcher = NotificationDispatcher(scoring, aggregator)
    cooldowns = CooldownController(storage)

    accounts_cfg = config["integrations"].get("accounts", {})
    integrations = (
        LocalAccountIntegration(signed_in=bool(accounts_cfg.get("signed_in"))) if accounts_cfg.get("enabled") else None
    )

    agent_cfg = config["agent"]
    handlers = ActionHandlers(
        scoring, storage, dispatcher, cooldowns, integrations,
        nudge_cooldown_minutes=agent_cfg.get("nudge_cooldown_minutes", 30),
    )
    executor = ToolExecutor(handlers.register(ToolRegistry()))

    inference_cfg = config["inference"]
    rest_cfg = inference_cfg.get("rest", {})
    rest = None
    if rest_cfg.get("api_key"):
        rest = RestBackend(rest_cfg["api_key"], rest_cfg.get("model", "gpt-4o-mini"), rest_cfg.get("base_url"),
                           timeout=inference_cfg["timeouts"].get("rest", 15))
    local_cfg = inference_cfg.get("local", {})
    runtime = None
    if local_cfg.get("enabled", True):
        runtime = OllamaRuntime(
            base_url=local_cfg.get("base_url", "http://localhost:11434"),
            model=local_cfg.get("model", "functiongemma"),
            hybrid_model=inference_cfg.get("hybrid", {}).get("model"),
            keep_alive=local_cfg.get("keep_alive", "30m"),
            max_failures=local_cfg.get("max_failures", 2),
        )

    capabilities = await Capabilities.detect(config, runtime, integrations)
    client = InferenceClient(
        InferenceRouter(),
        capabilities,
        rest=rest,
        runtime=runtime,
        heuristics=OfflineHeuristicBackend(),
        order=inference_cfg.get("order", ("rest", "hybrid", "on_device")),
        timeouts=inference_cfg.get("timeouts"),
        load_timeout=inference_cfg.get("load_timeout", 120),
        hybrid_local_tokens_per_second=inference_cfg.get("hybrid_local_tokens_per_second", 10),
    )

    orchestrator = DecisionOrchestrator(
        aggregator, scoring, client, executor, storage,
        cooldowns=cooldowns,
        integrations=integrations,
        interval_minutes=settings["agent_interval_minutes"],
        scroll_threshold_minutes=settings["scroll_threshold_minutes"],
        inactivity_threshold_minutes=settings["inactivity_threshold_minutes"],
        single_flight=agent_cfg.get("single_flight", True),
    )
    return Engine(storage, aggregator, scoring, dispatcher, orchestrator, client, activity, rest, runtime)


async def run(config: Dict[str, Any]):
    engine = await build_engine(config)
    stop = asyncio.Event()
    try:
        await engine.orchestrator.start()
        await stop.wait()
    finally:
        await engine.aclose()
        logger.info("Engine shutdown complete")


def main():
    config = load_config()
    configure_logging(config)
    logger.info("Starting Momentum nudge engine...")
    try:
        asyncio.run(run(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
