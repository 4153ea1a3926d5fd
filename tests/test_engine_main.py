import asyncio
from datetime import datetime, timezone
from zoneinfo import ZoneInfo

from loguru import logger

from config.config_loader import create_default_config, deep_merge
from core.side_effects import pending_tasks, spawn
from engine_main import build_engine, configure_logging
from inference.router import RoutingDecision
from tools.definitions import CORE_TOOLS, INTEGRATION_TOOLS


def _config(tmp_path, **overrides):
    base = deep_merge(create_default_config(), {
        "storage": {"db_path": str(tmp_path / "engine.db")},
        "inference": {"local": {"enabled": False}},
    })
    return deep_merge(base, overrides)


async def test_engine_without_models_answers_from_heuristics(tmp_path):
    engine = await build_engine(_config(tmp_path))
    try:
        assert engine.rest is None and engine.runtime is None
        assert engine.orchestrator.interval_minutes == 12
        assert len(engine.orchestrator.executor.registry) == len(CORE_TOOLS)

        result = await engine.orchestrator.trigger("manual")
        assert result.tool_call is not None
        assert result.routing_decision == RoutingDecision.MOCK
        assert result.confidence == 0.5
        assert await engine.storage.count_cycles() == 1
        assert engine.activity.entries("agent")
    finally:
        await engine.aclose()


async def test_settings_and_integrations_shape_the_engine(tmp_path):
    config = _config(tmp_path, integrations={"accounts": {"enabled": True, "signed_in": True}},
                     agent={"single_flight": False})
    engine = await build_engine(config)
    await engine.storage.update_settings({"agent_interval_minutes": 5})
    await engine.aclose()

    engine = await build_engine(config)
    try:
        assert engine.orchestrator.interval_minutes == 5
        assert not engine.orchestrator.single_flight
        assert len(engine.orchestrator.executor.registry) == len(CORE_TOOLS) + len(INTEGRATION_TOOLS)
        assert engine.client.capabilities.integrations_available
    finally:
        await engine.aclose()


async def test_engine_reads_wall_clock_in_the_configured_zone(tmp_path):
    engine = await build_engine(_config(tmp_path, context={"timezone": "America/Los_Angeles"}))
    try:
        assert engine.aggregator.zone == ZoneInfo("America/Los_Angeles")
        snapshot = engine.aggregator.collect(datetime(2026, 3, 9, 4, 0, tzinfo=timezone.utc))
        assert snapshot.time_of_day.hour == 21
    finally:
        await engine.aclose()


async def test_aclose_cancels_pending_reminders(tmp_path):
    engine = await build_engine(_config(tmp_path))
    reminder = spawn(asyncio.sleep(3600), "reminder for gym")
    await engine.aclose()
    assert reminder.cancelled()
    assert reminder not in pending_tasks()


def test_log_directory_follows_the_configured_file(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    config = _config(tmp_path, logging={"file": str(tmp_path / "var" / "engine.log")})
    try:
        configure_logging(config)
        assert (tmp_path / "var").is_dir()
        assert not (tmp_path / "logs").exists()
    finally:
        logger.remove()
