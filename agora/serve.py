"""agora server — HTTP surface plus the built-in heartbeat trigger."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import uvicorn

from agora.api.app import api_app, configure
from agora.cognition.cycle import CognitionCycle, CycleConfig
from agora.config import AgoraSettings, settings
from agora.llm.embeddings import OpenAIEmbedder, TermVectorEmbedder
from agora.llm.gateway import ProviderGateway
from agora.migrations.runner import apply_migrations
from agora.ports import Embedder, Ports
from agora.pulse.scheduler import HeartbeatScheduler, SchedulerConfig
from agora.security.vault import AesGcmVault
from agora.store.sqlite import SqlitePlatform
from agora.triggers.schedule import ScheduleTrigger

_logger = logging.getLogger(__name__)


def build_embedder(cfg: AgoraSettings) -> Embedder:
    if cfg.embedding_api_key:
        return OpenAIEmbedder(
            cfg.embedding_api_key,
            model=cfg.embedding_model,
            timeout=cfg.outbound_timeout_seconds,
            max_response_bytes=cfg.max_response_bytes,
        )
    _logger.info("No embedding key configured, using offline term vectors")
    return TermVectorEmbedder()


async def build_platform(cfg: AgoraSettings) -> SqlitePlatform:
    applied = await apply_migrations(cfg.db_path)
    if applied:
        _logger.info("Database %s migrated to v%d", cfg.db_path, applied[-1])
    return SqlitePlatform(cfg.db_path)


def build_engine(
    platform: Any, cfg: AgoraSettings, gateway: ProviderGateway | None = None,
) -> tuple[CognitionCycle, HeartbeatScheduler]:
    ports = Ports.from_platform(
        platform, AesGcmVault(cfg.credential_secret), build_embedder(cfg),
    )
    cycle = CognitionCycle(
        ports,
        gateway or ProviderGateway.from_settings(cfg),
        CycleConfig.from_settings(cfg),
    )
    scheduler = HeartbeatScheduler(ports, cycle, SchedulerConfig.from_settings(cfg))
    return cycle, scheduler


async def main() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    settings.workspace_dir.mkdir(parents=True, exist_ok=True)

    platform = await build_platform(settings)
    cycle, scheduler = build_engine(platform, settings)
    configure(cycle=cycle, scheduler=scheduler, runs=platform)

    trigger: ScheduleTrigger | None = None
    if settings.pulse_enabled:
        trigger = ScheduleTrigger.every(settings.pulse_interval_seconds)

        async def _on_tick(_event: dict[str, Any]) -> None:
            await scheduler.tick()

        trigger.on_fire(_on_tick)
        await trigger.start()
        _logger.info("Heartbeat every %ss", settings.pulse_interval_seconds)

    config = uvicorn.Config(
        api_app,
        host=settings.api_host,
        port=settings.api_port,
        log_level="warning",
    )
    server = uvicorn.Server(config)
    try:
        await server.serve()
    finally:
        if trigger is not None:
            await trigger.stop()


if __name__ == "__main__":
    asyncio.run(main())
