#!/usr/bin/env python3
"""
WatchDucker - Docker image update checker

Checks the images of selected containers against their registries and
recreates containers whose image changed, either once (--once) or on a cron
schedule.

One cycle:
    discover -> detect -> apply updates (unless --no-restart) -> clean (--clean)
    -> notify when something was updated or failed -> log report
"""

import asyncio
import logging
import sys
from datetime import datetime, timezone
from typing import Optional, Sequence, Tuple

import docker
from croniter import croniter
from docker.errors import DockerException

from config.settings import ConfigError, UpdaterConfig, setup_logging
from docker_monitor.container_discovery import ContainerDiscovery
from notifications import NotificationDispatcher
from updates.errors import EngineConnectionError
from updates.reporting import (
    format_batch_summary,
    format_container_table,
    format_update_summary,
    make_progress_logger,
)
from updates.types import BatchCheckResult, UpdateReport
from updates.update_detector import UpdateDetector
from updates.update_executor import UpdateExecutor
from utils.async_docker import async_client_ping

logger = logging.getLogger(__name__)

NOTIFICATION_TITLE = 'WatchDucker image updates'


async def connect_engine(engine_timeout: Optional[float] = None) -> docker.DockerClient:
    """
    Connect to the Docker Engine from the environment (DOCKER_HOST etc.) and ping it.

    Raises:
        EngineConnectionError: If the engine cannot be reached
    """
    try:
        client = docker.from_env(timeout=int(engine_timeout) if engine_timeout else 60)
    except DockerException as e:
        raise EngineConnectionError(f"Cannot connect to Docker: {e}") from e

    try:
        await async_client_ping(client)
    except Exception as e:
        client.close()
        raise EngineConnectionError(f"Docker engine did not answer ping: {e}") from e

    logger.info(f"Connected to Docker engine (API {client.api.api_version})")
    return client


def should_notify(batch: BatchCheckResult, report: Optional[UpdateReport]) -> bool:
    if batch.summary.updated or batch.summary.failed:
        return True
    return bool(report and report.failed)


async def run_cycle(
    client: docker.DockerClient,
    config: UpdaterConfig,
    dispatcher: Optional[NotificationDispatcher] = None,
) -> Tuple[BatchCheckResult, Optional[UpdateReport]]:
    """Run one discover/detect/update cycle and return its results."""
    discovery = ContainerDiscovery(client, include_stopped=config.include_stopped)
    containers = await discovery.for_config(config)

    detector = UpdateDetector(
        client,
        max_concurrency=config.max_concurrent_checks,
        pull_timeout=config.pull_timeout,
        engine_timeout=config.engine_timeout,
    )
    batch = await detector.check(containers, progress_callback=make_progress_logger())
    if batch.first_error is not None:
        logger.error(f"Errors during image check, first: {batch.first_error}")

    report = None
    if batch.summary.updated > 0:
        executor = UpdateExecutor(client, config)
        report = await executor.apply(batch)
        if config.clean_up and not report.skipped:
            await executor.clean_dangling_images()

    if dispatcher is not None and dispatcher.enabled and should_notify(batch, report):
        await dispatcher.send(NOTIFICATION_TITLE, format_update_summary(batch, report))

    logger.info("\n" + format_container_table(batch.containers))
    logger.info("\n" + format_batch_summary(batch))
    if report is not None:
        logger.info("\n" + format_update_summary(batch, report))
    return batch, report


def seconds_until_next_run(cron: str, now: Optional[datetime] = None) -> float:
    now = now or datetime.now(timezone.utc).astimezone()
    next_run = croniter(cron, now).get_next(datetime)
    return max((next_run - now).total_seconds(), 0.0)


async def run_scheduler(
    client: docker.DockerClient,
    config: UpdaterConfig,
    dispatcher: Optional[NotificationDispatcher] = None,
):
    """Run cycles on the cron schedule until cancelled."""
    logger.info(f"Scheduler started, cron expression: {config.cron}")
    while True:
        delay = seconds_until_next_run(config.cron)
        logger.info(f"Next check in {delay:.0f}s")
        await asyncio.sleep(delay)

        logger.info("Scheduled check started")
        try:
            await run_cycle(client, config, dispatcher)
        except Exception as e:
            # A failed cycle must not stop the schedule
            logger.error(f"Scheduled check failed: {e}", exc_info=True)
        logger.info("Scheduled check finished")


async def async_main(argv: Optional[Sequence[str]] = None) -> int:
    try:
        config = UpdaterConfig.from_env(argv)
    except ConfigError as e:
        logging.basicConfig(level=logging.INFO)
        logger.error(f"Configuration error: {e}")
        return 1

    setup_logging(config.log_level)
    logger.info("WatchDucker - Docker image update checker")

    try:
        client = await connect_engine(config.engine_timeout)
    except EngineConnectionError as e:
        logger.error(str(e))
        return 1

    try:
        async with NotificationDispatcher.from_file(config.notify_config) as dispatcher:
            if config.run_once:
                await run_cycle(client, config, dispatcher)
            else:
                await run_scheduler(client, config, dispatcher)
    finally:
        client.close()
    return 0


def main():
    try:
        sys.exit(asyncio.run(async_main()))
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting")
        sys.exit(130)


if __name__ == "__main__":
    main()
