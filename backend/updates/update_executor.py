"""
Update Executor Service

Applies the outcome of a detection batch:
1. Build the update mapping from results that are updated and error-free
2. Select containers whose resolved image is in the mapping
3. Replace them one at a time (ReplacementEngine)
4. Replace the updater's own container last (SelfReplacementProtocol)
5. Optionally prune dangling images left behind by the pulls
"""

import logging
from typing import Dict, Optional, Any

import docker

from config.settings import UpdaterConfig
from updates.errors import SelfUpdateError, UpdaterError
from updates.replacement_engine import ReplacementEngine
from updates.self_updater import SelfReplacementProtocol
from updates.types import BatchCheckResult, UpdateReport, UpdateResult
from utils.async_docker import engine_call

logger = logging.getLogger(__name__)


class UpdateExecutor:
    """
    Service that recreates containers whose images were updated.

    Replacement is strictly sequential so no two recreations touch engine
    state at the same time. A failed container is reported and the batch
    continues with the next one.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        config: UpdaterConfig,
        engine: Optional[ReplacementEngine] = None,
        self_protocol: Optional[SelfReplacementProtocol] = None,
    ):
        self.client = client
        self.config = config
        self.engine = engine or ReplacementEngine(
            client,
            stop_timeout=config.stop_timeout,
            engine_timeout=config.engine_timeout,
        )
        self.self_protocol = self_protocol or SelfReplacementProtocol(
            client,
            engine=self.engine,
            self_label=config.self_label,
            image_fallback=config.self_image_fallback,
            image_keyword=config.self_image_keyword,
            stop_timeout=config.stop_timeout,
            engine_timeout=config.engine_timeout,
        )

    async def apply(self, batch: BatchCheckResult) -> UpdateReport:
        """
        Recreate every container with a confirmed image update.

        Returns:
            UpdateReport with one UpdateResult per attempted container.
            `skipped` is set when no_restart is configured.
        """
        targets = batch.containers_to_update()
        if not targets:
            logger.info("No containers need updating")
            return UpdateReport()

        if self.config.no_restart:
            names = ', '.join(container.name for container, _ in targets)
            logger.info(f"no-restart set, leaving {len(targets)} container(s) on their current image: {names}")
            return UpdateReport(skipped=True)

        ordinary = [(c, image) for c, image in targets if not self.self_protocol.is_self(c)]
        own = [(c, image) for c, image in targets if self.self_protocol.is_self(c)]

        logger.info(f"Updating {len(targets)} container(s)")
        report = UpdateReport()
        report.results.extend(await self.engine.replace_all(ordinary))

        for container, new_image in own:
            try:
                result = await self.self_protocol.replace(container, new_image)
            except SelfUpdateError as e:
                logger.error(f"Self-update of {container.name} failed: {e}")
                result = UpdateResult.failure_result(container, str(e), rollback_performed=True)
            report.results.append(result)

        logger.info(
            f"Update execution complete: {len(report.succeeded)} succeeded, {len(report.failed)} failed"
        )
        return report

    async def clean_dangling_images(self) -> Optional[Dict[str, Any]]:
        """
        Prune dangling images.

        Returns:
            Dict with keys: deleted, space_reclaimed. None when the prune failed.
        """
        logger.info("Cleaning dangling images")
        try:
            response = await engine_call(
                "prune images", "dangling", self.client.images.prune,
                filters={'dangling': True}, deadline=self.config.engine_timeout
            )
        except UpdaterError as e:
            logger.error(f"Failed to clean dangling images: {e}")
            return None

        response = response or {}
        stats = {
            "deleted": len(response.get('ImagesDeleted') or []),
            "space_reclaimed": response.get('SpaceReclaimed') or 0,
        }
        logger.info(
            f"Removed {stats['deleted']} dangling image entries, "
            f"reclaimed {stats['space_reclaimed'] / (1024 * 1024):.1f} MB"
        )
        return stats
