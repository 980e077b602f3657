"""
Update Detector

Determines, for a set of containers, which of their images have a newer
version in the registry.

Workflow:
1. Resolve each container's image reference (ReferenceResolver)
   - unresolvable references become failed results, no network check
2. Deduplicate resolved references, so N containers on K images cost K pulls
3. For each unique image, concurrently (bounded by max_concurrency):
   - read the local content hash
   - pull the image, logging layer progress
   - read the content hash again
   - updated = local hash != post-pull hash
4. Hand each result to the progress observer as it arrives and to the
   BatchAggregator
5. Summarize once every task has finished
"""

import asyncio
import logging
import time
from typing import Dict, List, Optional, Tuple

import docker

from updates.batch_aggregator import BatchAggregator
from updates.errors import EngineCallError, ResolutionError
from updates.reference_resolver import ReferenceResolver
from updates.types import BatchCheckResult, ContainerRecord, ImageCheckResult, ProgressCallback
from utils.async_docker import engine_call
from utils.image_id import normalize_image_id
from utils.image_pull_progress import ImagePullProgress

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONCURRENT_CHECKS = 4


class UpdateDetector:
    """
    Checks containers' images for newer registry versions.

    A single DockerClient is shared by all check tasks. One failing image
    never blocks the others; its failure is recorded in its result.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        resolver: Optional[ReferenceResolver] = None,
        pull_tracker: Optional[ImagePullProgress] = None,
        max_concurrency: int = DEFAULT_MAX_CONCURRENT_CHECKS,
        pull_timeout: int = 1800,
        engine_timeout: Optional[float] = None,
    ):
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.client = client
        self.resolver = resolver or ReferenceResolver(client, engine_timeout=engine_timeout)
        self.pull_tracker = pull_tracker or ImagePullProgress()
        self.max_concurrency = max_concurrency
        self.pull_timeout = pull_timeout
        self.engine_timeout = engine_timeout

    async def check(
        self,
        containers: List[ContainerRecord],
        progress_callback: Optional[ProgressCallback] = None
    ) -> BatchCheckResult:
        """
        Check every container's image and return the aggregate result.

        Args:
            containers: Containers to examine (from discovery)
            progress_callback: Called once per image result, in arrival order

        Returns:
            BatchCheckResult. When any image failed, `first_error` holds the
            first failure; all other results are still present.
        """
        start_time = time.monotonic()
        aggregator = BatchAggregator()

        if not containers:
            logger.warning("No matching containers found")
            return aggregator.build([], {}, time.monotonic() - start_time)

        logger.info(f"Found {len(containers)} containers, checking images for updates")

        unique_images, resolved, skipped = await self._extract_image_references(containers)
        for skipped_result, error in skipped:
            aggregator.add(skipped_result, error)
            self._notify(progress_callback, skipped_result)

        logger.debug(f"Checking {len(unique_images)} unique images: {unique_images}")

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def check_with_semaphore(image: str) -> Tuple[ImageCheckResult, Optional[BaseException]]:
            async with semaphore:
                return await self.check_image(image)

        tasks = [asyncio.ensure_future(check_with_semaphore(image)) for image in unique_images]
        try:
            for next_done in asyncio.as_completed(tasks):
                result, error = await next_done
                aggregator.add(result, error)
                self._notify(progress_callback, result)
        except BaseException:
            for task in tasks:
                task.cancel()
            raise

        batch = aggregator.build(containers, resolved, time.monotonic() - start_time)
        summary = batch.summary
        logger.info(
            f"Image check complete: {summary.updated} updated, {summary.up_to_date} up to date, "
            f"{summary.failed} failed in {summary.duration:.2f}s"
        )
        if aggregator.error_count:
            logger.warning(f"{aggregator.error_count} image(s) failed during the check")
        return batch

    async def check_image(self, image: str) -> Tuple[ImageCheckResult, Optional[BaseException]]:
        """
        Check one resolved image reference.

        Returns:
            (result, error) where error is None on success. Failures are
            returned, not raised, so sibling checks keep running.
        """
        logger.info(f"Checking image: {image}")

        try:
            local_hash = await self.get_local_hash(image)
        except EngineCallError as e:
            logger.debug(f"Local hash for {image} unavailable: {e}")
            return ImageCheckResult.failure(image, f"failed to read local image: {e}"), e

        try:
            remote_hash = await self.pull_and_get_hash(image)
        except EngineCallError as e:
            logger.debug(f"Pull of {image} failed: {e}")
            return ImageCheckResult.failure(image, f"failed to pull image: {e}", local_hash=local_hash), e

        result = ImageCheckResult.from_hashes(image, local_hash, remote_hash)
        logger.debug(
            f"Image {image}: {normalize_image_id(local_hash)} -> {normalize_image_id(remote_hash)} "
            f"(updated={result.updated})"
        )
        return result, None

    async def get_local_hash(self, image: str) -> str:
        """Content hash (image ID) of the local image. Raises EngineCallError if absent."""
        local_image = await engine_call(
            "inspect image", image, self.client.images.get, image,
            deadline=self.engine_timeout
        )
        return local_image.id

    async def pull_and_get_hash(self, image: str) -> str:
        """Pull the image from its registry, then return the local content hash."""
        await engine_call(
            "pull image", image,
            self.pull_tracker.stream_pull, self.client, image, self.pull_timeout,
        )
        return await self.get_local_hash(image)

    async def _extract_image_references(
        self,
        containers: List[ContainerRecord]
    ) -> Tuple[List[str], Dict[str, str], List[Tuple[ImageCheckResult, ResolutionError]]]:
        """
        Resolve and deduplicate container image references.

        Returns:
            (unique resolved images in first-seen order,
             container short ID -> resolved reference,
             failed results for references that could not be resolved)
        """
        unique_images: List[str] = []
        seen = set()
        resolved: Dict[str, str] = {}
        skipped: List[Tuple[ImageCheckResult, ResolutionError]] = []
        resolution_cache: Dict[str, str] = {}
        failed_references = set()

        for container in containers:
            reference = container.image
            if reference in failed_references:
                continue

            if reference in resolution_cache:
                normalized = resolution_cache[reference]
            else:
                try:
                    normalized = await self.resolver.resolve(reference)
                except ResolutionError as e:
                    message = f"image {reference} of container {container.name} cannot be resolved: {e.reason}"
                    logger.warning(message)
                    failed_references.add(reference)
                    skipped.append((ImageCheckResult.failure(reference, message), e))
                    continue
                resolution_cache[reference] = normalized

            resolved[container.id] = normalized
            if normalized not in seen:
                seen.add(normalized)
                unique_images.append(normalized)

        return unique_images, resolved, skipped

    @staticmethod
    def _notify(progress_callback: Optional[ProgressCallback], result: ImageCheckResult) -> None:
        if progress_callback is None:
            return
        try:
            progress_callback(result)
        except Exception as e:
            logger.error(f"Progress observer failed for {result.image}: {e}", exc_info=True)
