"""
Image pull with layer-by-layer progress logging.

Usage:
    tracker = ImagePullProgress()
    layers = await engine_call(
        "pull image", "nginx:latest", tracker.stream_pull, client, "nginx:latest", 1800
    )

The streaming pull runs in the thread pool (see utils.async_docker), so
several pulls can proceed while the event loop keeps scheduling checks.
"""

import logging
import time
from typing import Set

import docker

logger = logging.getLogger(__name__)


class ImagePullProgress:
    """
    Handles Docker image pulls with per-layer progress logging.

    Features:
    - Layer status logging (downloading, extracting, complete, cached)
    - Error lines in the pull stream surface as exceptions
    - Timeout handling
    - Post-pull verification that the image landed in the local store
    """

    def stream_pull(self, client: docker.DockerClient, image: str, timeout: int = 1800) -> int:
        """
        Synchronous streaming pull.

        Called via engine_call to run in the thread pool.

        Returns:
            Number of layers seen in the stream

        Raises:
            TimeoutError: If pull exceeds timeout
            docker.errors.APIError: If the registry or daemon reports an error
        """
        api_client = client.api
        layers: Set[str] = set()
        start_time = time.time()

        stream = api_client.pull(image, stream=True, decode=True)

        for line in stream:
            elapsed = time.time() - start_time
            if elapsed > timeout:
                raise TimeoutError(f"Image pull exceeded {timeout} seconds")

            if line.get('error'):
                raise docker.errors.APIError(line['error'])

            layer_id = line.get('id')
            status = line.get('status', '')

            # Non-layer messages ("Pulling from library/nginx", "Digest: ...", "Status: ...")
            if not layer_id:
                if status:
                    logger.debug(f"[{image}] {status}")
                continue

            layers.add(layer_id)
            if status in ('Already exists', 'Pull complete'):
                logger.debug(f"[{image}] Layer {layer_id[:12]}: {status}")

        # Stream ending doesn't guarantee the image is committed to the image store
        max_retries = 5
        retry_delay = 0.5
        for attempt in range(max_retries):
            try:
                client.images.get(image)
                break
            except docker.errors.ImageNotFound:
                if attempt < max_retries - 1:
                    logger.warning(
                        f"Image {image} not yet available after pull "
                        f"(attempt {attempt + 1}/{max_retries}), retrying in {retry_delay}s"
                    )
                    time.sleep(retry_delay)
                    retry_delay *= 2
                else:
                    raise RuntimeError(
                        f"Image {image} pull appeared successful but image not available "
                        f"after {max_retries} verification attempts"
                    )

        logger.debug(f"Pulled {image} ({len(layers)} layers, {time.time() - start_time:.1f}s)")
        return len(layers)
