"""
Image reference resolution.

Containers created from a bare image ID ("sha256:...") or whose tag was
moved away ("<none>:<none>") record a reference that cannot be pulled and
cannot be compared against a floating tag. The resolver maps those to the
local image's first real tag, falling back to its first repo digest, so
deduplication and pulls always work on a canonical form.
"""

import logging
from typing import Optional

import docker

from updates.errors import EngineCallError, ResolutionError
from utils.async_docker import engine_call
from utils.image_id import is_image_id

logger = logging.getLogger(__name__)

ANONYMOUS_REFERENCE = '<none>:<none>'
ANONYMOUS_DIGEST = '<none>@<none>'


class ReferenceResolver:
    """Normalizes container image references into pullable tags or digests."""

    def __init__(self, client: docker.DockerClient, engine_timeout: Optional[float] = None):
        self.client = client
        self.engine_timeout = engine_timeout

    @staticmethod
    def needs_resolution(reference: str) -> bool:
        return is_image_id(reference) or reference == ANONYMOUS_REFERENCE

    async def resolve(self, reference: str) -> str:
        """
        Resolve a container's image reference.

        Ordinary tag and repo@digest references pass through unchanged.

        Raises:
            ResolutionError: empty reference, failed local inspect, or an
                orphaned image with neither tag nor digest
        """
        if not reference:
            raise ResolutionError(reference, "image reference is empty")

        if not self.needs_resolution(reference):
            return reference

        try:
            image = await engine_call(
                "inspect image", reference, self.client.images.get, reference,
                deadline=self.engine_timeout
            )
        except EngineCallError as e:
            raise ResolutionError(reference, str(e)) from e

        attrs = image.attrs or {}
        for tag in attrs.get('RepoTags') or []:
            if tag and tag != ANONYMOUS_REFERENCE:
                logger.debug(f"Resolved {reference} to tag {tag}")
                return tag

        for digest in attrs.get('RepoDigests') or []:
            if digest and digest != ANONYMOUS_DIGEST:
                logger.debug(f"Resolved {reference} to digest {digest}")
                return digest

        raise ResolutionError(
            reference,
            "image has no tag or digest; re-pull or tag the image"
        )
