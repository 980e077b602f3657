"""
Self-replacement protocol.

The updater cannot stop its own container before the replacement is running,
or the update process dies with it. Instead:

1. Rename the running container to "<name>_<random suffix>" (no stop)
2. Create the replacement from the reconciled spec attached to one network
3. Disconnect that network and reconnect every original network, so aliases
   are registered only once the old instance no longer owns the name
4. Start the replacement
5. Stop and remove the renamed old container

Rollback:
- Create/reconnect failure: remove the partial container, restore the name
- Start failure: remove the new container, then restore the name
- Failures while retiring the old container are warnings only; the new
  instance is already serving
"""

import logging
import secrets
from typing import Any, Optional

import docker

from config.settings import DEFAULT_SELF_IMAGE_KEYWORD, DEFAULT_SELF_LABEL
from updates.errors import SelfUpdateError, UpdaterError
from updates.reference_resolver import ReferenceResolver
from updates.replacement_engine import ReplacementEngine, DEFAULT_STOP_TIMEOUT
from updates.types import ContainerRecord, UpdateResult
from utils.async_docker import async_containers_list, engine_call
from utils.image_pull_progress import ImagePullProgress
from utils.network_helpers import disconnect_network, manually_connect_networks

logger = logging.getLogger(__name__)

TEMP_SUFFIX_BYTES = 4  # 8 hex characters


class SelfReplacementProtocol:
    """Replaces the container the updater itself runs in without downtime."""

    def __init__(
        self,
        client: docker.DockerClient,
        engine: Optional[ReplacementEngine] = None,
        self_label: str = DEFAULT_SELF_LABEL,
        image_fallback: bool = False,
        image_keyword: str = DEFAULT_SELF_IMAGE_KEYWORD,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        engine_timeout: Optional[float] = None,
    ):
        self.client = client
        self.engine = engine or ReplacementEngine(client, stop_timeout=stop_timeout, engine_timeout=engine_timeout)
        self.self_label = self_label
        self.image_fallback = image_fallback
        self.image_keyword = image_keyword
        self.stop_timeout = stop_timeout
        self.engine_timeout = engine_timeout

    def is_self(self, container: ContainerRecord) -> bool:
        """
        True when the container is the updater's own.

        The explicit label decides. The image substring match is used only
        when enabled, since any image whose name contains the keyword matches.
        """
        if container.labels.get(self.self_label, '').lower() == 'true':
            return True
        if self.image_fallback and self.image_keyword and self.image_keyword in container.image:
            logger.warning(
                f"Identified {container.name} as the updater container by image name "
                f"({container.image}); set label {self.self_label}=true to make this explicit"
            )
            return True
        return False

    async def find_self(self) -> Optional[ContainerRecord]:
        """Return the running updater container, or None."""
        containers = await async_containers_list(self.client)
        for container in containers:
            record = ContainerRecord.from_container(container)
            if self.is_self(record):
                logger.debug(f"Found updater container {record.name} ({record.id})")
                return record
        return None

    async def self_update(self, pull_timeout: int = 1800) -> UpdateResult:
        """
        Pull the updater's image and replace the updater container with it.

        Raises:
            SelfUpdateError: container not found, image unresolvable or not
                pullable, or the protocol failed (after rollback)
        """
        record = await self.find_self()
        if record is None:
            raise SelfUpdateError(f"no running container labelled {self.self_label}=true")

        try:
            image = await ReferenceResolver(self.client, self.engine_timeout).resolve(record.image)
            await engine_call(
                "pull image", image, ImagePullProgress().stream_pull, self.client, image, pull_timeout
            )
        except UpdaterError as e:
            raise SelfUpdateError(f"cannot prepare image for {record.name}: {e}") from e

        return await self.replace(record, image)

    async def replace(self, container: ContainerRecord, new_image: str) -> UpdateResult:
        """
        Run the protocol for one container.

        Returns:
            Successful UpdateResult, possibly carrying warnings about the old
            container

        Raises:
            SelfUpdateError: when the replacement could not be brought up. The
                original container keeps its name and keeps running.
        """
        original_name = container.name
        temp_name = f"{original_name}_{secrets.token_hex(TEMP_SUFFIX_BYTES)}"
        logger.info(f"Self-updating {original_name} to {new_image}")

        try:
            old_container = await self.engine.get_container(container.id)
            spec = await self.engine.build_spec(old_container, new_image)
        except UpdaterError as e:
            raise SelfUpdateError(f"cannot prepare self-update of {original_name}: {e}") from e

        try:
            await engine_call("rename container", original_name, old_container.rename, temp_name,
                              deadline=self.engine_timeout)
        except UpdaterError as e:
            raise SelfUpdateError(f"cannot rename {original_name}: {e}") from e
        logger.info(f"Renamed {original_name} to {temp_name}")

        first_network = spec.single_endpoint_config()
        new_container_id = None
        try:
            new_container_id = await self.engine.create_container(
                spec, networking_config=first_network, connect_remaining=False
            )
            if first_network and not spec.uses_host_network:
                network_name = next(iter(first_network['EndpointsConfig']))
                await disconnect_network(self.client, new_container_id, network_name, self.engine_timeout)
                await manually_connect_networks(
                    self.client, new_container_id, spec.networking_config,
                    engine_timeout=self.engine_timeout
                )
        except UpdaterError as e:
            logger.error(f"Creating replacement for {original_name} failed: {e}")
            if new_container_id:
                await self.engine.remove_quietly(new_container_id)
            await self._restore_name(old_container, temp_name, original_name)
            raise SelfUpdateError(f"cannot create replacement for {original_name}: {e}") from e

        try:
            await engine_call("start container", original_name, self.client.api.start, new_container_id,
                              deadline=self.engine_timeout)
        except UpdaterError as e:
            logger.error(f"Starting replacement for {original_name} failed: {e}")
            # the new container holds the original name until it is gone
            await self.engine.remove_quietly(new_container_id)
            await self._restore_name(old_container, temp_name, original_name)
            raise SelfUpdateError(f"cannot start replacement for {original_name}: {e}") from e

        logger.info(f"Replacement {original_name} ({new_container_id[:12]}) is running, retiring {temp_name}")
        result = UpdateResult.success_result(container, new_container_id)
        result.warnings.extend(await self._retire(old_container, temp_name))
        return result

    async def _retire(self, old_container: Any, temp_name: str) -> list:
        warnings = []
        try:
            await engine_call("stop container", temp_name, old_container.stop,
                              timeout=self.stop_timeout, deadline=self.engine_timeout)
        except UpdaterError as e:
            warnings.append(str(e))
            logger.warning(f"Failed to stop old container {temp_name}: {e}")
        try:
            await engine_call("remove container", temp_name, old_container.remove, force=True,
                              deadline=self.engine_timeout)
        except UpdaterError as e:
            warnings.append(str(e))
            logger.warning(f"Failed to remove old container {temp_name}, remove it manually: {e}")
        return warnings

    async def _restore_name(self, old_container: Any, temp_name: str, original_name: str) -> bool:
        try:
            await engine_call("rename container", temp_name, old_container.rename, original_name,
                              deadline=self.engine_timeout)
            logger.warning(f"Rollback: restored {temp_name} to {original_name}")
            return True
        except UpdaterError as e:
            logger.critical(
                f"CRITICAL: Failed to restore {temp_name} to {original_name}: {e}. "
                f"Manual intervention required"
            )
            return False
