"""
Replacement Engine

Recreates ordinary (non-self) containers on their updated image.

Sequence per container:
    Inspect -> Stop (30s) -> Remove (force) -> Create (new image) -> Start

The create step always uses the ConfigReconciler output, never a hand-picked
subset of fields, so user customizations (extra env, non-default health
checks, devices, resource limits) survive the update.

A failure at any step halts that container only. The error is recorded and
the batch moves on to the next container; containers are processed one at a
time so no two replacements touch engine state concurrently.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple

import docker
from packaging import version

from updates.config_reconciler import ConfigReconciler
from updates.errors import EngineCallError, UpdaterError
from updates.types import ContainerRecord, ReconciledCreateSpec, UpdateResult
from utils.async_docker import engine_call
from utils.container_id import normalize_container_id
from utils.network_helpers import manually_connect_networks

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 30

# Engine API version from which create accepts several endpoints at once
MULTI_ENDPOINT_API_VERSION = version.parse("1.44")


class ReplacementEngine:
    """
    Executes stop -> remove -> create -> start for ordinary containers.

    Also owns the spec-building and create helpers the self-replacement
    protocol reuses, so both paths recreate containers identically.
    """

    def __init__(
        self,
        client: docker.DockerClient,
        reconciler: Optional[ConfigReconciler] = None,
        stop_timeout: int = DEFAULT_STOP_TIMEOUT,
        engine_timeout: Optional[float] = None,
    ):
        self.client = client
        self.reconciler = reconciler or ConfigReconciler()
        self.stop_timeout = stop_timeout
        self.engine_timeout = engine_timeout

    async def replace_all(self, targets: List[Tuple[ContainerRecord, str]]) -> List[UpdateResult]:
        """
        Replace containers sequentially.

        Args:
            targets: (container, new image reference) pairs

        Returns:
            One UpdateResult per target, failures included
        """
        logger.info(f"Replacing {len(targets)} container(s)")
        results = []
        for container, new_image in targets:
            result = await self.replace(container, new_image)
            if not result.success:
                logger.error(f"Failed to update container {container.name}: {result.error_message}")
            results.append(result)
        return results

    async def replace(self, container: ContainerRecord, new_image: str) -> UpdateResult:
        """Recreate one container on new_image. Never raises for engine failures."""
        logger.info(f"Updating container {container.name} ({container.id}) to image {new_image}")

        try:
            old_container = await self.get_container(container.id)
            spec = await self.build_spec(old_container, new_image)

            await engine_call(
                "stop container", container.name, old_container.stop,
                timeout=self.stop_timeout, deadline=self.engine_timeout
            )
            logger.debug(f"Stopped {container.name}")

            await engine_call(
                "remove container", container.name, old_container.remove,
                force=True, deadline=self.engine_timeout
            )
            logger.debug(f"Removed {container.name}")

            new_container_id = await self.create_container(spec)

            await engine_call(
                "start container", container.name, self.client.api.start, new_container_id,
                deadline=self.engine_timeout
            )
        except UpdaterError as e:
            return UpdateResult.failure_result(container, str(e))

        logger.info(
            f"Container {container.name} updated to {new_image}, "
            f"new container ID: {normalize_container_id(new_container_id)}"
        )
        return UpdateResult.success_result(container, new_container_id)

    async def get_container(self, container_id: str) -> Any:
        return await engine_call(
            "inspect container", container_id, self.client.containers.get, container_id,
            deadline=self.engine_timeout
        )

    async def build_spec(self, old_container: Any, new_image: str) -> ReconciledCreateSpec:
        """
        Inspect the target image and reconcile the container's live config against it.

        A NetworkMode of container:<id> is rewritten to container:<name> so it
        keeps pointing at the right container if that one is recreated too.
        """
        image = await engine_call(
            "inspect image", new_image, self.client.images.get, new_image,
            deadline=self.engine_timeout
        )
        attrs = old_container.attrs
        network_mode = (attrs.get('HostConfig') or {}).get('NetworkMode') or ''
        if network_mode.startswith('container:'):
            attrs = await self._resolve_network_container(attrs, network_mode)
        return self.reconciler.reconcile(attrs, image.attrs, new_image)

    async def _resolve_network_container(self, attrs: Dict[str, Any], network_mode: str) -> Dict[str, Any]:
        ref_id = network_mode.split(':', 1)[1]
        try:
            ref_container = await self.get_container(ref_id)
        except EngineCallError as e:
            logger.warning(f"Failed to resolve NetworkMode {network_mode}: {e}")
            return attrs
        resolved = dict(attrs)
        resolved['HostConfig'] = dict(attrs['HostConfig'], NetworkMode=f"container:{ref_container.name}")
        return resolved

    def supports_multi_endpoint_create(self) -> bool:
        try:
            return version.parse(self.client.api.api_version) >= MULTI_ENDPOINT_API_VERSION
        except (TypeError, version.InvalidVersion):
            return False

    async def create_container(
        self,
        spec: ReconciledCreateSpec,
        networking_config: Optional[Dict[str, Any]] = None,
        connect_remaining: bool = True
    ) -> str:
        """
        Create a container from a reconciled spec.

        Args:
            spec: Reconciled create spec
            networking_config: Override for the create-time networking config.
                Defaults to every endpoint when the engine accepts several,
                else only the first one.
            connect_remaining: Attach the endpoints left out at create time

        Returns:
            Full ID of the created container

        Raises:
            EngineCallError: If creation or network attachment fails. A
                container created before a failed attachment is removed.
        """
        if networking_config is None and spec.endpoints:
            if self.supports_multi_endpoint_create():
                networking_config = spec.networking_config
            else:
                networking_config = spec.single_endpoint_config()

        response = await engine_call(
            "create container", spec.name, self.client.api.create_container,
            deadline=self.engine_timeout, **spec.create_kwargs(networking_config)
        )
        container_id = response['Id']
        logger.debug(f"Created container {spec.name} ({normalize_container_id(container_id)})")

        attached = set(((networking_config or {}).get('EndpointsConfig') or {}).keys())
        if connect_remaining and not spec.uses_host_network and set(spec.endpoints) - attached:
            try:
                await manually_connect_networks(
                    self.client, container_id, spec.networking_config,
                    skip=attached, engine_timeout=self.engine_timeout
                )
            except UpdaterError:
                await self.remove_quietly(container_id)
                raise

        return container_id

    async def remove_quietly(self, container_id: str) -> bool:
        """Force-remove a container, logging instead of raising on failure."""
        try:
            await engine_call(
                "remove container", container_id[:12], self.client.api.remove_container,
                container_id, force=True, deadline=self.engine_timeout
            )
            return True
        except UpdaterError as e:
            logger.warning(f"Failed to remove container {container_id[:12]}: {e}")
            return False
