"""
Network helper utilities.

Shared functions for attaching a freshly created container to its networks
after creation. Used by ReplacementEngine on engines that accept only one
endpoint at create time, and by the self-replacement protocol which must
attach networks while the previous instance still holds its aliases.
"""

import logging
from typing import Optional, Dict, Any

from utils.async_docker import engine_call

logger = logging.getLogger(__name__)


def endpoint_connect_kwargs(endpoint_config: Dict[str, Any]) -> Dict[str, Any]:
    """Map an EndpointsConfig entry to docker-py `Network.connect()` keyword arguments."""
    connect_kwargs = {}

    # Static IP addresses (only if user-configured, not auto-assigned)
    ipam = endpoint_config.get('IPAMConfig') or {}
    if ipam.get('IPv4Address'):
        connect_kwargs['ipv4_address'] = ipam['IPv4Address']
    if ipam.get('IPv6Address'):
        connect_kwargs['ipv6_address'] = ipam['IPv6Address']
    if ipam.get('LinkLocalIPs'):
        connect_kwargs['link_local_ips'] = ipam['LinkLocalIPs']

    if endpoint_config.get('Aliases'):
        connect_kwargs['aliases'] = endpoint_config['Aliases']

    # Links (legacy)
    if endpoint_config.get('Links'):
        connect_kwargs['links'] = endpoint_config['Links']

    if endpoint_config.get('DriverOpts'):
        connect_kwargs['driver_opt'] = endpoint_config['DriverOpts']

    return connect_kwargs


async def manually_connect_networks(
    client: Any,
    container_id: str,
    networking_config: Optional[Dict[str, Any]],
    skip: Optional[set] = None,
    engine_timeout: Optional[float] = None
) -> None:
    """
    Connect a container to every network in a networking config.

    Handles:
    - Multiple networks
    - Static IP addresses (IPv4/IPv6)
    - Network aliases
    - Links (legacy)

    Args:
        client: Docker client instance
        container_id: Container to connect
        networking_config: {"EndpointsConfig": {network_name: endpoint_config}}
        skip: Network names already attached
        engine_timeout: Optional per-call deadline

    Raises:
        EngineCallError: If a connection fails (the caller cleans up the container)
    """
    endpoints = (networking_config or {}).get('EndpointsConfig') or {}
    skip = skip or set()

    for network_name, endpoint_config in endpoints.items():
        if network_name in skip:
            continue
        network = await engine_call(
            "get network", network_name, client.networks.get, network_name,
            deadline=engine_timeout
        )
        connect_kwargs = endpoint_connect_kwargs(endpoint_config or {})
        await engine_call(
            "connect network", f"{network_name} <- {container_id[:12]}",
            network.connect, container_id, deadline=engine_timeout, **connect_kwargs
        )
        logger.debug(f"Connected {container_id[:12]} to network {network_name} {connect_kwargs}")


async def disconnect_network(
    client: Any,
    container_id: str,
    network_name: str,
    engine_timeout: Optional[float] = None
) -> None:
    """Force-disconnect a container from one network."""
    network = await engine_call(
        "get network", network_name, client.networks.get, network_name,
        deadline=engine_timeout
    )
    await engine_call(
        "disconnect network", f"{network_name} -> {container_id[:12]}",
        network.disconnect, container_id, force=True, deadline=engine_timeout
    )
    logger.debug(f"Disconnected {container_id[:12]} from network {network_name}")
