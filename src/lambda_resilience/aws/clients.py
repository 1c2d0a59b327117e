"""
Reusable AWS SDK clients.

Creating a boto3 client costs tens of milliseconds and a fresh TLS connection.
Clients built here are cached for the lifetime of the execution environment, so
only the cold start pays for them and warm invocations reuse the same connection
pool.
"""

import threading
from typing import Any, Callable, Dict, List, Optional, Tuple

import boto3
from botocore.client import BaseClient
from botocore.config import Config

from lambda_resilience.handlers.models.env_vars import get_handler_env_vars
from lambda_resilience.handlers.utils.observability import logger

# Fail fast on network trouble; let the SDK retry throttling with its own backoff
DEFAULT_CLIENT_CONFIG = Config(
    connect_timeout=3,
    read_timeout=10,
    retries={'mode': 'standard', 'total_max_attempts': 3},
)

ClientKey = Tuple[str, Optional[str], Optional[str]]

_lock = threading.Lock()
_clients: Dict[ClientKey, BaseClient] = {}
_resources: Dict[ClientKey, Any] = {}
_event_hooks: Dict[str, Tuple[str, Callable[..., Any]]] = {}


def _resolve_key(service_name: str, region_name: Optional[str], endpoint_url: Optional[str]) -> ClientKey:
    env_vars = get_handler_env_vars()
    return (
        service_name,
        region_name or env_vars.AWS_REGION,
        endpoint_url or env_vars.AWS_ENDPOINT_URL,
    )


def _apply_hooks(client: BaseClient) -> None:
    for unique_id, (event_name, handler) in _event_hooks.items():
        client.meta.events.register(event_name, handler, unique_id=unique_id)


def get_client(
    service_name: str,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> BaseClient:
    """
    Get a cached low-level client.

    Args:
        service_name: AWS service name, e.g. 'sqs'
        region_name: Region override, defaults to AWS_REGION
        endpoint_url: Endpoint override, defaults to AWS_ENDPOINT_URL

    Returns:
        A boto3 client shared by every caller in this process
    """
    key = _resolve_key(service_name, region_name, endpoint_url)
    client = _clients.get(key)
    if client is not None:
        return client

    with _lock:
        client = _clients.get(key)
        if client is None:
            client = boto3.client(
                service_name,
                region_name=key[1],
                endpoint_url=key[2],
                config=DEFAULT_CLIENT_CONFIG,
            )
            _apply_hooks(client)
            _clients[key] = client
            logger.debug("Created AWS client", extra={"service": service_name, "region": key[1]})
    return client


def get_resource(
    service_name: str,
    region_name: Optional[str] = None,
    endpoint_url: Optional[str] = None,
) -> Any:
    """Get a cached boto3 resource, e.g. for DynamoDB tables."""
    key = _resolve_key(service_name, region_name, endpoint_url)
    resource = _resources.get(key)
    if resource is not None:
        return resource

    with _lock:
        resource = _resources.get(key)
        if resource is None:
            resource = boto3.resource(
                service_name,
                region_name=key[1],
                endpoint_url=key[2],
                config=DEFAULT_CLIENT_CONFIG,
            )
            _apply_hooks(resource.meta.client)
            _resources[key] = resource
            logger.debug("Created AWS resource", extra={"service": service_name, "region": key[1]})
    return resource


def _all_clients() -> List[BaseClient]:
    return list(_clients.values()) + [resource.meta.client for resource in _resources.values()]


def register_client_hook(event_name: str, handler: Callable[..., Any], unique_id: str) -> None:
    """
    Register a botocore event handler on every cached and future client.

    Args:
        event_name: botocore event, e.g. 'before-send'
        handler: Event handler callable
        unique_id: Identifier used to unregister the handler
    """
    with _lock:
        _event_hooks[unique_id] = (event_name, handler)
        for client in _all_clients():
            client.meta.events.register(event_name, handler, unique_id=unique_id)


def unregister_client_hook(unique_id: str) -> None:
    """Remove a handler registered with ``register_client_hook``."""
    with _lock:
        hook = _event_hooks.pop(unique_id, None)
        if hook is None:
            return
        event_name, handler = hook
        for client in _all_clients():
            client.meta.events.unregister(event_name, handler, unique_id=unique_id)


def clear_client_cache() -> None:
    """Drop every cached client and resource."""
    with _lock:
        _clients.clear()
        _resources.clear()
