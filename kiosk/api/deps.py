"""Process-wide collaborators for the HTTP layer (overridable in tests)."""
from typing import Optional

from kiosk.backend.client import BackendClient
from kiosk.backend.lookup import LookupService
from kiosk.core.connectivity import ConnectivityMonitor
from kiosk.core.executor import ConnectivityAwareExecutor
from kiosk.core.registry import SessionRegistry
from kiosk.queue.offline_queue import RedisOfflineQueue

_connectivity: Optional[ConnectivityMonitor] = None
_backend: Optional[BackendClient] = None
_offline_queue: Optional[RedisOfflineQueue] = None
_registry: Optional[SessionRegistry] = None


def get_connectivity() -> ConnectivityMonitor:
    global _connectivity
    if _connectivity is None:
        _connectivity = ConnectivityMonitor(health_check=get_backend().health)
    return _connectivity


def get_backend() -> BackendClient:
    global _backend
    if _backend is None:
        _backend = BackendClient()
    return _backend


def get_offline_queue() -> RedisOfflineQueue:
    global _offline_queue
    if _offline_queue is None:
        _offline_queue = RedisOfflineQueue()
    return _offline_queue


def get_registry() -> SessionRegistry:
    global _registry
    if _registry is None:
        backend = get_backend()
        connectivity = get_connectivity()
        _registry = SessionRegistry(
            LookupService(backend, connectivity),
            ConnectivityAwareExecutor(backend, get_offline_queue(), connectivity),
        )
    return _registry


async def shutdown() -> None:
    global _registry
    if _registry is not None:
        await _registry.close_all()
        _registry = None
