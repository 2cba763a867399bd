"""
Event Broadcaster - pushes job lifecycle events to a tenant's live connections.

Fire-and-forget with tenant-room semantics: every connection registered
for the tenant gets the event, nothing is buffered for tenants with no
connections, and a reconnecting client re-reads job state from the store.
The broadcaster is never a source of truth; disconnects change no job state.
"""

import asyncio
import logging
from threading import Lock
from typing import Optional

from agenthub.shared.interfaces import IConnection
from agenthub.shared.models import EventType, JobEvent

logger = logging.getLogger(__name__)


class EventBroadcaster:
    """Tenant -> connections table with best-effort delivery."""

    def __init__(self, send_timeout_seconds: float = 5.0):
        self._send_timeout = send_timeout_seconds
        self._connections: dict[str, IConnection] = {}      # connection_id -> connection
        self._connection_tenant: dict[str, str] = {}         # connection_id -> tenant_id
        self._tenant_rooms: dict[str, set[str]] = {}         # tenant_id -> connection_ids
        self._lock = Lock()

    def register_connection(self, tenant_id: str, connection_id: str, connection: IConnection) -> None:
        with self._lock:
            previous = self._connection_tenant.get(connection_id)
            if previous and previous != tenant_id:
                self._remove(connection_id)
            self._connections[connection_id] = connection
            self._connection_tenant[connection_id] = tenant_id
            self._tenant_rooms.setdefault(tenant_id, set()).add(connection_id)
        logger.info(f"Connection {connection_id} registered for tenant {tenant_id}")

    def unregister_connection(self, connection_id: str) -> bool:
        """Idempotent. Returns True if the connection was known."""
        with self._lock:
            removed = self._remove(connection_id)
        if removed:
            logger.info(f"Connection {connection_id} unregistered")
        return removed

    def _remove(self, connection_id: str) -> bool:
        tenant_id = self._connection_tenant.pop(connection_id, None)
        self._connections.pop(connection_id, None)
        if tenant_id is None:
            return False
        room = self._tenant_rooms.get(tenant_id)
        if room is not None:
            room.discard(connection_id)
            if not room:
                del self._tenant_rooms[tenant_id]
        return True

    def connection_count(self, tenant_id: Optional[str] = None) -> int:
        with self._lock:
            if tenant_id is None:
                return len(self._connections)
            return len(self._tenant_rooms.get(tenant_id, ()))

    async def publish(self, tenant_id: str, event_type: EventType, payload: dict) -> int:
        """
        Deliver to every live connection of the tenant. Never raises.
        Returns the number of connections the event reached.
        """
        job_id = payload.get("jobId", "")
        data = {k: v for k, v in payload.items() if k != "jobId"}
        message = JobEvent(
            event_type=event_type, job_id=job_id, tenant_id=tenant_id, payload=data,
        ).to_dict()

        with self._lock:
            targets = [
                (cid, self._connections[cid])
                for cid in self._tenant_rooms.get(tenant_id, ())
            ]
        if not targets:
            return 0

        results = await asyncio.gather(
            *(self._send(conn, message) for _, conn in targets),
            return_exceptions=True,
        )
        delivered = 0
        for (connection_id, _), result in zip(targets, results):
            if result is True:
                delivered += 1
            else:
                logger.warning(f"Dropping connection {connection_id} of tenant {tenant_id}: {result}")
                self.unregister_connection(connection_id)
        return delivered

    async def _send(self, connection: IConnection, message: dict) -> bool:
        await asyncio.wait_for(connection.send_json(message), timeout=self._send_timeout)
        return True
