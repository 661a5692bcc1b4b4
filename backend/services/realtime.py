"""Live connection registry and best-effort push fan-out.

The registry only knows who is reachable right now; it is rebuilt from
scratch on restart. Durable delivery state lives in notification receipts.
"""
import logging
import threading
from typing import Any, Dict, Iterable, List, Optional, Protocol, Set

from fastapi.encoders import jsonable_encoder
from starlette.requests import HTTPConnection

from utils.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class TransportHandle(Protocol):
    async def send_json(self, data: Any) -> None: ...


class ConnectionRegistry:
    def __init__(self):
        # sync route handlers run in a thread pool, so every map access takes the lock
        self._lock = threading.Lock()
        self._users: Dict[int, TransportHandle] = {}
        self._admins: Set[TransportHandle] = set()

    # --- membership ---

    def register_connection(self, identity: Optional[int], handle: TransportHandle, is_admin: bool = False) -> None:
        if is_admin:
            with self._lock:
                self._admins.add(handle)
            logger.info("Admin connection registered (%d admins online)", self.admin_count())
            if identity is None:
                return
        elif identity is None:
            raise UnauthorizedError("Connection carries neither an admin key nor a user identity")

        with self._lock:
            previous = self._users.get(identity)
            self._users[identity] = handle  # last connection wins
        if previous is not None and previous is not handle:
            logger.info("User %s reconnected; newer connection supersedes the old one", identity)
        else:
            logger.info("User %s connection registered", identity)

    def remove_connection(self, handle: TransportHandle) -> None:
        with self._lock:
            self._admins.discard(handle)
            for user_id, registered in list(self._users.items()):
                if registered is handle:
                    del self._users[user_id]
                    logger.info("Removed user %s from connected users", user_id)
                    break

    def get(self, user_id: int) -> Optional[TransportHandle]:
        with self._lock:
            return self._users.get(user_id)

    def is_admin(self, handle: TransportHandle) -> bool:
        with self._lock:
            return handle in self._admins

    def admin_handles(self) -> List[TransportHandle]:
        with self._lock:
            return list(self._admins)

    def connected_user_ids(self) -> List[int]:
        with self._lock:
            return list(self._users)

    def user_count(self) -> int:
        with self._lock:
            return len(self._users)

    def admin_count(self) -> int:
        with self._lock:
            return len(self._admins)

    # --- delivery ---

    @staticmethod
    async def _push(handle: TransportHandle, event: str, data: Any) -> bool:
        try:
            await handle.send_json({"event": event, "data": jsonable_encoder(data)})
            return True
        except Exception as exc:
            # delivery is best effort; the caller's mutation already succeeded
            logger.warning("Push of %s failed: %s", event, exc)
            return False

    async def send_to_user(self, user_id: int, event: str, data: Any) -> bool:
        handle = self.get(user_id)
        if handle is None:
            logger.debug("User %s not connected for event %s", user_id, event)
            return False
        return await self._push(handle, event, data)

    async def broadcast(self, notification: Any, target_ids: Iterable[int], event: str = "new-notification") -> int:
        """Push ``notification`` to every connected target and return how many got it."""
        targets = list(target_ids)
        sent_count = 0
        for user_id in targets:
            if await self.send_to_user(user_id, event, notification):
                sent_count += 1
        logger.info("Notification delivery: %d/%d users", sent_count, len(targets))
        return sent_count

    async def notify_admins(self, event: str, data: Any, exclude: Optional[TransportHandle] = None) -> int:
        sent_count = 0
        for handle in self.admin_handles():
            if handle is exclude:
                continue
            if await self._push(handle, event, data):
                sent_count += 1
        logger.info("Sent %s to %d admins", event, sent_count)
        return sent_count


def get_connection_registry(connection: HTTPConnection) -> ConnectionRegistry:
    return connection.app.state.connections
