import os
import tempfile
import unittest

from support import ADMIN_HEADERS, ApiTestCase, FakeHandle, make_engine  # sets up the environment first
from sqlalchemy.pool import QueuePool
from sqlmodel import Session, SQLModel
from starlette.websockets import WebSocketDisconnect

from services.realtime import ConnectionRegistry
from utils.errors import UnauthorizedError


class ConnectionRegistryTests(unittest.IsolatedAsyncioTestCase):
    def setUp(self):
        self.registry = ConnectionRegistry()

    async def test_last_connection_wins(self):
        first, second = FakeHandle(), FakeHandle()
        self.registry.register_connection(7, first)
        self.registry.register_connection(7, second)

        self.assertTrue(await self.registry.send_to_user(7, "ping", {}))
        self.assertEqual(first.sent, [])
        self.assertEqual(second.events(), ["ping"])
        self.assertEqual(self.registry.user_count(), 1)

    async def test_remove_is_idempotent(self):
        handle = FakeHandle()
        self.registry.register_connection(7, handle)
        self.registry.remove_connection(handle)
        self.registry.remove_connection(handle)
        self.assertIsNone(self.registry.get(7))
        self.assertFalse(await self.registry.send_to_user(7, "ping", {}))

    def test_anonymous_connection_is_refused(self):
        with self.assertRaises(UnauthorizedError):
            self.registry.register_connection(None, FakeHandle())

    async def test_broadcast_counts_only_successful_pushes(self):
        ok, broken = FakeHandle(), FakeHandle(fail=True)
        self.registry.register_connection(1, ok)
        self.registry.register_connection(2, broken)

        sent = await self.registry.broadcast({"title": "Outage"}, [1, 2, 3])
        self.assertEqual(sent, 1)
        self.assertEqual(ok.sent, [{"event": "new-notification", "data": {"title": "Outage"}}])

    async def test_admin_account_also_gets_direct_pushes(self):
        handle = FakeHandle()
        self.registry.register_connection(9, handle, is_admin=True)

        self.assertTrue(await self.registry.send_to_user(9, "new-notification", {"title": "Audit"}))
        self.assertTrue(self.registry.is_admin(handle))

        self.registry.remove_connection(handle)
        self.assertIsNone(self.registry.get(9))
        self.assertEqual(self.registry.admin_count(), 0)

    async def test_notify_admins_can_skip_the_sender(self):
        sender, other = FakeHandle(), FakeHandle()
        self.registry.register_connection(None, sender, is_admin=True)
        self.registry.register_connection(None, other, is_admin=True)

        sent = await self.registry.notify_admins("admin-notification", {"id": 1}, exclude=sender)
        self.assertEqual(sent, 1)
        self.assertEqual(sender.sent, [])
        self.assertTrue(self.registry.is_admin(other))


class NotificationSocketTests(ApiTestCase):
    def test_connection_without_credentials_is_closed(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect("/ws/notifications"):
                pass
        self.assertEqual(ctx.exception.code, 1008)

    def test_bad_token_is_closed(self):
        with self.assertRaises(WebSocketDisconnect) as ctx:
            with self.client.websocket_connect("/ws/notifications?token=garbage"):
                pass
        self.assertEqual(ctx.exception.code, 1008)

    def test_user_registration(self):
        resident = self.make_user("resident@example.com")
        token = self.auth(resident)["Authorization"].split()[1]

        with self.client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.send_json({"event": "register", "data": {}})
            reply = ws.receive_json()
            self.assertEqual(reply["event"], "registration-success")
            self.assertEqual(reply["data"]["user_id"], resident.id)

            ws.send_json({"event": "send-notification", "data": {"title": "Hi", "message": "Hello"}})
            self.assertEqual(ws.receive_json()["event"], "notification-error")

    def test_admin_sends_over_the_socket(self):
        resident = self.make_user("resident@example.com")
        resident_handle = FakeHandle()
        self.registry.register_connection(resident.id, resident_handle)

        with self.client.websocket_connect("/ws/notifications", headers=ADMIN_HEADERS) as ws:
            ws.send_json(
                {
                    "event": "send-notification",
                    "data": {
                        "title": "Boil water advisory",
                        "message": "Boil drinking water until further notice",
                        "audience": "SPECIFIC",
                        "target_user_ids": [resident.id],
                    },
                }
            )
            reply = ws.receive_json()

        self.assertEqual(reply["event"], "notification-sent")
        self.assertEqual(reply["data"]["sent_count"], 1)
        self.assertEqual(reply["data"]["total_targets"], 1)
        self.assertEqual(resident_handle.events(), ["new-notification"])

    def test_invalid_payload_reports_error(self):
        with self.client.websocket_connect("/ws/notifications?api_key=test-admin-key") as ws:
            ws.send_json({"event": "send-notification", "data": {"title": "Missing message"}})
            self.assertEqual(ws.receive_json()["event"], "notification-error")


class IdleSocketConnectionTests(ApiTestCase):
    def setUp(self):
        super().setUp()
        # file database behind a single-connection pool
        self.session.close()
        SQLModel.metadata.drop_all(self.engine)
        self.engine.dispose()
        path = os.path.join(tempfile.mkdtemp(), "sockets.db")
        self.engine = make_engine(f"sqlite:///{path}", poolclass=QueuePool, pool_size=1, max_overflow=0, pool_timeout=1)
        self.session = Session(self.engine)

    def test_idle_socket_holds_no_connection(self):
        resident = self.make_user("resident@example.com")
        headers = self.auth(resident)
        token = headers["Authorization"].split()[1]
        self.session.close()

        with self.client.websocket_connect(f"/ws/notifications?token={token}") as ws:
            ws.send_json({"event": "register", "data": {}})
            self.assertEqual(ws.receive_json()["event"], "registration-success")
            self.assertEqual(self.engine.pool.checkedout(), 0)

            response = self.client.get("/notifications/unread-count", headers=headers)
            self.assertEqual(response.status_code, 200)
            self.assertEqual(response.json(), {"count": 0})


if __name__ == "__main__":
    unittest.main()
