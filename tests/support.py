"""Shared fixtures: in-memory database, test client and account helpers.

Settings are read when the app modules are imported, so the environment is
prepared here before anything from the backend is loaded.
"""
import os
import tempfile
import unittest
from functools import partial

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["ADMIN_API_KEY"] = "test-admin-key"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["LOG_DIR"] = ""
os.environ["MAIL_SERVER"] = ""
os.environ["UPLOAD_DIR"] = tempfile.mkdtemp(prefix="complaints-uploads-")

from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine  # noqa: E402

from core.database import get_session, get_session_factory, register_models  # noqa: E402
from main import app  # noqa: E402
from models.task import Technician, TechnicianStatus  # noqa: E402
from models.user import User, UserRole  # noqa: E402
from services.realtime import ConnectionRegistry  # noqa: E402
from utils.security import create_access_token, hash_password  # noqa: E402

ADMIN_HEADERS = {"x-admin-api-key": "test-admin-key"}
DEFAULT_PASSWORD = "Str0ng-Passw0rd"


class FakeHandle:
    """Stands in for a websocket; records what was pushed to it."""

    def __init__(self, fail: bool = False):
        self.sent = []
        self.fail = fail

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("connection closed")
        self.sent.append(data)

    def events(self):
        return [message["event"] for message in self.sent]


def make_engine(url="sqlite://", **options):
    register_models()
    options.setdefault("poolclass", StaticPool)
    engine = create_engine(url, connect_args={"check_same_thread": False}, **options)
    SQLModel.metadata.create_all(engine)
    return engine


class DatabaseTestCase(unittest.TestCase):
    def setUp(self):
        self.engine = make_engine()
        self.session = Session(self.engine)

    def tearDown(self):
        self.session.close()
        SQLModel.metadata.drop_all(self.engine)
        self.engine.dispose()

    def make_user(self, email, role=UserRole.resident, password=DEFAULT_PASSWORD, name=None):
        user = User(email=email, password_hash=hash_password(password), role=role, name=name or email.split("@")[0])
        self.session.add(user)
        self.session.commit()
        self.session.refresh(user)
        return user

    def make_technician(self, email, status=TechnicianStatus.active):
        user = self.make_user(email, role=UserRole.technician)
        technician = Technician(user_id=user.id, status=status)
        self.session.add(technician)
        self.session.commit()
        self.session.refresh(technician)
        return user, technician

    def reload(self, model, pk):
        self.session.expire_all()
        return self.session.get(model, pk)


class ApiTestCase(DatabaseTestCase):
    def setUp(self):
        super().setUp()

        def session_override():
            with Session(self.engine) as session:
                yield session

        app.dependency_overrides[get_session] = session_override
        app.dependency_overrides[get_session_factory] = lambda: partial(Session, self.engine)
        app.state.connections = ConnectionRegistry()
        self.registry = app.state.connections
        self.client = TestClient(app)

    def tearDown(self):
        app.dependency_overrides.clear()
        super().tearDown()

    @staticmethod
    def auth(user):
        return {"Authorization": f"Bearer {create_access_token(user)}"}

    def file_complaint(self, resident, **overrides):
        payload = {
            "title": "Burst pipe on Main St",
            "description": "Water pouring onto the road",
            "category": "PIPE_BURST",
            "urgency": "HIGH",
        }
        payload.update(overrides)
        response = self.client.post("/complaints/", json=payload, headers=self.auth(resident))
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()
