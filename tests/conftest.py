# tests/conftest.py
import os
import io
import tempfile

# --- STEP 0: Environment for config.py ---
# config.py validates its secrets at import time, so these must be set before
# anything from the application is imported.
_TEST_DATA_DIR = tempfile.mkdtemp(prefix="food-enhancer-tests-")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest")
os.environ.setdefault("REFRESH_SECRET_KEY", "test-refresh-secret-key-for-pytest")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SENTRY_DSN", "your-sentry-dsn-goes-here")
os.environ["OPENAI_API_KEY"] = ""
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TEST_DATA_DIR, "uploads"))
os.environ.setdefault("PROCESSED_DIR", os.path.join(_TEST_DATA_DIR, "processed"))

import pytest
from PIL import Image
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# --- STEP 1: Import from your application ---
from main import app
from models.models import Base
from db.database import get_db
from dependencies import get_storage, get_enhancement_orchestrator
from schemas.enhancement_schemas import EnhancementMode
from services.enhancement_service import EnhancementOrchestrator, EnhancementSettings
from services.file_storage import LocalStorage


# --- STEP 2: Create a dedicated TEST database engine ---
# The StaticPool keeps a single in-memory SQLite connection shared by all sessions.
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "StrongPass1!"


# --- Image helpers ---
def make_image_bytes(fmt: str = "JPEG", size=(64, 48), color=(180, 120, 60)) -> bytes:
    """Encodes a solid-color image in memory."""
    buffer = io.BytesIO()
    mode = "RGBA" if fmt == "PNG" and len(color) == 4 else "RGB"
    Image.new(mode, size, color).save(buffer, format=fmt)
    return buffer.getvalue()


def write_image(path, fmt: str = "JPEG", size=(64, 48), color=(180, 120, 60)) -> str:
    with open(path, "wb") as f:
        f.write(make_image_bytes(fmt, size, color))
    return str(path)


# --- Database fixtures ---
@pytest.fixture(scope="function")
def db_session():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        # Drop all the tables, so the next test starts with a clean slate.
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def storage(tmp_path):
    return LocalStorage(upload_dir=str(tmp_path / "uploads"), processed_dir=str(tmp_path / "processed"))


@pytest.fixture(scope="function")
def orchestrator():
    """Orchestrator without an AI backend: every photo goes through the filter fallback."""
    return EnhancementOrchestrator(EnhancementSettings(mode=EnhancementMode.ANALYZE_ONLY, filter_timeout=30.0))


@pytest.fixture(scope="function")
def client(db_session, storage, orchestrator):
    def override_get_db():
        try:
            yield db_session
        finally:
            db_session.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_enhancement_orchestrator] = lambda: orchestrator

    yield TestClient(app)

    app.dependency_overrides.clear()


# --- Auth fixtures ---
def register_user(client: TestClient, email: str = "chef@example.com", password: str = TEST_PASSWORD, name: str = "Chef"):
    response = client.post("/api/auth/register", json={"email": email, "password": password, "name": name})
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture(scope="function")
def registered_user(client):
    return register_user(client)


@pytest.fixture(scope="function")
def auth_headers(registered_user):
    return {"Authorization": f"Bearer {registered_user['access_token']}"}
