import os
import tempfile
from pathlib import Path

import pytest

# Settings are read at import time, so the environment must be ready
# before any test module imports the application.
_TMP = Path(tempfile.mkdtemp(prefix="aklatan-tests-"))
os.environ["ENV"] = "dev"
os.environ["DATABASE_URL"] = f"sqlite:///{_TMP / 'test.db'}"
os.environ["AUTH_PROVIDER"] = "local"
os.environ["ADMIN_EMAIL"] = "admin@example.com"
os.environ["ADMIN_PASSWORD"] = "admin-pass"
os.environ["APP_URL"] = "http://testserver"
os.environ["CLOUDINARY_CLOUD_NAME"] = "demo"
os.environ["CLOUDINARY_API_KEY"] = "key"
os.environ["CLOUDINARY_API_SECRET"] = "secret"

ADMIN_EMAIL = os.environ["ADMIN_EMAIL"]
ADMIN_PASSWORD = os.environ["ADMIN_PASSWORD"]


@pytest.fixture(autouse=True)
def reset_code_rate_limit():
    """Each test starts with a clean access-code rate limiter."""
    from aklatan import main
    main._code_rate_limiter.reset()
    yield


@pytest.fixture
def admin_headers():
    from fastapi.testclient import TestClient
    from aklatan.main import app

    r = TestClient(app).post('/auth/login', json={'email': ADMIN_EMAIL, 'password': ADMIN_PASSWORD})
    assert r.status_code == 200, r.text
    return {'Authorization': f"Bearer {r.json()['access_token']}"}


@pytest.fixture
def db_session():
    from sqlmodel import Session
    from aklatan.database import engine

    with Session(engine) as session:
        yield session
