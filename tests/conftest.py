import base64
import io
import uuid

import pytest
from PIL import Image as PILImage

from studio import create_app
from studio.extensions import db as _db


@pytest.fixture(scope="session")
def app():
    """Create application for testing."""
    app = create_app("testing")
    with app.app_context():
        _db.create_all()
        yield app
        _db.drop_all()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    """Per-test database session with rollback."""
    with app.app_context():
        _db.session.begin_nested()
        yield _db
        _db.session.rollback()


@pytest.fixture
def account_id():
    # The in-memory database is shared by the whole session
    return f"acct-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def auth_client(client, account_id):
    """Test client with a signed-in account."""
    with client.session_transaction() as sess:
        sess["account_id"] = account_id
        sess["email"] = "model@example.com"
    return client


@pytest.fixture
def make_image():
    def _make(size=(16, 16), color="red", fmt="PNG"):
        buffer = io.BytesIO()
        PILImage.new("RGB", size, color).save(buffer, format=fmt)
        return buffer.getvalue()

    return _make


@pytest.fixture
def image_payload(make_image):
    """Gemini generateContent response carrying one inline PNG."""

    def _payload(color="red"):
        data = base64.b64encode(make_image(color=color)).decode("ascii")
        return {
            "candidates": [
                {"content": {"parts": [{"inlineData": {"mimeType": "image/png", "data": data}}]}}
            ]
        }

    return _payload
