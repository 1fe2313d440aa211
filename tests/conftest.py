import base64
import io
import os
import sys
import tempfile
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Ensure project root is on sys.path so 'src' is importable during tests
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

_TMP = Path(tempfile.mkdtemp(prefix="mealappeal-tests-"))

os.environ["SUPABASE_DISABLED"] = "1"
os.environ["SUPABASE_STORAGE_LOCAL_DIR"] = str(_TMP / "storage")
os.environ["BACKUP_DIR"] = str(_TMP / "backups")
os.environ["ADMIN_EMAILS"] = "admin@mealappeal.app"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_secret"
for _name in ("OPENAI_API_KEY", "STRIPE_SECRET_KEY", "DATABASE_URL", "RETENTION_SWEEP_INTERVAL"):
    os.environ.pop(_name, None)

ADMIN_EMAIL = "admin@mealappeal.app"


def make_jpeg_data_url(color=(200, 120, 40), size=(32, 32)) -> str:
    img = Image.new("RGB", size, color)
    buf = io.BytesIO()
    img.save(buf, format="JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture(scope="session")
def client() -> TestClient:
    # lazy import after env configured
    from src.main import create_app

    app = create_app()
    return TestClient(app)


@pytest.fixture(autouse=True)
def _reset_state():
    from src.infrastructure.api.dependencies import reset_process_state
    from src.infrastructure.database.repositories import (
        audit_log_repository,
        meal_repository,
        notification_settings_repository,
        profile_repository,
    )
    from src.infrastructure.nutrition.usda_client import clear_cache

    for module in (
        audit_log_repository,
        meal_repository,
        notification_settings_repository,
        profile_repository,
    ):
        module.reset_memory_store()
    reset_process_state()
    clear_cache()
    yield


@pytest.fixture()
def auth_header() -> dict[str, str]:
    # any token is accepted in disabled mode
    return {"Authorization": "Bearer test-token"}


@pytest.fixture()
def admin_header() -> dict[str, str]:
    # a token that looks like an email becomes the user's email
    return {"Authorization": f"Bearer {ADMIN_EMAIL}"}


@pytest.fixture()
def image_data_url() -> str:
    return make_jpeg_data_url()


@pytest.fixture()
def make_image():
    return make_jpeg_data_url
