import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB
os.environ.setdefault("DATABASE_URL", "sqlite://")

# Ensure the project root is on sys.path so `import bloodwork` works when running
# pytest from the repository root.
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from bloodwork.app import app
from bloodwork.db.session import Base, get_db


# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    # ensure limiter state fresh each test
    app.state.limiter.reset()
    yield


@pytest.fixture(autouse=True)
def no_gemini(monkeypatch):
    # No outbound calls unless a test opts in
    monkeypatch.delenv("GOOGLE_GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GOOGLE_GEMINI_MODEL", raising=False)
    monkeypatch.delenv("AI_EXTRACTION_ENABLED", raising=False)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def mock_ocr(monkeypatch):
    # Tesseract image OCR always returns fixed text
    import bloodwork.services.ocr as ocr
    monkeypatch.setattr(ocr.pytesseract, "image_to_string", lambda img, lang=None: "Hemoglobin\n14.2\n12.0-17.5\ng/dL")
    monkeypatch.setattr(ocr.Image, "open", lambda fp: object())

    # PdfReader returns one page with text
    class _Pg:
        def extract_text(self):
            return "Glucose 126 mg/dL 70-110"

    class _Reader:
        def __init__(self, *_a, **_k):
            self.pages = [_Pg()]

    monkeypatch.setattr(ocr, "PdfReader", _Reader)
