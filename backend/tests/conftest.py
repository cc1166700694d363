# tests/conftest.py
import io
import os
import shutil
import tempfile
from contextlib import contextmanager
from datetime import date
from pathlib import Path

os.environ.setdefault("DATABASE_URL", "sqlite:///./test-docmanager.db")

import pytest
from fastapi import UploadFile
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from starlette.datastructures import Headers

from docmanager.api.deps import get_pipeline
from docmanager.config import settings
from docmanager.database import Base, get_db
from docmanager.exceptions import ExtractionError
from docmanager.main import app
from docmanager.models import Document, FileAttachment, User
from docmanager.services.documents import DocumentPipeline
from docmanager.services.extractor import ContentExtractor
from docmanager.services.storage import LocalStorageBackend


@pytest.fixture
def engine(tmp_path):
    """File backed SQLite so worker threads get their own connections"""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False}
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db_session(session_factory):
    """Creates a new database session for a test"""
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def temp_storage_dir():
    """Create temporary storage directory for test files"""
    temp_dir = tempfile.mkdtemp()
    Path(temp_dir, "uploads").mkdir(parents=True, exist_ok=True)
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture(autouse=True)
def override_settings(temp_storage_dir):
    """Override settings for testing"""
    original_storage = settings.STORAGE_PATH
    original_uploads = settings.UPLOADS_PATH

    settings.STORAGE_PATH = temp_storage_dir
    settings.UPLOADS_PATH = temp_storage_dir / "uploads"

    yield

    settings.STORAGE_PATH = original_storage
    settings.UPLOADS_PATH = original_uploads


# OCR doubles

class FakeOcrEngine:
    """Returns canned text per call; can be told to fail on a given call"""

    def __init__(self, texts=None, default="Sample extracted text", fail_on_call=None):
        self.texts = list(texts or [])
        self.default = default
        self.fail_on_call = fail_on_call
        self.calls = 0
        self.images = []

    def recognize(self, image):
        self.calls += 1
        self.images.append(image)
        if self.fail_on_call == self.calls:
            raise ExtractionError(f"OCR failed on call {self.calls}")
        if self.texts:
            return self.texts[self.calls - 1]
        return self.default


class FakePdfPages:
    def __init__(self, renderer, page_count):
        self.renderer = renderer
        self.page_count = page_count

    def render_page(self, index, dpi):
        self.renderer.rendered.append((index, dpi))
        return Image.new("RGB", (20, 20), "white")


class FakePdfRenderer:
    def __init__(self, page_count=3):
        self.page_count = page_count
        self.opened = 0
        self.closed = 0
        self.rendered = []

    @contextmanager
    def open(self, path):
        self.opened += 1
        try:
            yield FakePdfPages(self, self.page_count)
        finally:
            self.closed += 1


class RecordingWorkerPool:
    """Stands in for OcrWorkerPool; remembers jobs instead of running them"""

    def __init__(self):
        self.jobs = []

    def start(self):
        pass

    def submit(self, job):
        self.jobs.append(job)
        return True

    def join(self):
        pass

    def shutdown(self, wait=True):
        pass


@pytest.fixture
def fake_engine():
    return FakeOcrEngine()


@pytest.fixture
def fake_renderer():
    return FakePdfRenderer()


@pytest.fixture
def extractor(fake_engine, fake_renderer):
    return ContentExtractor(fake_engine, fake_renderer, dpi=300)


@pytest.fixture
def storage(temp_storage_dir):
    return LocalStorageBackend(temp_storage_dir)


@pytest.fixture
def worker_pool():
    return RecordingWorkerPool()


@pytest.fixture
def pipeline(storage, extractor, session_factory, worker_pool):
    return DocumentPipeline(storage, extractor, session_factory, worker_pool=worker_pool)


# Files and records

def make_png_bytes(color="white", size=(40, 20)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def make_upload(filename: str, content: bytes, content_type: str) -> UploadFile:
    return UploadFile(
        file=io.BytesIO(content),
        filename=filename,
        size=len(content),
        headers=Headers({"content-type": content_type})
    )


def assert_ocr_state_consistent(document):
    if document.ocr_processed:
        assert document.ocr_text is not None
        assert document.ocr_processed_at is not None
    else:
        assert document.ocr_text is None
        assert document.ocr_processed_at is None


@pytest.fixture
def png_bytes():
    return make_png_bytes()


@pytest.fixture
def upload_factory():
    return make_upload


@pytest.fixture
def check_ocr_state():
    return assert_ocr_state_consistent


@pytest.fixture
def sample_user(db_session):
    user = User(username="alice")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def other_user(db_session):
    user = User(username="bob")
    db_session.add(user)
    db_session.commit()
    db_session.refresh(user)
    return user


@pytest.fixture
def make_document(db_session, storage):
    """Create a document directly in the database, optionally with stored bytes"""
    counter = {"value": 0}

    def _make_document(
            owner,
            with_file=True,
            content_type="image/png",
            filename="scan.png",
            processed=False,
            title="Test Document"
    ):
        counter["value"] += 1
        document = Document(
            owner_id=owner.id,
            title=title,
            number=f"DOC-{counter['value']:03d}",
            date=date(2024, 5, 17),
            description="Test Description"
        )
        if with_file:
            stored = storage.store(
                io.BytesIO(make_png_bytes()),
                filename,
                content_type,
                owner.id,
                document.number
            )
            document.attachment = FileAttachment(
                original_filename=stored.original_filename,
                stored_filename=stored.stored_filename,
                content_type=stored.content_type,
                file_size=stored.file_size,
                file_path=stored.file_path
            )
        if processed:
            document.mark_ocr_processed("Previously extracted text")
        db_session.add(document)
        db_session.commit()
        db_session.refresh(document)
        return document

    return _make_document


@pytest.fixture
def client(db_session, pipeline):
    """Test client using the test database and a pipeline with recorded OCR jobs"""
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers(sample_user):
    return {"X-User-Id": str(sample_user.id)}


@pytest.fixture(scope="session", autouse=True)
def cleanup_test_files():
    """Clean up test files after all tests are done"""
    yield
    if os.path.exists("test-docmanager.db"):
        os.remove("test-docmanager.db")
