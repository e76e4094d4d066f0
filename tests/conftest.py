"""
Pytest configuration and fixtures for the conversion service tests.
"""

import os
import shutil
import tempfile
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine

# Set test environment variables before importing the app
_TEST_DATABASE_DIR = tempfile.mkdtemp(prefix="conversion_test_db_")
os.environ["DATABASE_URL"] = f"sqlite:///{_TEST_DATABASE_DIR}/conversions.db"
os.environ["STORAGE_BACKEND"] = "local"
os.environ["LOCAL_FILESYSTEM_BASE_DIRECTORY"] = tempfile.mkdtemp(prefix="conversion_test_storage_")
os.environ["MATERIALIZER_BACKEND"] = "simulated"

from main import app
from core.conversions import ConversionManager
from core.database.models import Conversion, ConversionStatus, ImageFormat, PageOrientation, PageSize
from core.database.stores import DatabaseConversionStore, DatabaseImageStore
from core.images import ImageManager
from core.materializer import SimulatedPdfMaterializer
from core.retrieval import ConversionRetrieval
from core.storage import LocalFileSystemStorage


@pytest.fixture(scope="session", autouse=True)
def test_dirs():
    """Cleanup the app-level test directories after the session."""
    yield {
        "database": _TEST_DATABASE_DIR,
        "storage": os.environ["LOCAL_FILESYSTEM_BASE_DIRECTORY"],
    }

    shutil.rmtree(_TEST_DATABASE_DIR, ignore_errors=True)
    shutil.rmtree(os.environ["LOCAL_FILESYSTEM_BASE_DIRECTORY"], ignore_errors=True)


@pytest.fixture
def client():
    """Create a test client for the FastAPI app (runs the lifespan)."""
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def engine(tmp_path):
    """An isolated SQLite database per test."""
    test_engine = create_engine(
        f"sqlite:///{tmp_path / 'test.db'}",
        connect_args={"check_same_thread": False},
    )
    SQLModel.metadata.create_all(test_engine)

    yield test_engine

    test_engine.dispose()


@pytest.fixture
def database(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalFileSystemStorage(str(tmp_path / "storage"))


@pytest.fixture
def conversion_store(database):
    return DatabaseConversionStore(database)


@pytest.fixture
def image_store(database):
    return DatabaseImageStore(database)


@pytest.fixture
def materializer(storage):
    return SimulatedPdfMaterializer(storage)


@pytest.fixture
def conversion_manager(conversion_store, image_store, materializer):
    return ConversionManager(conversion_store, image_store, materializer)


@pytest.fixture
def image_manager(conversion_store, image_store, storage):
    return ImageManager(conversion_store, image_store, storage, max_upload_size_bytes=1024)


@pytest.fixture
def retrieval(conversion_store, image_store, storage):
    return ConversionRetrieval(conversion_store, image_store, storage)


@pytest.fixture
def make_conversion(database):
    """Insert a conversion row directly, in any status."""

    def _make_conversion(
        status: ConversionStatus = ConversionStatus.PENDING,
        page_size: PageSize = PageSize.A4,
        orientation: PageOrientation = PageOrientation.PORTRAIT,
        **fields,
    ) -> Conversion:
        conversion = Conversion(
            page_size=page_size,
            orientation=orientation,
            status=status,
            created_at=datetime.now(tz=timezone.utc),
            **fields,
        )
        database.add(conversion)
        database.commit()
        database.refresh(conversion)
        return conversion

    return _make_conversion


@pytest.fixture
def add_images(image_manager):
    """Upload image metadata named after the given names, at indices 0..n-1."""

    def _add_images(conversion, names):
        return [
            image_manager.upload(
                conversion.id,
                original_name=name,
                file_path=f"{name}.jpg",
                file_size=1024 * (index + 1),
                format=ImageFormat.JPEG,
                order_index=index,
            )
            for index, name in enumerate(names)
        ]

    return _add_images
