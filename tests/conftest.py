import os

os.environ.setdefault("DATABASE_URL", "sqlite://")

import base64  # noqa: E402
import dataclasses  # noqa: E402
from io import BytesIO  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from PIL import Image  # noqa: E402
from pypdf import PdfReader, PdfWriter  # noqa: E402
from reportlab.pdfgen import canvas  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from app.api.deps import get_db  # noqa: E402
from app.config import settings  # noqa: E402
from app.db import Base  # noqa: E402
from app.main import app  # noqa: E402
import app.services.version_store as version_store_module  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    session = sessionmaker(bind=engine, autoflush=False, autocommit=False)()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture(autouse=True)
def storage_root(tmp_path, monkeypatch):
    root = tmp_path / "uploads"
    root.mkdir()
    monkeypatch.setattr(
        version_store_module,
        "settings",
        dataclasses.replace(settings, storage_root=str(root)),
    )
    return root


@pytest.fixture()
def client(db_session):
    def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.pop(get_db, None)


@pytest.fixture()
def owner_headers():
    return {"X-User-Id": "owner-1"}


@pytest.fixture()
def make_pdf():
    """Build a small PDF; ``pages`` is a list of (width, height, rotation)."""

    def _make(pages=((612, 792, 0),), label="page"):
        buf = BytesIO()
        c = canvas.Canvas(buf)
        for index, (width, height, _rotation) in enumerate(pages, start=1):
            c.setPageSize((width, height))
            c.drawString(72, 72, f"{label} {index}")
            c.showPage()
        c.save()
        data = buf.getvalue()
        if not any(rotation for _w, _h, rotation in pages):
            return data

        writer = PdfWriter(clone_from=PdfReader(BytesIO(data)))
        for page, (_w, _h, rotation) in zip(writer.pages, pages):
            if rotation:
                page.rotate(rotation)
        out = BytesIO()
        writer.write(out)
        return out.getvalue()

    return _make


@pytest.fixture()
def png_data_uri():
    buf = BytesIO()
    Image.new("RGBA", (40, 20), (0, 0, 255, 255)).save(buf, format="PNG")
    return "data:image/png;base64," + base64.b64encode(buf.getvalue()).decode("ascii")


@pytest.fixture()
def jpeg_data_uri():
    buf = BytesIO()
    Image.new("RGB", (40, 20), (255, 0, 0)).save(buf, format="JPEG")
    return "data:image/jpeg;base64," + base64.b64encode(buf.getvalue()).decode("ascii")
