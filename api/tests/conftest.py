import base64
import os
from io import BytesIO
from typing import Dict

import pytest
from fastapi.testclient import TestClient
from PIL import Image, ImageDraw
from pypdf import PdfReader, PdfWriter
from pypdf.generic import RectangleObject
from reportlab.pdfgen import canvas
from sqlmodel import SQLModel

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("QUOTA_POLICY", "advisory")

from app.main import app  # noqa: E402
from app.db import Database  # noqa: E402
from app import storage as storage_module  # noqa: E402
from app.routers import documents as documents_router  # noqa: E402
from app.utils import make_token  # noqa: E402


@pytest.fixture(scope="session")
def test_db(tmp_path_factory):
    db_path = tmp_path_factory.mktemp("data") / "test.db"
    database = Database(f"sqlite:///{db_path}")
    yield database
    database.dispose()


@pytest.fixture
def setup_db(test_db):
    SQLModel.metadata.drop_all(test_db.engine)
    SQLModel.metadata.create_all(test_db.engine)
    yield
    SQLModel.metadata.drop_all(test_db.engine)


@pytest.fixture
def session(test_db, setup_db):
    with test_db.session() as s:
        yield s


@pytest.fixture
def mock_storage(monkeypatch) -> Dict[str, bytes]:
    store: Dict[str, bytes] = {}

    def fake_put_bytes(key: str, data: bytes, content_type: str = "application/octet-stream"):
        store[key] = bytes(data)

    def fake_get_bytes(key: str) -> bytes:
        return store[key]

    def fake_delete_object(key: str):
        store.pop(key, None)

    for target in (storage_module, documents_router):
        monkeypatch.setattr(target, "put_bytes", fake_put_bytes)
        monkeypatch.setattr(target, "get_bytes", fake_get_bytes)
        monkeypatch.setattr(target, "delete_object", fake_delete_object)
    return store


@pytest.fixture
def client(test_db, setup_db, mock_storage):
    original_db = app.state.database
    original_policy = app.state.quota_policy
    app.state.database = test_db
    with TestClient(app) as test_client:
        yield test_client
    app.state.database = original_db
    app.state.quota_policy = original_policy


def access_headers(sub="user_1", email="signer@example.com", name="Sam Signer"):
    return {"X-Access-Token": make_token({"sub": sub, "email": email, "name": name})}


@pytest.fixture
def auth_headers():
    return access_headers()


def build_pdf(page_sizes=((612, 792),), title="Contract") -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=page_sizes[0])
    c.setTitle(title)
    for idx, size in enumerate(page_sizes):
        c.setPageSize(size)
        c.setFont("Helvetica", 12)
        c.drawString(72, 72, f"Page {idx + 1}")
        c.showPage()
    c.save()
    return buf.getvalue()


def with_mediabox(pdf_bytes: bytes, box, index: int = 0) -> bytes:
    writer = PdfWriter()
    for page in PdfReader(BytesIO(pdf_bytes)).pages:
        writer.add_page(page)
    writer.pages[index].mediabox = RectangleObject(box)
    out = BytesIO()
    writer.write(out)
    return out.getvalue()


@pytest.fixture
def make_pdf():
    return build_pdf


def image_data_url(fmt="PNG", size=(300, 120)) -> str:
    mode = "RGBA" if fmt == "PNG" else "RGB"
    background = (0, 0, 0, 0) if mode == "RGBA" else (255, 255, 255)
    img = Image.new(mode, size, background)
    draw = ImageDraw.Draw(img)
    draw.line((10, size[1] - 20, size[0] - 10, 20), fill="black", width=4)
    buf = BytesIO()
    img.save(buf, format=fmt)
    mime = "image/png" if fmt == "PNG" else f"image/{fmt.lower()}"
    return f"data:{mime};base64," + base64.b64encode(buf.getvalue()).decode()


@pytest.fixture
def signature_png():
    return image_data_url("PNG")
