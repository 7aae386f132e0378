import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent))

import app as memorial  # noqa: E402


@pytest.fixture
def data_dir(tmp_path):
    d = tmp_path / "data"
    d.mkdir()
    return d


@pytest.fixture
def static_dir(tmp_path):
    d = tmp_path / "site"
    d.mkdir()
    (d / "index.html").write_text("<h1>En mémoire</h1>", encoding="utf-8")
    (d / "style.css").write_text("body { color: #333; }", encoding="utf-8")
    (d / "rose.jpeg").write_bytes(b"\xff\xd8\xff\xe0rose")
    (d / "char.jpeg").write_bytes(b"\xff\xd8\xff\xe0char")
    (d / "plan-de-localisation.jpeg").write_bytes(b"\xff\xd8\xff\xe0plan")
    (d / "jesus.mp3").write_bytes(b"ID3audio")
    (d / "script.js").write_text("console.log('ok');", encoding="utf-8")
    (d / "adieu.bd").write_text("[]", encoding="utf-8")
    (d / "app.py").write_text("print('secret')", encoding="utf-8")
    (d / "photos").mkdir()
    (d / "photos" / "index.html").write_text("<p>photos</p>", encoding="utf-8")
    return d


@pytest.fixture
def client(data_dir, static_dir):
    """Flask test client with the stores and static files under tmp_path."""
    saved = {k: memorial.app.config[k] for k in ("DATA_DIR", "SEED_DIR", "STATIC_DIR")}
    memorial.app.config.update(
        TESTING=True,
        DATA_DIR=str(data_dir),
        SEED_DIR=str(static_dir),
        STATIC_DIR=str(static_dir),
    )
    with memorial.app.test_client() as c:
        yield c
    memorial.app.config.update(saved)
