import pytest

import app as memorial


def test_root_serves_index(client):
    resp = client.get("/")
    assert resp.status_code == 200
    assert resp.mimetype == "text/html"
    assert "En mémoire" in resp.get_data(as_text=True)


@pytest.mark.parametrize(
    "path, mimetype",
    [
        ("/style.css", "text/css"),
        ("/rose.jpeg", "image/jpeg"),
        ("/char.jpeg", "image/jpeg"),
        ("/plan-de-localisation.jpeg", "image/jpeg"),
        ("/jesus.mp3", "audio/mpeg"),
    ],
)
def test_explicit_files_have_fixed_content_type(client, path, mimetype):
    resp = client.get(path)
    assert resp.status_code == 200
    assert resp.mimetype == mimetype


def test_missing_explicit_file_is_404(client, static_dir):
    (static_dir / "char.jpeg").unlink()
    assert client.get("/char.jpeg").status_code == 404


def test_generic_extension_is_served(client):
    resp = client.get("/script.js")
    assert resp.status_code == 200
    assert "console.log" in resp.get_data(as_text=True)


def test_extensionless_path_falls_back_to_html(client):
    resp = client.get("/index")
    assert resp.status_code == 200
    assert "En mémoire" in resp.get_data(as_text=True)


@pytest.mark.parametrize("path", ["/adieu.bd", "/app.py", "/nope.html", "/nope"])
def test_unlisted_files_are_not_served(client, path):
    assert client.get(path).status_code == 404


def test_directory_has_no_automatic_index(client):
    assert client.get("/photos/").status_code == 404
    assert client.get("/photos").status_code == 404
    assert client.get("/photos/index.html").status_code == 200


def test_static_lookup_stays_inside_root(client):
    with memorial.app.app_context():
        assert memorial._static_file_exists("index.html")
        assert not memorial._static_file_exists("../data/adieu.bd")
        assert not memorial._static_file_exists("photos")
