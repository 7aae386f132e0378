from __future__ import annotations

import os
import json
import shutil
import logging
import tempfile
import threading
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from flask import Flask, request, jsonify, abort, send_from_directory
from flask_cors import CORS

logger = logging.getLogger(__name__)


# ----------------------------
# Configuration
# ----------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))

ADIEU_FILENAME = "adieu.bd"
FLEUR_FILENAME = "fleur.bd"
SEED_FILES = (ADIEU_FILENAME, FLEUR_FILENAME)

DEFAULT_PORT = 3000

MSG_EMPTY = "Le message ne peut pas être vide"
MSG_SAVE_FAILED = "Erreur lors de la sauvegarde"
MSG_BAD_REQUEST = "Requête invalide"

# Fichiers servis explicitement, avec leur type MIME
STATIC_FILES = {
    "style.css": "text/css",
    "rose.jpeg": "image/jpeg",
    "char.jpeg": "image/jpeg",
    "plan-de-localisation.jpeg": "image/jpeg",
    "jesus.mp3": "audio/mpeg",
}
STATIC_EXTENSIONS = ("html", "css", "js", "jpeg", "jpg", "png", "gif", "svg", "ico")


def _is_serverless(environ=None) -> bool:
    env = os.environ if environ is None else environ
    return bool(env.get("VERCEL") or env.get("NOW_REGION"))


def resolve_data_dir(environ=None) -> str:
    """Pick the storage root once, at startup.

    DATA_DIR wins when set. Serverless hosts (Vercel) only allow writes under
    the temporary directory. Everywhere else the files live next to the app.
    """
    env = os.environ if environ is None else environ
    explicit = (env.get("DATA_DIR") or "").strip()
    if explicit:
        return explicit
    if _is_serverless(env):
        return tempfile.gettempdir()
    return BASE_DIR


app = Flask(__name__, static_folder=None)
app.config.from_mapping(
    DATA_DIR=resolve_data_dir(),
    SEED_DIR=BASE_DIR,
    STATIC_DIR=BASE_DIR,
    PORT=int(os.environ.get("PORT", DEFAULT_PORT)),
)
CORS(app)


# ----------------------------
# Errors
# ----------------------------

class ApiError(Exception):
    """Base error for the JSON API, carries the HTTP status to answer with."""

    status_code = 400

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message}


class ValidationError(ApiError):
    status_code = 400


class EmptyMessage(ValidationError):
    def __init__(self):
        super().__init__(MSG_EMPTY)


class PersistenceError(ApiError):
    status_code = 500

    def __init__(self, message: str = MSG_SAVE_FAILED):
        super().__init__(message)


class ReadFailure(Exception):
    """A store file exists but does not hold a JSON array."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"{path}: {reason}")
        self.path = path
        self.reason = reason


@app.errorhandler(ApiError)
def api_error(err: ApiError):
    return jsonify(err.to_dict()), err.status_code


@app.errorhandler(400)
def bad_request(_):
    return jsonify({"error": MSG_BAD_REQUEST}), 400


# ----------------------------
# Storage helpers
# - one JSON array per file, rewritten wholesale
# - appends are serialized per file
# ----------------------------

_LOCKS: Dict[str, threading.Lock] = {}
_LOCKS_GUARD = threading.Lock()


def _lock_for(path: str) -> threading.Lock:
    key = os.path.abspath(path)
    with _LOCKS_GUARD:
        lock = _LOCKS.get(key)
        if lock is None:
            lock = _LOCKS[key] = threading.Lock()
        return lock


def _read_strict(path: str) -> List[Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            content = f.read()
    except FileNotFoundError:
        return []
    except (OSError, UnicodeDecodeError) as e:
        raise ReadFailure(path, str(e)) from e

    if not content.strip():
        return []
    try:
        data = json.loads(content)
    except (ValueError, RecursionError) as e:
        # JSONDecodeError, or an array nested deeper than the recursion limit
        raise ReadFailure(path, str(e)) from e
    if not isinstance(data, list):
        raise ReadFailure(path, f"expected a JSON array, got {type(data).__name__}")
    return data


def read_store(path: str) -> List[Any]:
    """Return the array stored at `path`, or [] when absent, blank or unreadable."""
    try:
        return _read_strict(path)
    except ReadFailure as e:
        logger.error("Erreur lecture %s: %s", path, e.reason)
        return []


def _atomic_write(path: str, content: str) -> None:
    os.makedirs(os.path.dirname(path) or ".", exist_ok=True)
    tmp = path + ".tmp"
    try:
        with open(tmp, "w", encoding="utf-8") as f:
            f.write(content)
        os.replace(tmp, path)
    except Exception:
        if os.path.exists(tmp):
            os.remove(tmp)
        raise


def write_store(path: str, data: List[Any]) -> bool:
    try:
        _atomic_write(path, json.dumps(data, ensure_ascii=False, indent=2))
    except (OSError, TypeError, ValueError) as e:
        logger.error("Erreur écriture %s: %s", path, e)
        return False
    return True


def append_entry(path: str, build: Callable[[List[Any]], Dict[str, Any]]) -> Dict[str, Any]:
    """Read-modify-write under the file's lock.

    `build` receives the current entries and returns the one to append.
    A corrupt file is left untouched and reported as a PersistenceError.
    """
    with _lock_for(path):
        try:
            entries = _read_strict(path)
        except ReadFailure as e:
            logger.error("Erreur lecture %s: %s (écriture annulée)", path, e.reason)
            raise PersistenceError() from e

        entry = build(entries)
        entries.append(entry)
        if not write_store(path, entries):
            raise PersistenceError()
        return entry


def _ensure_data_files() -> None:
    """Copy the seed files into the storage root. Never overwrite existing data."""
    data_dir = app.config["DATA_DIR"]
    seed_dir = app.config["SEED_DIR"]
    if os.path.abspath(data_dir) == os.path.abspath(seed_dir):
        return

    for name in SEED_FILES:
        source = os.path.join(seed_dir, name)
        target = os.path.join(data_dir, name)
        if not os.path.exists(source) or os.path.exists(target):
            continue
        try:
            os.makedirs(data_dir, exist_ok=True)
            shutil.copyfile(source, target)
            logger.info("Copie %s -> %s", source, target)
        except OSError as e:
            logger.error("Erreur copie %s: %s", name, e)


def _store_path(name: str) -> str:
    return os.path.join(app.config["DATA_DIR"], name)


# ----------------------------
# Domain helpers
# ----------------------------

def _now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(dt: datetime) -> str:
    # 2024-05-01T10:00:00.123Z
    return dt.isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _next_id(entries: List[Any], now: datetime) -> str:
    """Millisecond timestamp, bumped past the last id so ids never collide."""
    candidate = int(now.timestamp() * 1000)
    if entries and isinstance(entries[-1], dict):
        try:
            candidate = max(candidate, int(entries[-1].get("id")) + 1)
        except (TypeError, ValueError):
            pass
    return str(candidate)


def list_messages() -> List[Dict[str, Any]]:
    return read_store(_store_path(ADIEU_FILENAME))


def create_message(raw_text: Any) -> Dict[str, Any]:
    if not isinstance(raw_text, str) or not raw_text.strip():
        raise EmptyMessage()
    text = raw_text.strip()

    def build(entries: List[Any]) -> Dict[str, Any]:
        now = _now()
        return {"id": _next_id(entries, now), "text": text, "createdAt": _iso(now)}

    return append_entry(_store_path(ADIEU_FILENAME), build)


def list_fleurs() -> List[Dict[str, Any]]:
    return read_store(_store_path(FLEUR_FILENAME))


def create_fleur() -> Dict[str, Any]:
    def build(entries: List[Any]) -> Dict[str, Any]:
        now = _now()
        return {"id": _next_id(entries, now), "createdAt": _iso(now)}

    return append_entry(_store_path(FLEUR_FILENAME), build)


# ----------------------------
# API routes
# ----------------------------

@app.route("/api/messages", methods=["GET"])
def api_messages():
    return jsonify(list_messages())


def _json_body() -> Dict[str, Any]:
    """Parsed JSON object of the request, {} when absent, empty or not JSON.

    A malformed JSON body still aborts with a 400.
    """
    if not request.is_json or not request.get_data():
        return {}
    payload = request.get_json()
    return payload if isinstance(payload, dict) else {}


@app.route("/api/messages", methods=["POST"])
def api_messages_create():
    payload = _json_body()
    message = create_message(payload.get("message"))
    return jsonify({"success": True, "message": message})


@app.route("/api/fleurs", methods=["GET"])
def api_fleurs():
    return jsonify(list_fleurs())


@app.route("/api/fleurs", methods=["POST"])
def api_fleurs_create():
    # pas de contenu attendu, mais un JSON invalide est refusé
    _json_body()
    fleur = create_fleur()
    return jsonify({"success": True, "fleur": fleur})


# ----------------------------
# Static files
# ----------------------------

def _send_static(name: str, mimetype: Optional[str] = None):
    # send_from_directory refuse les chemins qui sortent du dossier (404)
    return send_from_directory(app.config["STATIC_DIR"], name, mimetype=mimetype)


def _static_file_exists(name: str) -> bool:
    root = os.path.abspath(app.config["STATIC_DIR"])
    full = os.path.abspath(os.path.join(root, name))
    if not full.startswith(root + os.sep):
        return False
    return os.path.isfile(full)


@app.route("/")
def index():
    return _send_static("index.html", mimetype="text/html")


@app.route("/<path:filename>")
def static_file(filename: str):
    if filename in STATIC_FILES:
        return _send_static(filename, mimetype=STATIC_FILES[filename])

    ext = os.path.splitext(filename)[1].lstrip(".").lower()
    if ext in STATIC_EXTENSIONS:
        if _static_file_exists(filename):
            return _send_static(filename)
        abort(404)

    # /page -> page.html, etc. Jamais d'index automatique pour un dossier.
    if not ext and not filename.endswith("/"):
        for candidate_ext in STATIC_EXTENSIONS:
            candidate = f"{filename}.{candidate_ext}"
            if _static_file_exists(candidate):
                return _send_static(candidate)
    abort(404)


# ----------------------------
# Main
# ----------------------------

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    _ensure_data_files()
    port = app.config["PORT"]
    logger.info("Serveur démarré sur http://localhost:%s", port)
    app.run(host="0.0.0.0", port=port)
