"""WSGI entrypoint for production servers (Gunicorn, Vercel, etc.).

It copies the seed data files into the storage directory before the app
starts serving.
"""

from app import app, _ensure_data_files

_ensure_data_files()

application = app
