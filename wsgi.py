import os

# gunicorn "wsgi:app" (use an eventlet/gevent worker for Socket.IO)
os.environ.setdefault("ENV", "production")

from crowdfund import create_app  # noqa: E402

app = create_app()
