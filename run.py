#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Crowdfund dev launcher.

  ./run.py --env development
  ./run.py --env production --no-reload --no-debug
  gunicorn "run:app"   (exports `app` when imported)

Runs through Flask-SocketIO so realtime events work locally.
"""

from __future__ import annotations

import argparse
import logging
import os
from typing import Optional


def parse_args() -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Run the crowdfund API.")
    p.add_argument("--host", default=os.getenv("HOST", "0.0.0.0"))
    p.add_argument("--port", type=int, default=int(os.getenv("PORT", "5000")))
    p.add_argument("--env", choices=["development", "testing", "production"], help="Runtime environment")
    p.add_argument("--config", help="Explicit dotted config path (e.g. crowdfund.config.DevelopmentConfig)")
    p.add_argument("--debug", action=argparse.BooleanOptionalAction, default=None, help="Force debug on/off.")
    p.add_argument("--no-reload", action="store_true", help="Disable the Werkzeug reloader.")
    return p.parse_args()


def build_app(config: Optional[str] = None):
    from crowdfund import create_app

    return create_app(config)


def main() -> None:
    args = parse_args()
    if args.env:
        os.environ["ENV"] = args.env

    flask_app = build_app(args.config)
    from crowdfund.extensions import socketio

    debug = args.debug if args.debug is not None else flask_app.config.get("ENV") != "production"
    logging.info("Socket.IO async mode: %s", socketio.async_mode)
    socketio.run(
        flask_app,
        host=args.host,
        port=args.port,
        debug=debug,
        use_reloader=debug and not args.no_reload,
        allow_unsafe_werkzeug=debug,
    )


if __name__ == "__main__":
    main()
else:
    app = build_app()
