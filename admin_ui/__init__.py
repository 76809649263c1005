"""Flask JSON admin surface hosting grid editor sessions.

Run with:
  python -m admin_ui
or
  moddersheet-admin
"""

import logging
import os

from .server import create_app  # re-export factory


def main():
    from moddersheet import config as app_config

    logging.basicConfig(
        level=getattr(logging, app_config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    app = create_app()
    host = os.getenv("ADMIN_HOST", "127.0.0.1")
    try:
        port = int(os.getenv("ADMIN_PORT", "8000"))
    except ValueError:
        port = 8000
    debug = os.getenv("FLASK_DEBUG", "").lower() in ("1", "true", "yes")
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    main()
