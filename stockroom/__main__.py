"""Run the development server with ``python -m stockroom``."""
from __future__ import annotations

import os

from .app import create_app
from .config import get_settings


def run() -> None:
    settings = get_settings()
    app = create_app(settings)
    app.run(
        host=os.environ.get("STOCKROOM_HOST", "127.0.0.1"),
        port=int(os.environ.get("STOCKROOM_PORT", "5000")),
        debug=settings.environment == "development",
    )


if __name__ == "__main__":
    run()
