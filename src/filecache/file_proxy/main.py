"""ASGI entrypoint for the file proxy."""

from __future__ import annotations

import uvicorn

from ..common.settings import FileProxySettings
from .app import create_app


settings = FileProxySettings()
app = create_app(settings)


def run() -> None:
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
