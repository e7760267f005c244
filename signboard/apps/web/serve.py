from __future__ import annotations

import uvicorn

from signboard.apps.web.main import create_app
from signboard.core.config import get_settings


def main() -> None:
    # Local entry point; TLS termination is expected in front of this process.
    settings = get_settings()
    uvicorn.run(create_app(), host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
