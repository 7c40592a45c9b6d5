"""Run the lycaon gateway: ``python -m lycaon`` or the ``lycaon`` console script."""

from __future__ import annotations

import uvicorn

from lycaon.config.settings import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "lycaon.gateway.app:app",
        host=settings.gateway.host,
        port=settings.gateway.port,
        log_config=None,  # root handler comes from setup_logging
    )


if __name__ == "__main__":
    main()
