"""Entry point for the Task Marketplace service.

Usage::

    CONFIG_PATH=config.yaml python -m task_marketplace
"""

from __future__ import annotations

import uvicorn

from task_marketplace.config import get_settings


def main() -> None:
    settings = get_settings()
    uvicorn.run(
        "task_marketplace.app:create_app",
        factory=True,
        host=settings.server.host,
        port=settings.server.port,
        log_level=settings.server.log_level,
    )


if __name__ == "__main__":
    main()
