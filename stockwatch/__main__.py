"""Run the monitor with its HTTP API"""

import uvicorn

from .api.routes import create_app
from .config import get_settings


def main():
    settings = get_settings()
    uvicorn.run(
        create_app(),
        host=settings.api_host,
        port=settings.api_port,
        log_level="info",
    )


if __name__ == "__main__":
    main()
