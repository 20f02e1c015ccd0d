"""
Server Launcher.

Configures logging from settings and serves the FastAPI app with uvicorn.
"""

import logging
import sys
from pathlib import Path

import uvicorn

# Add src to path so we can import modules
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from echosim.config import settings


def main():
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )
    uvicorn.run(
        "echosim.service.api:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
