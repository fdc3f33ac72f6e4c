"""
Main entry point for the StudyForge API server.
"""

import argparse

import uvicorn

from . import __version__
from .config.settings import get_settings
from .observability.logging import get_logger, setup_logging

logger = get_logger(__name__)


def main(argv=None):
    """Parse arguments and start uvicorn."""
    parser = argparse.ArgumentParser(description="StudyForge generation server")
    parser.add_argument("--host", default=None, help="Host to bind to")
    parser.add_argument("--port", type=int, default=None, help="Port to bind to")
    parser.add_argument("--reload", action="store_true", help="Enable auto-reload")
    parser.add_argument("--version", action="store_true", help="Show version")

    args = parser.parse_args(argv)

    if args.version:
        print(f"StudyForge v{__version__}")
        return

    settings = get_settings()
    setup_logging(settings.observability.log_level)

    host = args.host or settings.api.host
    port = args.port or settings.api.port
    logger.info("Starting server", host=host, port=port, environment=settings.environment)

    uvicorn.run(
        "studyforge.api.server:app",
        host=host,
        port=port,
        reload=args.reload or settings.api.reload,
        log_level=settings.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
