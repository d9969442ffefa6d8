"""Run the RCTI API under uvicorn: ``python -m rcti_engine`` or ``rcti-engine``."""

import uvicorn

from rcti_engine.config import configure_logging, get_settings


def main() -> None:
    """Run the application.

    The app is built by ``create_app`` inside the server process, so reload
    workers pick up code and settings changes.
    """
    settings = get_settings()
    configure_logging(settings.log_level)
    uvicorn.run(
        "rcti_engine.api.app:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
