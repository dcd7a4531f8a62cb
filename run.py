import os

from pipeline_status.logger import get_logger

logger = get_logger()


def main() -> None:
    host = os.getenv("APP_HOST", "0.0.0.0")
    port = int(os.getenv("APP_PORT", "8000"))
    display_url = f"http://localhost:{port}"

    logger.info(f"Starting PR Pipeline Status API on {display_url} (binding to {host}:{port})")

    import uvicorn

    uvicorn.run(
        app="pipeline_status.main:app",
        host=host,
        port=port,
        reload=os.getenv("APP_RELOAD", "false").lower() in {"1", "true", "yes", "on"},
        workers=1,
        log_level=os.getenv("APP_LOG_LEVEL", "info").lower(),
    )


if __name__ == "__main__":
    main()
