"""API process entry point (`leadrabbit-api` or `python -m leadrabbit.run_uvicorn`)."""

import os

import uvicorn

from leadrabbit.logging_config import configure_logging

DEFAULT_PORT = 5000


def main() -> None:
    """
    Serve leadrabbit.main:app. HOST, PORT and WEB_CONCURRENCY come from the
    environment; the platform's proxy headers are trusted.
    """
    configure_logging()

    uvicorn.run(
        "leadrabbit.main:app",
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", DEFAULT_PORT)),
        workers=int(os.environ.get("WEB_CONCURRENCY", 1)),
        proxy_headers=True,
        forwarded_allow_ips="*",
        # Keep the handlers configure_logging installed.
        log_config=None,
        use_colors=False,
    )


if __name__ == "__main__":
    main()
