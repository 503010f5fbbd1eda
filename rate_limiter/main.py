import uvicorn

from rate_limiter.core.app_factory import create_app

app = create_app()


def run() -> None:
    """Serve the app with uvicorn (``rate-limiter`` console script)."""
    uvicorn.run("rate_limiter.main:app", host="0.0.0.0", port=8000, log_config=None)
