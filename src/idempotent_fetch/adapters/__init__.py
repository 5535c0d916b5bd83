"""Transport adapters for the idempotent fetch handler.

- asgi.py: FastAPI application (served by uvicorn)
"""

from idempotent_fetch.adapters.asgi import create_app, create_app_from_env

__all__ = ["create_app", "create_app_from_env"]
