"""ASGI entrypoint: `kosly.api.app:app`, role taken from APP_ROLE."""

from .factory import create_app

app = create_app()
