"""ASGI entry point: ``uvicorn main:app``."""
from afr.api import create_app

app = create_app()
