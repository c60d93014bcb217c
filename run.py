"""Entry point: `uvicorn run:app`."""

from storefront.app import app

__all__ = ["app"]
