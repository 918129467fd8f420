"""HTTP surface of the whisky collection service."""

from whisky_api.api.server import COLLECTION_PATH, HttpListener, create_app

__all__ = ["COLLECTION_PATH", "HttpListener", "create_app"]
