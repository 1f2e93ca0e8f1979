from capture_inbox.auth.api_key import require_api_key, verify_api_key
from capture_inbox.auth.dependencies import AppSettings, Captures, Feed, Purposes, ShareStore, Todos

__all__ = [
    "require_api_key", "verify_api_key",
    "AppSettings", "Captures", "Feed", "Purposes", "ShareStore", "Todos",
]
