"""Remote client and async helpers shared by the session."""

from .async_utils import run_sync
from .client import RemoteClient

__all__ = ["RemoteClient", "run_sync"]
