"""Local state reconciliation for custom code synced with a remote project."""

__version__ = "0.1.0"
