"""Connect Hub: third-party account integrations synced into personal lists."""

__version__ = "0.1.0"
