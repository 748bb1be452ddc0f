"""rahl -- links a chat account to a bot process and keeps it connected."""

__version__ = "0.1.0"
