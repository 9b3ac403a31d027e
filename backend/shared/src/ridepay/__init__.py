"""Payment lifecycle and capture-queue core for the ride-sharing backend."""

__version__ = "0.1.0"
