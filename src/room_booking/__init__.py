"""Room booking service with durable calendar invitation delivery."""

__version__ = "0.1.0"
