"""Webhook relay — fan inbound webhook events out to registered receivers."""

__version__ = "0.1.0"
