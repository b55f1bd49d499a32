"""PawAuth: OAuth 2.0 authorization server for third-party client applications."""

__version__ = "0.3.0"
