"""Middleware module for tokenvault."""

from tokenvault.middleware.security_headers import SecurityHeadersMiddleware

__all__ = ["SecurityHeadersMiddleware"]
