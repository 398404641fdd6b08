"""
Authentication middleware for Storefront Service.
"""

from .auth_middleware import StorefrontAuthMiddleware, setup_storefront_auth_middleware

__all__ = ["StorefrontAuthMiddleware", "setup_storefront_auth_middleware"]
