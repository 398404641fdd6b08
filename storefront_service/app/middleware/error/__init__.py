"""
Error middleware for Storefront Service.
"""

from .error_handler import StorefrontErrorHandler, setup_storefront_error_handling

__all__ = ["StorefrontErrorHandler", "setup_storefront_error_handling"]
