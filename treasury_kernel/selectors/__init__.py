"""Read-only query selectors."""

from treasury_kernel.selectors.base import BaseSelector

__all__ = ["BaseSelector"]
