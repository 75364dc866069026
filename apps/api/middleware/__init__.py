"""HTTP middleware package."""

from middleware.embed_referer import EmbedRefererMiddleware

__all__ = ["EmbedRefererMiddleware"]
