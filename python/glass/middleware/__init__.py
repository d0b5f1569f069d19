"""HTTP middleware for the bridge API."""

from glass.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
