"""HTTP middleware."""
from pdp_coach.middleware.request_id import RequestIDMiddleware

__all__ = ["RequestIDMiddleware"]
