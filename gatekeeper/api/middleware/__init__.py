from gatekeeper.api.middleware.rate_limit import RateLimiter, RateLimitMiddleware

__all__ = ["RateLimiter", "RateLimitMiddleware"]
