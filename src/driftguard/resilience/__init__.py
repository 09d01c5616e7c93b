"""Resilience primitives: token-bucket rate limiter, circuit breaker, retry handler."""
