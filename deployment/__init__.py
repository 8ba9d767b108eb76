"""
Deployment layer: HTTP API and generation circuit breaker.
"""
