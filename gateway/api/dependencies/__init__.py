"""
FastAPI dependencies for request processing.

Dependencies provide reusable logic that is injected into API endpoints:
API-key authentication, the upload gate and access to the application state.
"""
