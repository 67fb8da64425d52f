"""
Pydantic models for API request/response envelopes.

Strategy payloads stay opaque here; only the outer shapes are modelled.
"""
