"""
FastAPI application layer for the AI gateway.

Exposes one HTTP contract for every registered model: list and describe
models, fetch their input schema, and invoke them with a JSON or multipart
body that is validated against that schema.
"""
