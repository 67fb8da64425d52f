"""
API route handlers for different endpoint groups.

Each router handles one area: health probes, and the model catalogue with
its invocation endpoint.
"""
