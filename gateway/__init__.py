"""
AI Gateway: one HTTP contract for interchangeable model strategies.
"""

__version__ = "1.0.0"
