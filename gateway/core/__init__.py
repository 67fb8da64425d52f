"""
Core primitives shared by the model layer and the HTTP layer.
"""
