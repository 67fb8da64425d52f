"""
Built-in model plugins. Each subdirectory is one plugin loaded at startup.
"""
