"""
Model layer: strategy contract, schema registry, strategy factory, plugin loader.
"""
