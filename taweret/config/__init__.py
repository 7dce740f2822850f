"""
Configuration loaders.
"""
