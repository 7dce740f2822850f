"""
Resource store connectors.
"""
