"""
Retention evaluation: backup classification, retention enforcement and deletion.
"""
