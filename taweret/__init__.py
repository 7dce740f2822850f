"""
Taweret - backup retention enforcement for Kanister ActionSets.

This package evaluates backup schedules against their retention policies,
removes the oldest backups that exceed the configured limits and publishes
Prometheus metrics describing backup health.
"""

__version__ = "0.1.0"
