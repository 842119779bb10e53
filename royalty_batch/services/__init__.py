"""Batch execution services."""
