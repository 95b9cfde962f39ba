"""Logging and metrics for kroflow."""
