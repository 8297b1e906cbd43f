"""Logging, configuration and delivery helpers."""
