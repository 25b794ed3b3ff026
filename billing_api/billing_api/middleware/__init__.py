"""Starlette middleware and logging helpers for the billing service."""
