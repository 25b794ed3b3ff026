"""Operator command line for the billing service."""
