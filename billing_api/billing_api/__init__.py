"""Billing service for the RFQ triage platform."""

__version__ = "0.1.0"
