"""Billing domain model and persistence for RFQ organization subscriptions."""
