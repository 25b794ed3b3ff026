"""Service layer: Stripe access, webhook reconciliation, checkout sessions."""
