"""State persistence layer using PostgreSQL (SQLite for local runs)."""

from billing_core.state.database import get_engine, get_session
from billing_core.state.repository import (
    OrganizationBillingRepository,
    OrganizationTierRepository,
    ProcessedEventRepository,
)

__all__ = [
    "OrganizationBillingRepository",
    "OrganizationTierRepository",
    "ProcessedEventRepository",
    "get_engine",
    "get_session",
]
