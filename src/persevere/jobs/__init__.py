"""Job record, step ledger and their domain models."""

from persevere.jobs.ledger import StepLedger
from persevere.jobs.repository import JobRepository

__all__ = ["JobRepository", "StepLedger"]
