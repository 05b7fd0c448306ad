"""Retention sweep for the conversion ledger (core domain)."""

from __future__ import annotations

import logging
from datetime import timedelta

from core.ports import LedgerPort

LOGGER = logging.getLogger(__name__)


def run_retention_sweep(ledger: LedgerPort, retention_days: int) -> int:
    """Purge conversions older than ``retention_days`` and return the count."""

    if retention_days <= 0:
        raise ValueError("retention_days must be positive")

    removed = ledger.purge_older_than(timedelta(days=retention_days))
    if removed:
        LOGGER.info("Cleaned up %s old conversion(s) from the ledger", removed)
    else:
        LOGGER.debug("Retention sweep found nothing older than %s days", retention_days)
    return removed
