# app/x402/ledger.py
"""
Credit ledger adapters.

The ledger is an external system of record; this service only calls
`allocate(address, credits)` and reads back success or failure. It does
not deduplicate allocations for the same proof.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

import requests
from requests.exceptions import RequestException

from app.core.config import settings

logger = logging.getLogger(__name__)


class Ledger(ABC):
    """Interface for credit ledgers."""

    @abstractmethod
    def allocate(self, address: str, credits: int) -> bool:
        raise NotImplementedError


class LoggingLedger(Ledger):
    """Placeholder ledger that records allocations in the application log only."""

    def allocate(self, address: str, credits: int) -> bool:
        logger.info(f"Allocating {credits} credits to {address}")
        return True


class HttpLedger(Ledger):
    """Ledger reached over HTTP: POST {address, credits} to a configured URL."""

    def __init__(self, url: str, session: Optional[requests.Session] = None, timeout: int = 10):
        self.url = url
        self.session = session or requests.Session()
        self.timeout = timeout

    def allocate(self, address: str, credits: int) -> bool:
        try:
            response = self.session.post(
                self.url,
                json={"address": address, "credits": credits},
                timeout=self.timeout
            )
        except RequestException as e:
            logger.error(f"Ledger request to {self.url} failed: {e}")
            return False

        if not 200 <= response.status_code < 300:
            logger.error(f"Ledger rejected allocation of {credits} credits to {address}: HTTP {response.status_code}")
            return False

        logger.info(f"Ledger allocated {credits} credits to {address}")
        return True


def get_ledger() -> Ledger:
    """FastAPI dependency returning the configured ledger."""
    if settings.LEDGER_URL:
        return HttpLedger(str(settings.LEDGER_URL))
    return LoggingLedger()
