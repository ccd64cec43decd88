# app/services/settlement.py
"""
Caller side of the x402 flow.

SettlementClient.pay() runs a strictly sequential, single-attempt pipeline:

1. GET the resource, returning any 2xx as-is   -> DiscoveryFailed
2. Read the 402 `accepts` list                 -> NoPaymentOptions
3. Take the first option, check network/scheme -> UnsupportedRequirement
4. Development bypass, if requested            -> PaymentVerificationFailed
5. Submit the ERC-20 transfer                  -> TransferSubmissionFailed
6. Wait for the transfer to be mined           -> TransferNotConfirmed
7. Retry with the X-PAYMENT proof              -> PaymentVerificationFailed

The first failure aborts the rest. Known limitations: nothing is retried,
maxTimeoutSeconds is not enforced, and there is no idempotency key, so
calling pay() again after a failure in step 7 pays a second time. A
submitted transfer cannot be cancelled or refunded from here.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import requests
from pydantic import ValidationError
from requests.exceptions import RequestException

from app.services.wallet import Wallet
from app.x402.encoding import X_PAYMENT_HEADER, PaymentProof, encode_payment_proof
from app.x402.exceptions import (
    DiscoveryFailed,
    NoPaymentOptions,
    PaymentVerificationFailed,
    TransferNotConfirmed,
    TransferSubmissionFailed,
    UnexpectedStatus,
    UnsupportedRequirement,
)
from app.x402.requirements import SCHEME_EXACT, PaymentRequirements
from app.x402.validation import BYPASS_HEADER, BYPASS_QUERY_PARAM

logger = logging.getLogger(__name__)

DEFAULT_NETWORK = "base-sepolia"


@dataclass
class TransactionRecord:
    """Last transfer submitted by a client, for diagnostics."""
    hash: str
    status: str
    network: str


def _is_success(response: requests.Response) -> bool:
    return 200 <= response.status_code < 300


def _response_body(response: requests.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


class SettlementClient:
    """Pays x402-protected resources with an on-chain token transfer."""

    def __init__(
        self,
        wallet: Optional[Wallet],
        session: Optional[requests.Session] = None,
        network: str = DEFAULT_NETWORK,
        scheme: str = SCHEME_EXACT,
        base_url: Optional[str] = None,
        timeout: int = 30
    ):
        self.wallet = wallet
        self.session = session or requests.Session()
        self.network = network
        self.scheme = scheme
        self.base_url = base_url
        self.timeout = timeout
        self.last_transaction: Optional[TransactionRecord] = None

    @property
    def is_ready(self) -> bool:
        return self.wallet is not None

    def absolute_url(self, url: str) -> str:
        if url.startswith("http") or not self.base_url:
            return url
        return urljoin(self.base_url.rstrip("/") + "/", url.lstrip("/"))

    def pay(self, url: str, use_development_bypass: bool = False) -> Any:
        """
        Fetch a resource, paying for it if the server answers 402.

        Args:
            url: Resource URL (absolute, or relative to base_url)
            use_development_bypass: Ask the server to skip payment (dev servers only)

        Returns:
            The decoded JSON body of the successful response

        Raises:
            SettlementError: the first step that failed, see module docstring
        """
        url = self.absolute_url(url)
        logger.info(f"[x402] Step 1: Getting payment requirements from {url}")
        try:
            initial = self.session.get(url, timeout=self.timeout)
        except RequestException as e:
            logger.error(f"[x402] Could not reach {url}: {e}")
            raise DiscoveryFailed(f"Could not reach {url}: {e}") from e

        if _is_success(initial):
            logger.info("[x402] Resource available without payment")
            return _response_body(initial)

        accepts = self.parse_requirements(initial)
        requirement = self.select_requirement(accepts)

        if use_development_bypass:
            return self.request_with_bypass(url)

        tx = self.submit_transfer(requirement)
        self.confirm_transfer(tx)
        proof = self.build_proof(requirement, tx)
        return self.retry_with_proof(url, proof)

    def parse_requirements(self, response: requests.Response) -> List[Dict[str, Any]]:
        """Step 2: read the `accepts` list from a 402 response."""
        if response.status_code != 402:
            raise UnexpectedStatus(response.status_code)

        body = _response_body(response)
        accepts = body.get("accepts") if isinstance(body, dict) else None
        if not isinstance(accepts, list) or not accepts:
            raise NoPaymentOptions()

        logger.info(f"[x402] Step 2: Server offered {len(accepts)} payment option(s)")
        return accepts

    def select_requirement(self, accepts: List[Dict[str, Any]]) -> PaymentRequirements:
        """Step 3: take the first option and check it is one this client can pay."""
        try:
            requirement = PaymentRequirements.model_validate(accepts[0])
        except ValidationError as e:
            raise UnsupportedRequirement(f"Malformed payment requirement: {e.error_count()} invalid field(s)")

        if requirement.network != self.network:
            raise UnsupportedRequirement(f"Unsupported network: {requirement.network}")
        if requirement.scheme != self.scheme:
            raise UnsupportedRequirement(f"Unsupported payment scheme: {requirement.scheme}")

        return requirement

    def request_with_bypass(self, url: str) -> Any:
        """Step 4: reissue the request with only the development bypass signal."""
        logger.info("[x402] Using development bypass instead of real payment")
        try:
            response = self.session.get(url, params={BYPASS_QUERY_PARAM: "true"}, timeout=self.timeout)
        except RequestException as e:
            logger.error(f"[x402] Bypass request to {url} failed: {e}")
            raise PaymentVerificationFailed(0, str(e)) from e

        if not _is_success(response):
            raise PaymentVerificationFailed(response.status_code, _response_body(response))
        return _response_body(response)

    def submit_transfer(self, requirement: PaymentRequirements) -> str:
        """Step 5: transfer maxAmountRequired of the asset to payTo."""
        if self.wallet is None:
            raise TransferSubmissionFailed("Wallet client not initialized")

        try:
            amount = int(requirement.max_amount_required)
        except ValueError:
            raise TransferSubmissionFailed(f"Invalid payment amount: {requirement.max_amount_required}")

        logger.info(
            f"[x402] Step 5: Sending {amount} units of {requirement.asset} to {requirement.pay_to}"
        )
        try:
            tx = self.wallet.sign_and_submit_transfer(requirement.asset, requirement.pay_to, amount)
        except Exception as e:
            raise TransferSubmissionFailed(f"Transfer submission failed: {e}") from e

        self.last_transaction = TransactionRecord(hash=tx, status="sent", network=requirement.network)
        logger.info(f"[x402] Transaction hash: {tx}")
        return tx

    def confirm_transfer(self, tx: str) -> None:
        """Step 6: wait until the transfer is mined with success status."""
        logger.info("[x402] Step 6: Waiting for transaction confirmation...")
        try:
            confirmed = self.wallet.await_confirmation(tx)
        except Exception as e:
            self._set_transaction_status("failed")
            raise TransferNotConfirmed(tx, f"Could not confirm transaction {tx}: {e}") from e

        self._set_transaction_status("confirmed" if confirmed else "failed")
        if not confirmed:
            raise TransferNotConfirmed(tx, "Transaction failed")

    def build_proof(self, requirement: PaymentRequirements, tx: str) -> PaymentProof:
        return PaymentProof(
            from_=self.wallet.address,
            to=requirement.pay_to,
            asset=requirement.asset,
            amount=requirement.max_amount_required,
            tx=tx,
            network=requirement.network,
        )

    def retry_with_proof(self, url: str, proof: PaymentProof) -> Any:
        """Step 7: reissue the request with the encoded proof attached."""
        logger.info("[x402] Step 7: Accessing content with payment proof...")
        try:
            response = self.session.get(
                url,
                headers={X_PAYMENT_HEADER: encode_payment_proof(proof)},
                timeout=self.timeout
            )
        except RequestException as e:
            logger.error(f"[x402] Retry after payment {proof.tx} failed: {e}")
            raise PaymentVerificationFailed(0, str(e), tx=proof.tx) from e

        if not _is_success(response):
            raise PaymentVerificationFailed(response.status_code, _response_body(response), tx=proof.tx)

        logger.info("[x402] Payment successful!")
        return _response_body(response)

    def test_dev_payment(self, url: str) -> Any:
        """Request a resource with the X-DEV-BYPASS-PAYMENT header set."""
        try:
            response = self.session.get(
                self.absolute_url(url),
                headers={BYPASS_HEADER: "true"},
                timeout=self.timeout
            )
        except RequestException as e:
            logger.error(f"[x402] Development payment request failed: {e}")
            raise PaymentVerificationFailed(0, str(e)) from e

        if not _is_success(response):
            raise PaymentVerificationFailed(response.status_code, _response_body(response))
        return _response_body(response)

    def _set_transaction_status(self, status: str) -> None:
        if self.last_transaction is not None:
            self.last_transaction.status = status
