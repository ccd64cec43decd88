# app/services/wallet.py
"""
Signing wallet used by the settlement client.

The settlement client only needs three things from a wallet: its address,
a way to submit an ERC-20 transfer, and a way to wait for that transfer to
be mined. Web3Wallet provides them with a local private key.

IMPORTANT: Web3Wallet.from_settings reads PRIVATE_KEY from the environment.
Only use it in trusted, server-side processes.
"""
import logging
from abc import ABC, abstractmethod
from typing import Optional

from eth_account import Account
from web3 import Web3

from app.core.config import Settings, settings

logger = logging.getLogger(__name__)

BASE_SEPOLIA_CHAIN_ID = 84532

# ERC-20 ABI fragment needed for the transfer function
ERC20_TRANSFER_ABI = [
    {
        "inputs": [
            {"name": "to", "type": "address"},
            {"name": "amount", "type": "uint256"}
        ],
        "name": "transfer",
        "outputs": [{"name": "", "type": "bool"}],
        "stateMutability": "nonpayable",
        "type": "function"
    }
]


class Wallet(ABC):
    """Interface for wallets that can pay x402 requirements."""

    @property
    @abstractmethod
    def address(self) -> str:
        raise NotImplementedError

    @abstractmethod
    def sign_and_submit_transfer(self, asset: str, to: str, amount: int) -> str:
        """Submit an ERC-20 transfer and return its transaction id."""
        raise NotImplementedError

    @abstractmethod
    def await_confirmation(self, tx_id: str) -> bool:
        """Block until the transfer is mined; True if it succeeded."""
        raise NotImplementedError


class Web3Wallet(Wallet):
    """Wallet backed by a web3 provider and a local eth-account key."""

    def __init__(
        self,
        w3: Web3,
        account,
        chain_id: Optional[int] = None,
        receipt_timeout: float = 120
    ):
        self.w3 = w3
        self.account = account
        self.chain_id = chain_id
        self.receipt_timeout = receipt_timeout

    @property
    def address(self) -> str:
        return self.account.address

    def sign_and_submit_transfer(self, asset: str, to: str, amount: int) -> str:
        token = self.w3.eth.contract(address=Web3.to_checksum_address(asset), abi=ERC20_TRANSFER_ABI)
        transaction = token.functions.transfer(Web3.to_checksum_address(to), int(amount)).build_transaction({
            "from": self.account.address,
            "nonce": self.w3.eth.get_transaction_count(self.account.address),
            "chainId": self.chain_id if self.chain_id is not None else self.w3.eth.chain_id,
        })

        signed = self.account.sign_transaction(transaction)
        tx_hash = Web3.to_hex(self.w3.eth.send_raw_transaction(signed.raw_transaction))
        logger.info(f"Submitted transfer of {amount} units of {asset} to {to}: {tx_hash}")
        return tx_hash

    def await_confirmation(self, tx_id: str) -> bool:
        logger.info(f"Waiting for confirmation of {tx_id}")
        receipt = self.w3.eth.wait_for_transaction_receipt(tx_id, timeout=self.receipt_timeout)
        confirmed = receipt["status"] == 1
        if not confirmed:
            logger.warning(f"Transaction {tx_id} was mined but reverted")
        return confirmed

    @classmethod
    def from_settings(cls, config: Optional[Settings] = None) -> Optional["Web3Wallet"]:
        """
        Create a Base Sepolia wallet from PRIVATE_KEY and BASE_SEPOLIA_RPC_URL.

        Returns:
            Web3Wallet, or None if no private key is configured
        """
        config = config or settings
        if not config.PRIVATE_KEY:
            logger.error("Cannot create wallet: missing PRIVATE_KEY")
            return None

        w3 = Web3(Web3.HTTPProvider(config.BASE_SEPOLIA_RPC_URL))
        account = Account.from_key(config.PRIVATE_KEY)
        return cls(w3, account, chain_id=BASE_SEPOLIA_CHAIN_ID)
