# tests/test_wallet.py
"""
Unit tests for the web3-backed signing wallet.
"""
from unittest.mock import MagicMock, patch

import pytest

from app.core.config import settings
from app.services.wallet import BASE_SEPOLIA_CHAIN_ID, Wallet, Web3Wallet

from conftest import SELLER, TX_HASH, USDC

PRIVATE_KEY = "0x" + "11" * 32


def make_w3(status=1):
    w3 = MagicMock()
    w3.eth.get_transaction_count.return_value = 7
    w3.eth.chain_id = 1
    w3.eth.send_raw_transaction.return_value = bytes.fromhex(TX_HASH[2:])
    w3.eth.wait_for_transaction_receipt.return_value = {"status": status}
    contract = w3.eth.contract.return_value
    contract.functions.transfer.return_value.build_transaction.return_value = {"to": USDC, "data": "0x"}
    return w3


def make_account():
    account = MagicMock()
    account.address = "0x19E7E376E7C213B7E7e7e46cc70A5dD086DAff2A"
    account.sign_transaction.return_value = MagicMock(raw_transaction=b"\x01\x02")
    return account


class TestWeb3Wallet:

    def test_address_from_account(self):
        account = make_account()
        assert Web3Wallet(make_w3(), account).address == account.address

    def test_submit_transfer(self):
        w3 = make_w3()
        account = make_account()
        wallet = Web3Wallet(w3, account, chain_id=BASE_SEPOLIA_CHAIN_ID)

        tx = wallet.sign_and_submit_transfer(USDC, SELLER, 500000)

        assert tx == TX_HASH
        transfer = w3.eth.contract.return_value.functions.transfer
        to, amount = transfer.call_args.args
        assert to.lower() == SELLER.lower()
        assert amount == 500000
        transfer.return_value.build_transaction.assert_called_once_with({
            "from": account.address,
            "nonce": 7,
            "chainId": BASE_SEPOLIA_CHAIN_ID,
        })
        account.sign_transaction.assert_called_once_with({"to": USDC, "data": "0x"})
        w3.eth.send_raw_transaction.assert_called_once_with(b"\x01\x02")

    def test_chain_id_from_provider_when_unset(self):
        w3 = make_w3()
        Web3Wallet(w3, make_account()).sign_and_submit_transfer(USDC, SELLER, 1)

        params = w3.eth.contract.return_value.functions.transfer.return_value.build_transaction.call_args.args[0]
        assert params["chainId"] == 1

    def test_confirmed_receipt(self):
        assert Web3Wallet(make_w3(status=1), make_account()).await_confirmation(TX_HASH) is True

    def test_reverted_receipt(self):
        assert Web3Wallet(make_w3(status=0), make_account()).await_confirmation(TX_HASH) is False

    def test_receipt_timeout_propagates(self):
        w3 = make_w3()
        w3.eth.wait_for_transaction_receipt.side_effect = TimeoutError("not mined")

        with pytest.raises(TimeoutError):
            Web3Wallet(w3, make_account(), receipt_timeout=1).await_confirmation(TX_HASH)

        w3.eth.wait_for_transaction_receipt.assert_called_once_with(TX_HASH, timeout=1)


class TestFromSettings:

    def test_no_private_key(self):
        with patch.object(settings, "PRIVATE_KEY", None):
            assert Web3Wallet.from_settings() is None

    def test_wallet_from_private_key(self):
        with patch.multiple(settings, PRIVATE_KEY=PRIVATE_KEY, BASE_SEPOLIA_RPC_URL="http://localhost:8545"):
            wallet = Web3Wallet.from_settings()

        assert wallet.chain_id == BASE_SEPOLIA_CHAIN_ID
        assert wallet.address.startswith("0x")
        assert len(wallet.address) == 42


class TestWalletInterface:

    def test_interface_cannot_be_instantiated(self):
        with pytest.raises(TypeError):
            Wallet()

    def test_half_implemented_wallet_rejected(self):
        class SubmitOnly(Wallet):
            @property
            def address(self):
                return SELLER

            def sign_and_submit_transfer(self, asset, to, amount):
                return TX_HASH

        with pytest.raises(TypeError):
            SubmitOnly()
