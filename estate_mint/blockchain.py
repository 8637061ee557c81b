# estate_mint/blockchain.py
import logging
import threading
from typing import Dict

import requests
from eth_account import Account
from hexbytes import HexBytes
from web3 import Web3

from .errors import DependencyError, DependencyTimeoutError
from .models import Chain

log = logging.getLogger(__name__)


def _raw_transaction(signed_tx) -> bytes:
    """
    Works with both eth-account return shapes:
      - signed_tx.rawTransaction  (older)
      - signed_tx.raw_transaction (newer)
    """
    raw = getattr(signed_tx, "raw_transaction", None)
    if raw is None:
        raw = getattr(signed_tx, "rawTransaction", None)
    if raw is None:
        raise DependencyError("Signed transaction object does not contain raw tx bytes")
    return raw


class Web3Broadcaster:
    """Signs call data with the process signing key and submits it to a chain."""

    def __init__(self, private_key: str, timeout: float = 30.0):
        if not private_key.startswith("0x"):
            private_key = "0x" + private_key
        self._account = Account.from_key(private_key)
        self.timeout = timeout
        self._providers: Dict[str, Web3] = {}
        self._lock = threading.Lock()

    @property
    def address(self) -> str:
        return self._account.address

    def _w3(self, rpc: str) -> Web3:
        with self._lock:
            w3 = self._providers.get(rpc)
            if w3 is None:
                w3 = Web3(Web3.HTTPProvider(rpc, request_kwargs={"timeout": self.timeout}))
                self._providers[rpc] = w3
            return w3

    def broadcast(self, chain: Chain, to: str, data: bytes) -> str:
        """Submit the transaction and return its hash; does not wait for a receipt."""
        w3 = self._w3(chain.rpc)
        sender = self._account.address
        to = Web3.to_checksum_address(to)
        log.debug("Broadcasting to %s on chain %s (%s)", to, chain.chain_id, chain.rpc)
        try:
            tx = {
                "to": to,
                "value": 0,
                "data": HexBytes(data),
                "chainId": int(chain.chain_id),
                "nonce": w3.eth.get_transaction_count(sender, "pending"),
                "gasPrice": w3.eth.gas_price,
            }
            tx["gas"] = w3.eth.estimate_gas({"from": sender, "to": to, "data": HexBytes(data), "value": 0})

            signed = self._account.sign_transaction(tx)
            tx_hash = w3.eth.send_raw_transaction(_raw_transaction(signed))
        except requests.Timeout as e:
            raise DependencyTimeoutError(f"chain RPC timed out: {e}") from e
        except DependencyError:
            raise
        except Exception as e:
            raise DependencyError(f"Failed to broadcast transaction: {e}") from e

        tx_hex = Web3.to_hex(tx_hash)
        log.info("Submitted transaction %s to chain %s", tx_hex, chain.name)
        return tx_hex
