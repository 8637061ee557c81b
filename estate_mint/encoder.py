# estate_mint/encoder.py
"""
Contract call-data encoding.

Pure functions over an ABI description: no RPC connection is involved, so
the result can be returned to a client for signing or handed to the
broadcaster unchanged.
"""

import json
from typing import Any, Dict, List, Union

from eth_abi import encode as abi_encode
from eth_abi.exceptions import ABITypeError, EncodingError as AbiEncodingError, ParseError
from web3 import Web3

from .errors import EncodingError, SchemaError

AbiDescription = Union[str, bytes, Dict[str, Any], List[Dict[str, Any]]]


def parse_abi(description: AbiDescription) -> List[Dict[str, Any]]:
    """
    Normalize an ABI description into its list of entries.

    Accepts JSON text, a list of ABI entries, or a build artifact
    (``{"abi": [...], ...}``) as emitted by hardhat/foundry.
    """
    if isinstance(description, (str, bytes)):
        try:
            description = json.loads(description)
        except ValueError as e:
            raise SchemaError(f"ABI is not valid JSON: {e}") from e
    if isinstance(description, dict):
        description = description.get("abi", description)
    if not isinstance(description, list) or not all(isinstance(entry, dict) for entry in description):
        raise SchemaError("ABI must be a list of entries")
    return description


def load_abi(path: str) -> List[Dict[str, Any]]:
    with open(path) as f:
        return parse_abi(f.read())


def _canonical_type(param: Dict[str, Any]) -> str:
    t = param.get("type")
    if not isinstance(t, str) or not t:
        raise SchemaError(f"ABI parameter without a type: {param!r}")
    if t.startswith("tuple"):
        components = param.get("components")
        if not isinstance(components, list):
            raise SchemaError(f"tuple parameter without components: {param!r}")
        return "(" + ",".join(_canonical_type(c) for c in components) + ")" + t[len("tuple"):]
    return t


def _find_function(abi: List[Dict[str, Any]], name: str, argc: int) -> Dict[str, Any]:
    candidates = [
        entry for entry in abi
        if entry.get("type", "function") == "function" and entry.get("name") == name
    ]
    if not candidates:
        raise EncodingError(f"function '{name}' not found in ABI")
    matching = [entry for entry in candidates if len(entry.get("inputs") or []) == argc]
    if not matching:
        expected = sorted({len(entry.get("inputs") or []) for entry in candidates})
        raise EncodingError(f"function '{name}' expects {expected} arguments, got {argc}")
    if len(matching) > 1:
        raise EncodingError(f"function '{name}' is ambiguous for {argc} arguments")
    return matching[0]


def function_signature(fn_abi: Dict[str, Any]) -> str:
    types = [_canonical_type(p) for p in fn_abi.get("inputs") or []]
    return f"{fn_abi['name']}({','.join(types)})"


def function_selector(signature: str) -> bytes:
    return bytes(Web3.keccak(text=signature)[:4])


class TransactionEncoder:
    def encode(self, abi_description: AbiDescription, function_name: str, *args: Any) -> bytes:
        """Return selector + ABI-encoded ``args`` for ``function_name``."""
        abi = parse_abi(abi_description)
        fn_abi = _find_function(abi, function_name, len(args))
        types = [_canonical_type(p) for p in fn_abi.get("inputs") or []]
        signature = function_signature(fn_abi)
        try:
            encoded = abi_encode(types, list(args))
        except (ParseError, ABITypeError) as e:
            raise SchemaError(f"invalid type in '{signature}': {e}") from e
        except (AbiEncodingError, TypeError, ValueError, OverflowError) as e:
            raise EncodingError(f"arguments do not match '{signature}': {e}") from e
        return function_selector(signature) + encoded


def to_hex(data: bytes) -> str:
    return "0x" + bytes(data).hex()
