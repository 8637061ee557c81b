# estate_mint/validation.py
"""Request-field parsing that runs before any I/O."""

import re
from typing import Mapping, Optional

from eth_utils import is_hex_address
from web3 import Web3

from .errors import InputError

UINT64_MAX = 2**64 - 1

_CANONICAL_DECIMAL = re.compile(r"0|[1-9][0-9]*")
_DIGITS = re.compile(r"[0-9]+")


def parse_uint(field: str, value: Optional[str], *, bits: int = 256) -> int:
    """
    Parse a canonical unsigned decimal string ("0" or no leading zeros, no sign).
    """
    if value is None or value == "":
        raise InputError(f"{field} is required")
    if not isinstance(value, str) or not _CANONICAL_DECIMAL.fullmatch(value):
        raise InputError(f"Invalid {field}: must be a non-negative decimal integer")
    n = int(value)
    if n > 2**bits - 1:
        raise InputError(f"Invalid {field}: exceeds uint{bits}")
    return n


def parse_property_id(value: Optional[str], field: str = "propertyId") -> int:
    # generated ids are zero-padded to a fixed width, so leading zeros are allowed here
    if value is None or value == "":
        raise InputError(f"{field} is required")
    if not isinstance(value, str) or not _DIGITS.fullmatch(value):
        raise InputError(f"Invalid {field}: must be a valid number")
    n = int(value)
    if n > UINT64_MAX:
        raise InputError(f"Invalid {field}: exceeds uint64")
    return n


def normalize_address(field: str, value: Optional[str]) -> str:
    """Return the checksum form of a 20-byte hex address."""
    if not value:
        raise InputError(f"{field} address is required")
    if not isinstance(value, str) or not is_hex_address(value):
        raise InputError("Invalid address format")
    if not value.startswith(("0x", "0X")):
        value = "0x" + value
    return Web3.to_checksum_address("0x" + value[2:].lower())


def require(fields: Mapping[str, Optional[str]]) -> None:
    for name, value in fields.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InputError(f"{name} is required")
