"""
Serialization utilities for the DEX volume-spike scalper.

Provides JSON encoding for Decimal, HexBytes and web3 response types so
state snapshots and trade-trace records keep full precision.

Usage:
    from shared.serialization_utils import DecimalEncoder
    json.dumps(data, cls=DecimalEncoder)
"""

from decimal import Decimal
from enum import Enum
from json import JSONEncoder
from typing import Any

from hexbytes import HexBytes


class DecimalEncoder(JSONEncoder):
    """
    Custom JSON encoder handling Decimal, Enum, HexBytes and web3.py types.

    Decimals are written as strings so prices like 0.000000012345 survive a
    save/load cycle exactly.
    """

    def default(self, obj: Any) -> Any:
        if isinstance(obj, Decimal):
            return str(obj)
        if isinstance(obj, Enum):
            return obj.value
        # Handle HexBytes from web3.py (tx hashes, raw bytes)
        if isinstance(obj, HexBytes):
            return obj.to_0x_hex()
        if isinstance(obj, bytes):
            return obj.hex()
        # Handle web3.py AttributeDict (common in transaction/receipt responses)
        if hasattr(obj, "__iter__") and hasattr(obj, "keys"):
            return dict(obj)
        return super().default(obj)
