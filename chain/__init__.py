"""
Hive Chain RPC - Chain Protocol Types

Operation ids and the canonical binary serialization of transactions.
"""

from .operations import OPERATION_IDS, make_bitmask_filter
from .serializer import (
    SerializationError,
    serialize_signed_transaction,
    serialize_transaction,
    transaction_digest,
    transaction_id,
)

__all__ = [
    "OPERATION_IDS",
    "make_bitmask_filter",
    "SerializationError",
    "serialize_signed_transaction",
    "serialize_transaction",
    "transaction_digest",
    "transaction_id",
]
