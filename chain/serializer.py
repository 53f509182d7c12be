"""
Hive Chain RPC - Binary Serialization

This module encodes protocol values (assets, operations, transactions) into
the canonical little-endian byte form used for transaction ids, digests and
hex-encoded RPC parameters.
"""

import calendar
import hashlib
import struct
from datetime import datetime
from decimal import Decimal, InvalidOperation
from io import BytesIO
from typing import Any, Callable, Dict, List, Sequence, Tuple, Union

from .operations import OPERATION_IDS

Serializer = Callable[[BytesIO, Any], None]


class SerializationError(ValueError):
    """Raised when a value cannot be encoded."""
    pass


ASSET_PRECISION = {
    "HIVE": 3,
    "HBD": 3,
    "TESTS": 3,
    "TBD": 3,
    "VESTS": 6,
}

# hived still uses the pre-fork symbols in its binary format
WIRE_SYMBOLS = {
    "HIVE": "STEEM",
    "HBD": "SBD",
}

LEGACY_SYMBOLS = {
    "STEEM": "HIVE",
    "SBD": "HBD",
}


def _packer(fmt: str) -> Serializer:
    def serialize(buffer: BytesIO, value: Any):
        try:
            buffer.write(struct.pack(fmt, value))
        except struct.error as e:
            raise SerializationError(f"{value!r} does not fit {fmt}: {e}")
    return serialize


UInt8 = _packer("<B")
UInt16 = _packer("<H")
UInt32 = _packer("<I")
UInt64 = _packer("<Q")
Int16 = _packer("<h")
Int64 = _packer("<q")


def VarInt32(buffer: BytesIO, value: int):
    """Unsigned LEB128 varint, at most 32 bits."""
    if value < 0 or value > 0xFFFFFFFF:
        raise SerializationError(f"varint32 out of range: {value}")
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            buffer.write(bytes([byte | 0x80]))
        else:
            buffer.write(bytes([byte]))
            return


def Boolean(buffer: BytesIO, value: bool):
    UInt8(buffer, 1 if value else 0)


def String(buffer: BytesIO, value: str):
    """Varint length prefix followed by UTF-8 bytes."""
    if not isinstance(value, str):
        raise SerializationError(f"Expected string, got {type(value).__name__}")
    data = value.encode("utf-8")
    VarInt32(buffer, len(data))
    buffer.write(data)


def _to_bytes(value: Union[bytes, bytearray, str]) -> bytes:
    if isinstance(value, (bytes, bytearray)):
        return bytes(value)
    try:
        return bytes.fromhex(value)
    except (TypeError, ValueError):
        raise SerializationError(f"Expected bytes or hex string, got {value!r}")


def Binary(size: int = None) -> Serializer:
    """Raw bytes (or hex string); length-prefixed unless `size` is given."""
    def serialize(buffer: BytesIO, value: Union[bytes, str]):
        data = _to_bytes(value)
        if size is None:
            VarInt32(buffer, len(data))
        elif len(data) != size:
            raise SerializationError(f"Expected {size} bytes, got {len(data)}")
        buffer.write(data)
    return serialize


def Date(buffer: BytesIO, value: Union[str, datetime]):
    """UTC timestamp as uint32 seconds."""
    if isinstance(value, str):
        try:
            value = datetime.strptime(value.rstrip("Z"), "%Y-%m-%dT%H:%M:%S")
        except ValueError:
            raise SerializationError(f"Invalid date: {value}")
    UInt32(buffer, calendar.timegm(value.utctimetuple()))


def parse_asset(value: Union[str, Tuple[Any, str]]) -> Tuple[int, int, str]:
    """
    Parse an asset into (amount in smallest units, precision, symbol).

    Args:
        value: "1.000 HIVE" style string or (amount, symbol) pair

    Returns:
        Tuple of (satoshi-style integer amount, precision, symbol)
    """
    if isinstance(value, str):
        parts = value.strip().split(" ")
        if len(parts) != 2:
            raise SerializationError(f"Invalid asset: {value!r}")
        amount_str, symbol = parts
    else:
        amount_str, symbol = str(value[0]), value[1]

    symbol = LEGACY_SYMBOLS.get(symbol, symbol)
    if symbol not in ASSET_PRECISION:
        raise SerializationError(f"Unknown asset symbol: {symbol}")
    precision = ASSET_PRECISION[symbol]

    try:
        amount = Decimal(amount_str)
    except InvalidOperation:
        raise SerializationError(f"Invalid asset amount: {amount_str!r}")

    scaled = amount.scaleb(precision)
    if scaled != scaled.to_integral_value():
        raise SerializationError(f"{value!r} has more than {precision} decimals")
    return int(scaled), precision, symbol


def Asset(buffer: BytesIO, value: Union[str, Tuple[Any, str]]):
    """int64 amount, uint8 precision, 7-byte zero-padded symbol."""
    amount, precision, symbol = parse_asset(value)
    wire_symbol = WIRE_SYMBOLS.get(symbol, symbol).encode("ascii")
    Int64(buffer, amount)
    UInt8(buffer, precision)
    buffer.write(wire_symbol.ljust(7, b"\x00"))


def Array(item: Serializer) -> Serializer:
    def serialize(buffer: BytesIO, values: Sequence[Any]):
        VarInt32(buffer, len(values))
        for value in values:
            item(buffer, value)
    return serialize


def Optional(item: Serializer) -> Serializer:
    def serialize(buffer: BytesIO, value: Any):
        if value is None:
            UInt8(buffer, 0)
        else:
            UInt8(buffer, 1)
            item(buffer, value)
    return serialize


def Void(buffer: BytesIO, value: Any):
    raise SerializationError("Void can not be serialized")


def Object(fields: List[Tuple[str, Serializer]]) -> Serializer:
    """Serialize a mapping field by field, in declaration order."""
    def serialize(buffer: BytesIO, data: Dict[str, Any]):
        for key, field_serializer in fields:
            if key not in data:
                raise SerializationError(f"{key}: missing field")
            try:
                field_serializer(buffer, data[key])
            except SerializationError as e:
                raise SerializationError(f"{key}: {e}")
    return serialize


OPERATION_SERIALIZERS: Dict[str, Serializer] = {
    "vote": Object([
        ("voter", String),
        ("author", String),
        ("permlink", String),
        ("weight", Int16),
    ]),
    "comment": Object([
        ("parent_author", String),
        ("parent_permlink", String),
        ("author", String),
        ("permlink", String),
        ("title", String),
        ("body", String),
        ("json_metadata", String),
    ]),
    "transfer": Object([
        ("from", String),
        ("to", String),
        ("amount", Asset),
        ("memo", String),
    ]),
    "transfer_to_vesting": Object([
        ("from", String),
        ("to", String),
        ("amount", Asset),
    ]),
    "withdraw_vesting": Object([
        ("account", String),
        ("vesting_shares", Asset),
    ]),
    "custom_json": Object([
        ("required_auths", Array(String)),
        ("required_posting_auths", Array(String)),
        ("id", String),
        ("json", String),
    ]),
    "claim_reward_balance": Object([
        ("account", String),
        ("reward_hive", Asset),
        ("reward_hbd", Asset),
        ("reward_vests", Asset),
    ]),
    "delegate_vesting_shares": Object([
        ("delegator", String),
        ("delegatee", String),
        ("vesting_shares", Asset),
    ]),
}


def Operation(buffer: BytesIO, operation: Sequence[Any]):
    """`[name, body]` pair: varint operation id then the body."""
    name, body = operation
    serializer = OPERATION_SERIALIZERS.get(name)
    if serializer is None:
        raise SerializationError(f"No serializer for operation: {name}")
    VarInt32(buffer, OPERATION_IDS[name])
    try:
        serializer(buffer, body)
    except SerializationError as e:
        raise SerializationError(f"{name}: {e}")


Transaction = Object([
    ("ref_block_num", UInt16),
    ("ref_block_prefix", UInt32),
    ("expiration", Date),
    ("operations", Array(Operation)),
    ("extensions", Array(Void)),
])

SignedTransaction = Object([
    ("ref_block_num", UInt16),
    ("ref_block_prefix", UInt32),
    ("expiration", Date),
    ("operations", Array(Operation)),
    ("extensions", Array(Void)),
    ("signatures", Array(Binary(65))),
])


def serialize(serializer: Serializer, value: Any) -> bytes:
    """Run `serializer` on `value` and return the bytes."""
    buffer = BytesIO()
    serializer(buffer, value)
    return buffer.getvalue()


def serialize_transaction(transaction: Dict[str, Any]) -> bytes:
    return serialize(Transaction, transaction)


def serialize_signed_transaction(transaction: Dict[str, Any]) -> bytes:
    return serialize(SignedTransaction, transaction)


def transaction_digest(transaction: Dict[str, Any], chain_id: Union[bytes, str]) -> bytes:
    """sha256 of chain id followed by the unsigned transaction bytes."""
    return hashlib.sha256(_to_bytes(chain_id) + serialize_transaction(transaction)).digest()


def transaction_id(transaction: Dict[str, Any]) -> str:
    """First 20 bytes of sha256 over the unsigned transaction, as hex."""
    return hashlib.sha256(serialize_transaction(transaction)).digest()[:20].hex()
