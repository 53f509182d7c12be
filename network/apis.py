"""
Hive Chain RPC - API Helpers

Thin convenience wrappers over `Client.call` for the node API groups.
"""

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from chain.operations import make_bitmask_filter


class DatabaseAPI:
    """Read calls served by `condenser_api`."""

    def __init__(self, client):
        self.client = client

    def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        return self.client.call("condenser_api", method, params)

    def get_dynamic_global_properties(self) -> Dict[str, Any]:
        """Return state of server."""
        return self.call("get_dynamic_global_properties")

    def get_chain_properties(self) -> Dict[str, Any]:
        """Return median chain properties decided by witnesses."""
        return self.call("get_chain_properties")

    def get_config(self) -> Dict[str, Any]:
        return self.call("get_config")

    def get_block_header(self, block_num: int) -> Dict[str, Any]:
        return self.call("get_block_header", [block_num])

    def get_block(self, block_num: int) -> Dict[str, Any]:
        return self.call("get_block", [block_num])

    def get_operations(self, block_num: int, only_virtual: bool = False) -> List[Dict[str, Any]]:
        """Return all applied operations in `block_num`."""
        return self.call("get_ops_in_block", [block_num, only_virtual])

    def get_accounts(self, names: Sequence[str]) -> List[Dict[str, Any]]:
        return self.call("get_accounts", [list(names)])

    def get_account_history(
        self,
        account: str,
        start: int = -1,
        limit: int = 100,
        operation_ids: Optional[Sequence[int]] = None,
    ) -> List[Any]:
        """
        Return account history entries, newest `start` first.

        Args:
            account: Account name
            start: Sequence number to start from, -1 for the latest
            limit: Number of entries, max 1000
            operation_ids: Only return these operation types
        """
        params: List[Any] = [account, start, limit]
        if operation_ids:
            params.extend(make_bitmask_filter(operation_ids))
        return self.call("get_account_history", params)

    def get_transaction(self, txid: str) -> Dict[str, Any]:
        return self.call("get_transaction", [txid])

    def verify_authority(self, signed_transaction: Dict[str, Any]) -> bool:
        return self.call("verify_authority", [signed_transaction])


class BroadcastAPI:
    """Transaction submission. Calls are never blindly retried."""

    def __init__(self, client):
        self.client = client

    def send(self, signed_transaction: Dict[str, Any]) -> Dict[str, Any]:
        """Broadcast a signed transaction and wait for it to be included in a block."""
        return self.client.call(
            "condenser_api", "broadcast_transaction_synchronous", [signed_transaction]
        )

    def send_async(self, signed_transaction: Dict[str, Any]) -> Any:
        """Broadcast a signed transaction without waiting for inclusion."""
        return self.client.call("condenser_api", "broadcast_transaction", [signed_transaction])


class TransactionStatusAPI:
    """Calls served by `transaction_status_api`."""

    def __init__(self, client):
        self.client = client

    def find_transaction(self, transaction_id: str, expiration: Optional[str] = None) -> Dict[str, Any]:
        """Return the status of a transaction, e.g. `within_mempool`."""
        params = {"transaction_id": transaction_id}
        if expiration:
            params["expiration"] = expiration
        return self.client.call("transaction_status_api", "find_transaction", params)


class AccountByKeyAPI:
    """Calls served by `account_by_key_api`."""

    def __init__(self, client):
        self.client = client

    def get_key_references(self, keys: Sequence[str]) -> Dict[str, Any]:
        """Return accounts whose owner or active authorities use any of `keys`."""
        return self.client.call(
            "account_by_key_api", "get_key_references", {"keys": [str(k) for k in keys]}
        )


class HivemindAPI:
    """Calls served by the hivemind `bridge` API."""

    def __init__(self, client):
        self.client = client

    def call(self, method: str, params: Any = None) -> Any:
        return self.client.call("bridge", method, params)

    def get_ranked_posts(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.call("get_ranked_posts", options)

    def get_account_posts(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.call("get_account_posts", options)

    def get_community(self, options: Dict[str, Any]) -> Dict[str, Any]:
        return self.call("get_community", options)

    def list_communities(self, options: Dict[str, Any]) -> List[Dict[str, Any]]:
        return self.call("list_communities", options)

    def account_notifications(self, options: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        return self.call("account_notifications", options)


class Blockchain:
    """Chain head helpers and block streams built on DatabaseAPI."""

    # Seconds between blocks.
    BLOCK_INTERVAL = 3

    def __init__(self, client, sleep: Callable[[float], None] = time.sleep):
        self.client = client
        self._sleep = sleep

    def get_current_block_num(self, irreversible: bool = False) -> int:
        """Latest block number, or the last irreversible one."""
        props = self.client.database.get_dynamic_global_properties()
        if irreversible:
            return props["last_irreversible_block_num"]
        return props["head_block_number"]

    def get_current_block_header(self, irreversible: bool = False) -> Dict[str, Any]:
        return self.client.database.get_block_header(self.get_current_block_num(irreversible))

    def get_current_block(self, irreversible: bool = False) -> Dict[str, Any]:
        return self.client.database.get_block(self.get_current_block_num(irreversible))

    def get_block_numbers(
        self,
        start: Optional[int] = None,
        stop: Optional[int] = None,
        irreversible: bool = True,
    ) -> Iterator[int]:
        """
        Yield block numbers as the chain produces them.

        Args:
            start: First block number, defaults to the current block
            stop: Last block number (inclusive), streams forever if None
            irreversible: Follow the last irreversible block instead of head

        Raises:
            ValueError: `start` is ahead of the current block
        """
        current = self.get_current_block_num(irreversible)
        if start is not None and start > current:
            raise ValueError(f"start can't be larger than current block num ({current})")

        seen = current if start is None else start
        while True:
            while current > seen:
                yield seen
                seen += 1
                if stop is not None and seen > stop:
                    return
            self._sleep(self.BLOCK_INTERVAL)
            current = self.get_current_block_num(irreversible)

    def get_blocks(self, start: Optional[int] = None, stop: Optional[int] = None,
                   irreversible: bool = True) -> Iterator[Dict[str, Any]]:
        """Yield blocks; same arguments as get_block_numbers."""
        for num in self.get_block_numbers(start, stop, irreversible):
            yield self.client.database.get_block(num)

    def get_operations(self, start: Optional[int] = None, stop: Optional[int] = None,
                       irreversible: bool = True) -> Iterator[Dict[str, Any]]:
        """Yield applied operations block by block; same arguments as get_block_numbers."""
        for num in self.get_block_numbers(start, stop, irreversible):
            for operation in self.client.database.get_operations(num):
                yield operation


@dataclass
class Manabar:
    current_mana: float
    max_mana: float
    percentage: int


# Mana regenerates fully over five days.
MANA_REGENERATION_SECONDS = 5 * 24 * 60 * 60


def _amount(value: Any) -> float:
    """Numeric part of an asset string such as "12.000000 VESTS"."""
    if isinstance(value, str):
        return float(value.split(" ")[0])
    return float(value)


def _manabar(current: float, last_update_time: float, max_mana: float, now: float) -> Manabar:
    elapsed = now - last_update_time
    current_mana = min(current + elapsed * max_mana / MANA_REGENERATION_SECONDS, max_mana)
    percentage = round(current_mana * 10000 / max_mana) if max_mana > 0 else 0
    return Manabar(current_mana, max_mana, percentage)


def calculate_rc_mana(rc_account: Dict[str, Any], now: Optional[float] = None) -> Manabar:
    """Regenerated resource credit mana; percentage in basis points."""
    now = time.time() if now is None else now
    manabar = rc_account["rc_manabar"]
    return _manabar(
        float(manabar["current_mana"]),
        float(manabar["last_update_time"]),
        float(rc_account["max_rc"]),
        now,
    )


def calculate_vp_mana(account: Dict[str, Any], now: Optional[float] = None) -> Manabar:
    """Regenerated voting mana; percentage in basis points."""
    now = time.time() if now is None else now
    vests = (
        _amount(account["vesting_shares"])
        - _amount(account.get("delegated_vesting_shares", 0))
        + _amount(account.get("received_vesting_shares", 0))
    )
    # pending power down still counts against voting weight
    pending = (float(account.get("to_withdraw", 0)) - float(account.get("withdrawn", 0))) / 1e6
    vests -= min(_amount(account.get("vesting_withdraw_rate", 0)), pending)

    manabar = account["voting_manabar"]
    return _manabar(
        float(manabar["current_mana"]),
        float(manabar["last_update_time"]),
        vests * 1e6,
        now,
    )


class RCAPI:
    """Resource credit helpers (rc_api)."""

    def __init__(self, client):
        self.client = client

    def call(self, method: str, params: Any = None) -> Any:
        return self.client.call("rc_api", method, {} if params is None else params)

    def find_rc_accounts(self, usernames: Sequence[str]) -> List[Dict[str, Any]]:
        return self.call("find_rc_accounts", {"accounts": list(usernames)})["rc_accounts"]

    def get_resource_params(self) -> Dict[str, Any]:
        return self.call("get_resource_params")

    def get_resource_pool(self) -> Dict[str, Any]:
        return self.call("get_resource_pool")["resource_pool"]

    def get_rc_mana(self, username: str) -> Manabar:
        return calculate_rc_mana(self.find_rc_accounts([username])[0])

    def get_vp_mana(self, username: str) -> Manabar:
        return calculate_vp_mana(self.client.database.get_accounts([username])[0])
