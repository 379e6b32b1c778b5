import logging
from typing import Dict, Optional

from web3 import Web3


def to_hex(data) -> str:
    """Hex string with 0x prefix for bytes-like values returned by web3."""
    if data is None:
        return "0x"
    if isinstance(data, str):
        return data if data.startswith("0x") else "0x" + data
    return "0x" + bytes(data).hex()


class ChainReader:
    """
    Read-only JSON-RPC access used by the prober.

    Bytecode lookups are cached for the lifetime of the reader, which is one
    crawl run, so "is this a contract" checks from several discovery paths
    hit the node once per address.
    """

    def __init__(self, rpc_url: str, timeout: int = 30, w3: Optional[Web3] = None):
        self.w3 = w3 or Web3(Web3.HTTPProvider(rpc_url, request_kwargs={"timeout": timeout}))
        self._code_cache: Dict[str, str] = {}

    def get_bytecode(self, address: str) -> str:
        address = address.lower()
        if address in self._code_cache:
            return self._code_cache[address]
        code = to_hex(self.w3.eth.get_code(Web3.to_checksum_address(address)))
        self._code_cache[address] = code
        return code

    def read_storage_slot(self, address: str, slot: str) -> str:
        raw = self.w3.eth.get_storage_at(Web3.to_checksum_address(address), int(slot, 16))
        value = to_hex(raw)
        # Nonexistent accounts come back empty, normalize to a zero word
        if value == "0x":
            return "0x" + "0" * 64
        return value

    def is_contract(self, address: str) -> bool:
        try:
            code = self.get_bytecode(address)
        except Exception as e:
            logging.warning(f"[Prober] Could not fetch code for {address}: {e}")
            return False
        return code not in ("", "0x")

    def clear_cache(self):
        self._code_cache.clear()
