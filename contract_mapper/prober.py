import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional

from .types import CONTRACT_SIMPLE, EOA, PROXY, AnalyzedContract

EIP1967_SLOTS = {
    "implementation": "0x360894a13ba1a3210667c828492db98dca3e2076cc3735a920a3ca505d382bbc",
    "admin": "0xb53127684a568b3173ae13b9f8a6016e243e63b6e8ee1178d6a717850b5d6103",
    "beacon": "0xa3f0ad74e5423aebfd80d3ef4346578335a9a72aeaee59ff6cb3582b35133d50",
}

MINIMAL_PROXY_PREFIX = "363d3d373d3d3d363d73"
MINIMAL_PROXY_SUFFIX = "5af43d82803e903d91602b57fd5bf3"
MINIMAL_PROXY_LENGTH = len(MINIMAL_PROXY_PREFIX) + 40 + len(MINIMAL_PROXY_SUFFIX)

CREATE_TYPES = ("create", "create2")


def slot_to_address(word: str) -> Optional[str]:
    """
    Address stored in a 32-byte storage word, or None.

    The word must be left-padded with zeros (12 bytes) to count as an
    address; a zero address also yields None.
    """
    clean = (word or "").lower()
    if clean.startswith("0x"):
        clean = clean[2:]
    clean = clean.rjust(64, "0")
    if len(clean) != 64 or clean[:24] != "0" * 24:
        return None
    addr = clean[24:]
    if addr == "0" * 40:
        return None
    return "0x" + addr


def detect_minimal_proxy(bytecode: str) -> Optional[str]:
    """Implementation address embedded in EIP-1167 runtime code, or None."""
    clean = (bytecode or "").lower()
    if clean.startswith("0x"):
        clean = clean[2:]
    if (len(clean) == MINIMAL_PROXY_LENGTH
            and clean.startswith(MINIMAL_PROXY_PREFIX)
            and clean.endswith(MINIMAL_PROXY_SUFFIX)):
        start = len(MINIMAL_PROXY_PREFIX)
        return "0x" + clean[start:start + 40]
    return None


def detect_eip1967_proxy(chain, address: str) -> Dict[str, Optional[str]]:
    found = {name: slot_to_address(chain.read_storage_slot(address, slot))
             for name, slot in EIP1967_SLOTS.items()}
    found["is_proxy"] = bool(found["implementation"] or found["beacon"])
    return found


class Prober:
    """Classifies one address on chain and collects its creation and trace links."""

    def __init__(self, chain, explorer, internal_tx_page_size: int = 50):
        self.chain = chain
        self.explorer = explorer
        self.internal_tx_page_size = internal_tx_page_size

    def _detect_proxy(self, contract: AnalyzedContract):
        with ThreadPoolExecutor(max_workers=2) as pool:
            eip1967_future = pool.submit(detect_eip1967_proxy, self.chain, contract.address)
            minimal_future = pool.submit(detect_minimal_proxy, contract.bytecode)
            minimal_impl = minimal_future.result()
            try:
                eip1967 = eip1967_future.result()
            except Exception as e:
                logging.warning(f"[Prober] EIP-1967 slot read failed for {contract.address}: {e}")
                eip1967 = {"is_proxy": False}

        if eip1967["is_proxy"]:
            contract.kind_on_chain = PROXY
            contract.implementation_address = eip1967.get("implementation")
            contract.admin_address = eip1967.get("admin")
            contract.beacon_address = eip1967.get("beacon")
            contract.tags["hasEip1967ImplSlot"] = True
            if contract.implementation_address:
                contract.tags["implementationAddress"] = contract.implementation_address
            if contract.admin_address:
                contract.tags["proxyAdmin"] = contract.admin_address
            if contract.beacon_address:
                contract.tags["proxyBeacon"] = contract.beacon_address
            logging.info(f"[Prober] EIP-1967 proxy {contract.address} -> {contract.implementation_address or contract.beacon_address}")
        elif minimal_impl:
            contract.kind_on_chain = PROXY
            contract.implementation_address = minimal_impl
            contract.tags["isMinimalProxy"] = True
            contract.tags["implementationAddress"] = minimal_impl
            logging.info(f"[Prober] EIP-1167 minimal proxy {contract.address} -> {minimal_impl}")

    def _lookup_creator(self, contract: AnalyzedContract):
        try:
            info = self.explorer.get_creator(contract.address)
        except Exception as e:
            logging.warning(f"[Prober] Creator lookup failed for {contract.address}: {e}")
            return
        if not info:
            return
        contract.creator_address = info.creator_address
        contract.creation_tx_hash = info.creation_tx_hash
        if info.creator_address != contract.address and self.chain.is_contract(info.creator_address):
            contract.tags["creatorIsContract"] = True
            logging.info(f"[Prober] {contract.address} was deployed by contract {info.creator_address}")

    def _collect_internal(self, contract: AnalyzedContract):
        try:
            txs = self.explorer.get_internal_transactions(contract.address, 1, self.internal_tx_page_size)
        except Exception as e:
            logging.warning(f"[Prober] Internal transactions unavailable for {contract.address}: {e}")
            return

        for tx in txs:
            if tx.from_address != contract.address:
                continue
            if tx.type in CREATE_TYPES:
                created = tx.contract_address or tx.to_address
                if (created and created != contract.address
                        and created not in contract.created_contracts
                        and self.chain.is_contract(created)):
                    contract.created_contracts.append(created)
            elif tx.to_address and tx.to_address != contract.address:
                if tx.to_address not in contract.runtime_callees:
                    contract.runtime_callees.append(tx.to_address)

        if contract.created_contracts:
            contract.tags["isFactory"] = True
        logging.debug(
            f"[Prober] {contract.address}: {len(contract.created_contracts)} created, "
            f"{len(contract.runtime_callees)} callees"
        )

    def probe(self, address: str) -> AnalyzedContract:
        """
        Build the on-chain part of a contract record.

        A failure fetching bytecode propagates; every later lookup degrades
        to an empty result.
        """
        address = address.lower()
        bytecode = self.chain.get_bytecode(address)

        if not bytecode or bytecode == "0x":
            logging.info(f"[Prober] {address} is an EOA")
            return AnalyzedContract(address=address, kind_on_chain=EOA)

        contract = AnalyzedContract(address=address, kind_on_chain=CONTRACT_SIMPLE, bytecode=bytecode)
        self._detect_proxy(contract)
        self._lookup_creator(contract)
        self._collect_internal(contract)
        return contract
