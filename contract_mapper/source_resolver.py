import json
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Union

from .types import (
    PROXY,
    RESOLUTION_ABI_ONLY,
    RESOLUTION_DECOMPILED,
    RESOLUTION_DECOMPILED_UNUSABLE,
    RESOLUTION_IMPLEMENTATION,
    RESOLUTION_NONE,
    RESOLUTION_VERIFIED,
    SOURCE_DECOMPILED,
    SOURCE_NONE,
    SOURCE_VERIFIED,
    AnalyzedContract,
    SourceFile,
    VerifiedSource,
)

DECOMPILED_PATH = "Decompiled.sol"


# Shapes an explorer SourceCode field can take

@dataclass
class RawSingleFile:
    name: str
    content: str


@dataclass
class StandardJsonInput:
    sources: Dict[str, Union[dict, str]]


@dataclass
class FlatFileMap:
    files: Dict[str, Union[dict, str]]


SourcePayload = Union[RawSingleFile, StandardJsonInput, FlatFileMap]


def classify_payload(raw: str, contract_name: Optional[str] = None) -> SourcePayload:
    """
    Decide which shape a SourceCode payload has.

    Etherscan wraps standard JSON input in a second pair of braces; that
    wrapper is stripped before parsing. Anything that does not parse into an
    object is treated as one plain source file.
    """
    fallback = RawSingleFile(name=f"{contract_name or 'Contract'}.sol", content=raw)
    text = raw.strip()
    if not text.startswith("{"):
        return fallback

    if text.startswith("{{") and text.endswith("}}"):
        text = text[1:-1]
    try:
        parsed = json.loads(text)
    except ValueError:
        return fallback
    if not isinstance(parsed, dict):
        return fallback

    if isinstance(parsed.get("sources"), dict):
        return StandardJsonInput(sources=parsed["sources"])
    return FlatFileMap(files=parsed)


def _entry_content(entry) -> Optional[str]:
    if isinstance(entry, str):
        return entry
    if isinstance(entry, dict) and isinstance(entry.get("content"), str):
        return entry["content"]
    return None


def normalize_source_files(raw: str, contract_name: Optional[str] = None,
                           source_type: str = SOURCE_VERIFIED) -> List[SourceFile]:
    payload = classify_payload(raw, contract_name)

    if isinstance(payload, RawSingleFile):
        return [SourceFile(payload.name, payload.content, source_type)]

    entries = payload.sources if isinstance(payload, StandardJsonInput) else payload.files
    files = []
    for path, entry in entries.items():
        content = _entry_content(entry)
        if content:
            files.append(SourceFile(path, content, source_type))

    if not files:
        logging.warning(f"[Resolver] Source payload for {contract_name} had no usable files, keeping it raw")
        return [SourceFile(f"{contract_name or 'Contract'}.sol", raw, source_type)]
    return files


def parse_abi(abi_raw: Optional[str]) -> Optional[list]:
    if not abi_raw:
        return None
    try:
        abi = json.loads(abi_raw)
    except ValueError as e:
        logging.warning(f"[Resolver] Failed to parse ABI: {e}")
        return None
    return abi if isinstance(abi, list) else None


class SourceResolver:
    """
    Fills in source, ABI and compiler metadata for a contract record.

    Stages run in order and stop at the first one that produces a result:
    verified source, the implementation's verified source (proxies only),
    ABI-only, decompilation.
    """

    def __init__(self, explorer, decompiler):
        self.explorer = explorer
        self.decompiler = decompiler

    def _lookup(self, address: str) -> Optional[VerifiedSource]:
        try:
            return self.explorer.get_verified_source(address)
        except Exception as e:
            logging.warning(f"[Resolver] Source lookup failed for {address}: {e}")
            return None

    def _apply_verified(self, contract: AnalyzedContract, info: VerifiedSource, resolution: str):
        contract.verified = True
        contract.source_type = SOURCE_VERIFIED
        contract.resolution = resolution
        contract.name = info.contract_name or contract.name
        contract.abi_raw = info.abi_raw
        contract.abi = parse_abi(info.abi_raw)
        contract.source_files = normalize_source_files(info.raw_payload, info.contract_name, SOURCE_VERIFIED)
        contract.compiler_version = info.compiler_version
        contract.optimization_used = info.optimization_used
        contract.runs = info.runs
        contract.evm_version = info.evm_version
        contract.tags["compilerVersion"] = info.compiler_version
        contract.tags["optimizationUsed"] = info.optimization_used
        contract.tags["runs"] = info.runs
        contract.tags["evmVersion"] = info.evm_version

    def _apply_proxy_hint(self, contract: AnalyzedContract, info: VerifiedSource):
        if info.proxy_flag != "1" or not info.implementation_address:
            return
        if info.implementation_address == contract.address:
            return
        contract.tags["proxyFlag"] = "1"
        if contract.kind_on_chain != PROXY:
            logging.info(f"[Resolver] Explorer marks {contract.address} as proxy of {info.implementation_address}")
            contract.kind_on_chain = PROXY
        if not contract.implementation_address:
            contract.implementation_address = info.implementation_address
            contract.tags["implementationAddress"] = info.implementation_address

    def resolve(self, contract: AnalyzedContract) -> AnalyzedContract:
        address = contract.address

        info = self._lookup(address)
        if info is not None:
            self._apply_proxy_hint(contract, info)
            if info.has_source:
                self._apply_verified(contract, info, RESOLUTION_VERIFIED)
                contract.library = info.library
                contract.license_type = info.license_type
                contract.constructor_arguments = info.constructor_arguments
                contract.swarm_source = info.swarm_source
                contract.tags["swarmSource"] = info.swarm_source
                logging.info(f"[Resolver] Verified source for {address}: {contract.name} ({len(contract.source_files)} files)")
                return contract

        if contract.kind_on_chain == PROXY and contract.implementation_address:
            impl = contract.implementation_address
            impl_info = self._lookup(impl)
            if impl_info is not None and impl_info.has_source:
                self._apply_verified(contract, impl_info, RESOLUTION_IMPLEMENTATION)
                logging.info(f"[Resolver] Using implementation {impl} source for proxy {address}: {contract.name}")
                return contract
            logging.info(f"[Resolver] Implementation {impl} of {address} is not verified either")

        try:
            abi_result = self.explorer.get_abi_only(address)
        except Exception as e:
            logging.warning(f"[Resolver] ABI lookup failed for {address}: {e}")
            abi_result = None
        if abi_result is not None and abi_result.has_abi:
            abi = parse_abi(abi_result.abi_raw)
            if abi is not None:
                contract.abi = abi
                contract.abi_raw = abi_result.abi_raw
                contract.source_type = SOURCE_NONE
                contract.resolution = RESOLUTION_ABI_ONLY
                logging.info(f"[Resolver] ABI-only for {address} ({len(abi)} items)")
                return contract

        if not contract.bytecode or contract.bytecode == "0x":
            contract.source_type = SOURCE_NONE
            contract.resolution = RESOLUTION_NONE
            contract.decompile_error = "No bytecode available"
            contract.tags["decompileError"] = contract.decompile_error
            return contract

        try:
            result = self.decompiler.decompile(address, contract.bytecode)
        except Exception as e:
            logging.error(f"[Resolver] Decompiler raised for {address}: {e}")
            result = None

        if result is not None and result.success:
            contract.verified = False
            contract.source_type = SOURCE_DECOMPILED
            contract.source_files = [SourceFile(DECOMPILED_PATH, result.decompiled_text, SOURCE_DECOMPILED)]
            contract.tags["decompileMethod"] = result.method
            if result.no_source_flag:
                contract.tags["noSource"] = True
                contract.resolution = RESOLUTION_DECOMPILED_UNUSABLE
                logging.warning(f"[Resolver] Decompiled output for {address} is unusable, keeping it for context")
            else:
                contract.resolution = RESOLUTION_DECOMPILED
                logging.info(f"[Resolver] Decompiled {address} via {result.method}")
            return contract

        error = result.error if result is not None else "Decompiler raised an exception"
        contract.source_type = SOURCE_NONE
        contract.resolution = RESOLUTION_NONE
        contract.source_files = []
        contract.decompile_error = error or "Decompilation failed"
        contract.tags["decompileError"] = contract.decompile_error
        logging.warning(f"[Resolver] No source for {address}: {contract.decompile_error}")
        return contract
