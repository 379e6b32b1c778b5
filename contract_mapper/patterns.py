"""
Heuristic scanners over contract source text.

Everything here is a pure function of its input text: the same scans run
while crawling (to discover addresses) and again while assembling the graph
(to attribute addresses to files), and must agree.

The type scanner is regex based and intentionally approximate. In
particular a `using L for T;` declaration is attached to every concrete or
abstract type in the same file, regardless of which block it appears in.
"""

import re
import logging
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Pattern

from .types import (
    ABSTRACT_CONTRACT,
    CONTRACT_IMPL,
    INTERFACE,
    LIBRARY,
    AnalyzedContract,
    AnalyzedSource,
    DetectedType,
)

ZERO_ADDRESS = "0x" + "0" * 40
SENTINEL_ADDRESSES = frozenset({
    ZERO_ADDRESS,
    "0x" + "f" * 40,
    "0x" + "e" * 40,  # native token placeholder
})

MAX_ADDRESSES_PER_FILE = 20
MAX_DECLARED_PER_FILE = 20

_ADDR = r"(0x[a-fA-F0-9]{40})\b"
_CAST = r"(?:address\s*\(\s*)?"


@dataclass(frozen=True)
class PatternMatcher:
    """A named regex whose capture group yields one candidate per match."""
    name: str
    regex: Pattern
    group: int = 1

    def find(self, text: str) -> Iterator[str]:
        for m in self.regex.finditer(text):
            yield m.group(self.group)


ADDRESS_MATCHER = PatternMatcher("address", re.compile(r"\b" + _ADDR))

DECLARED_IMPL_MATCHERS = (
    PatternMatcher(
        "impl_assignment",
        re.compile(r"\b\w*impl(?:ementation)?\w*[\"']?\s*[:=]\s*[\"']?" + _CAST + _ADDR, re.I),
    ),
    PatternMatcher(
        "impl_slot_mention",
        re.compile(r"IMPLEMENTATION[^\n]{0,80}?\b" + _ADDR),
    ),
    PatternMatcher(
        "upgrade_call",
        re.compile(r"\b(?:upgradeToAndCall|upgradeTo|_upgradeToAndCall|_upgradeTo|_setImplementation)"
                   r"\s*\(\s*" + _CAST + _ADDR),
    ),
    PatternMatcher(
        "beacon_assignment",
        re.compile(r"\b\w*beacon\w*[\"']?\s*[:=]\s*[\"']?" + _CAST + _ADDR, re.I),
    ),
)

TYPE_SHAPES = (
    (INTERFACE, False, re.compile(r"\binterface\s+(\w+)(?:\s+is\s+([^{]+))?\s*\{")),
    (ABSTRACT_CONTRACT, False, re.compile(r"\babstract\s+contract\s+(\w+)(?:\s+is\s+([^{]+))?\s*\{")),
    (LIBRARY, False, re.compile(r"\blibrary\s+(\w+)\s*\{")),
    (CONTRACT_IMPL, True, re.compile(r"\bcontract\s+(\w+)(?:\s+is\s+([^{]+))?\s*\{")),
)

USING_RE = re.compile(r"using\s+(\w+)\s+for\s+([^;]+);")
ABSTRACT_TAIL_RE = re.compile(r"\babstract\s+$")


def _collect(candidates: Iterable[str], exclude: set, limit: int, found: List[str]) -> bool:
    """Append new addresses to `found`. Returns True if a new address was dropped because of `limit`."""
    seen = set(found)
    for candidate in candidates:
        addr = candidate.lower()
        if addr in SENTINEL_ADDRESSES or addr in exclude or addr in seen:
            continue
        if len(found) >= limit:
            return True
        seen.add(addr)
        found.append(addr)
    return False


def _exclusions(exclude) -> set:
    if not exclude:
        return set()
    if isinstance(exclude, str):
        return {exclude.lower()}
    return {a.lower() for a in exclude}


def extract_hardcoded_addresses(text: str, exclude=None, limit: int = MAX_ADDRESSES_PER_FILE) -> List[str]:
    """Distinct lowercased address literals, sentinels and `exclude` removed, at most `limit`."""
    found: List[str] = []
    if _collect(ADDRESS_MATCHER.find(text), _exclusions(exclude), limit, found):
        logging.warning(f"[Patterns] Hit hardcoded address limit ({limit}), dropping the rest")
    return found


def extract_declared_implementations(text: str, exclude=None, limit: int = MAX_DECLARED_PER_FILE) -> List[str]:
    """Addresses appearing in proxy-metadata phrasing (impl/beacon assignments, upgrade calls)."""
    excluded = _exclusions(exclude)
    found: List[str] = []
    for matcher in DECLARED_IMPL_MATCHERS:
        if _collect(matcher.find(text), excluded, limit, found):
            logging.warning(f"[Patterns] Hit declared implementation limit ({limit}), dropping the rest")
            break
    return found


def _split_inheritance(clause: str) -> List[str]:
    """Split `A, B(x, y), C` on top-level commas and drop constructor arguments."""
    names, depth, current = [], 0, []
    for ch in clause:
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            names.append("".join(current))
            current = []
            continue
        current.append(ch)
    names.append("".join(current))
    return [n.split("(")[0].strip() for n in names if n.split("(")[0].strip()]


def _is_interface_name(name: str) -> bool:
    return len(name) > 1 and name[0] == "I" and name[1].isupper()


def parse_source_for_types(text: str, source_path: str = "") -> List[DetectedType]:
    types = []
    for kind, instanciable, regex in TYPE_SHAPES:
        for m in regex.finditer(text):
            # `abstract <whitespace> contract` already matched as ABSTRACT_CONTRACT
            if kind == CONTRACT_IMPL and ABSTRACT_TAIL_RE.search(text, max(0, m.start() - 256), m.start()):
                continue
            parents, interfaces = [], []
            clause = m.group(2) if regex.groups >= 2 else None
            for name in _split_inheritance(clause or ""):
                if _is_interface_name(name):
                    interfaces.append(name)
                else:
                    parents.append(name)
            types.append(DetectedType(
                name=m.group(1),
                kind=kind,
                instanciable=instanciable,
                parents=parents,
                interfaces=interfaces,
                source_path=source_path,
            ))

    for m in USING_RE.finditer(text):
        library = m.group(1)
        for t in types:
            if t.kind in (CONTRACT_IMPL, ABSTRACT_CONTRACT) and library not in t.libraries:
                t.libraries.append(library)
    return types


def analyze_source(contract: AnalyzedContract, root_address: Optional[str] = None,
                   max_addresses: int = MAX_ADDRESSES_PER_FILE,
                   max_declared: int = MAX_DECLARED_PER_FILE) -> AnalyzedSource:
    """
    Run the three scans over every file of a contract.

    Address lists are deduplicated across files, keeping first-seen order.
    """
    result = AnalyzedSource(address=contract.address, files=list(contract.source_files))
    own = {contract.address}
    is_root = root_address is not None and contract.address == root_address.lower()

    for f in contract.source_files:
        result.types.extend(parse_source_for_types(f.content, f.path))
        for addr in extract_hardcoded_addresses(f.content, own, max_addresses):
            if addr not in result.hardcoded_addresses:
                result.hardcoded_addresses.append(addr)
        for addr in extract_declared_implementations(f.content, own, max_declared):
            if addr not in result.declared_implementations:
                result.declared_implementations.append(addr)

    if is_root:
        # The type named like the verified contract wins, otherwise every concrete type
        concrete = [t for t in result.types if t.instanciable]
        named = [t for t in concrete if contract.name and t.name == contract.name]
        for t in named or concrete:
            t.is_root_contract_type = True

    logging.debug(
        f"[Patterns] {contract.address}: {len(result.types)} types, "
        f"{len(result.hardcoded_addresses)} addresses, "
        f"{len(result.declared_implementations)} declared implementations"
    )
    return result
