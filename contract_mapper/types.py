"""Type definitions for the contract mapper."""

from dataclasses import dataclass, field
from typing import Optional


# Discovery reasons
ROOT = "ROOT"
PROXY_IMPLEMENTATION = "PROXY_IMPLEMENTATION"
CREATOR_CONTRACT = "CREATOR_CONTRACT"
FACTORY_CREATED = "FACTORY_CREATED"
RUNTIME_CALLEE = "RUNTIME_CALLEE"
HARDCODED_ADDRESS = "HARDCODED_ADDRESS"
SOURCE_DECLARED_IMPL = "SOURCE_DECLARED_IMPL"

REASONS = (
    ROOT,
    PROXY_IMPLEMENTATION,
    CREATOR_CONTRACT,
    FACTORY_CREATED,
    RUNTIME_CALLEE,
    HARDCODED_ADDRESS,
    SOURCE_DECLARED_IMPL,
)

# On-chain kinds
EOA = "EOA"
CONTRACT_SIMPLE = "CONTRACT_SIMPLE"
PROXY = "PROXY"

# Source types
SOURCE_VERIFIED = "verified"
SOURCE_DECOMPILED = "decompiled"
SOURCE_NONE = "none"

# Which stage of the fallback chain produced the source result
RESOLUTION_VERIFIED = "verified"
RESOLUTION_IMPLEMENTATION = "implementation_verified"
RESOLUTION_ABI_ONLY = "abi_only"
RESOLUTION_DECOMPILED = "decompiled"
RESOLUTION_DECOMPILED_UNUSABLE = "decompiled_unusable"
RESOLUTION_NONE = "none"

# Type definition kinds
INTERFACE = "INTERFACE"
ABSTRACT_CONTRACT = "ABSTRACT_CONTRACT"
CONTRACT_IMPL = "CONTRACT_IMPL"
LIBRARY = "LIBRARY"

# Edge kinds
IS_PROXY_OF = "IS_PROXY_OF"
SOURCE_DECLARED_IMPL_EDGE = "SOURCE_DECLARED_IMPL"
CREATED_BY = "CREATED_BY"
CREATED = "CREATED"
HAS_SOURCE_FILE = "HAS_SOURCE_FILE"
DECLARES_TYPE = "DECLARES_TYPE"
DEFINED_BY = "DEFINED_BY"
EXTENDS_CONTRACT = "EXTENDS_CONTRACT"
IMPLEMENTS_INTERFACE = "IMPLEMENTS_INTERFACE"
USES_LIBRARY = "USES_LIBRARY"
REFERENCES_ADDRESS = "REFERENCES_ADDRESS"
CALLS_RUNTIME = "CALLS_RUNTIME"

# Graph node kinds
NODE_CONTRACT = "contract"
NODE_SOURCE_FILE = "sourceFile"
NODE_TYPE_DEF = "typeDef"
NODE_ADDRESS = "address"


@dataclass(frozen=True)
class QueueItem:
    """An address waiting to be explored, with the reason it was discovered."""
    address: str
    reason: str
    source_address: Optional[str] = None


@dataclass
class SourceFile:
    """One file of a contract's source bundle."""
    path: str
    content: str
    source_type: str = SOURCE_VERIFIED


@dataclass
class AnalyzedContract:
    """Everything learned about one visited address during a run."""
    address: str
    kind_on_chain: str
    verified: bool = False
    source_type: str = SOURCE_NONE
    resolution: str = RESOLUTION_NONE
    name: Optional[str] = None
    abi: Optional[list] = None
    abi_raw: Optional[str] = None
    bytecode: Optional[str] = None
    source_files: list[SourceFile] = field(default_factory=list)
    creator_address: Optional[str] = None
    creation_tx_hash: Optional[str] = None
    implementation_address: Optional[str] = None
    admin_address: Optional[str] = None
    beacon_address: Optional[str] = None
    discovered_implementations: list[str] = field(default_factory=list)
    created_contracts: list[str] = field(default_factory=list)
    runtime_callees: list[str] = field(default_factory=list)
    tags: dict = field(default_factory=dict)
    # Explorer metadata
    compiler_version: Optional[str] = None
    optimization_used: Optional[str] = None
    runs: Optional[str] = None
    evm_version: Optional[str] = None
    library: Optional[str] = None
    license_type: Optional[str] = None
    constructor_arguments: Optional[str] = None
    swarm_source: Optional[str] = None
    decompile_error: Optional[str] = None
    # Provenance
    recursion_reason: Optional[str] = None
    recursion_source: Optional[str] = None


@dataclass
class DetectedType:
    """A type definition found in one source file."""
    name: str
    kind: str
    instanciable: bool
    is_root_contract_type: bool = False
    parents: list[str] = field(default_factory=list)
    interfaces: list[str] = field(default_factory=list)
    libraries: list[str] = field(default_factory=list)
    source_path: str = ""


@dataclass
class AnalyzedSource:
    """Pattern-extraction results derived from a contract's source files."""
    address: str
    files: list[SourceFile] = field(default_factory=list)
    types: list[DetectedType] = field(default_factory=list)
    hardcoded_addresses: list[str] = field(default_factory=list)
    declared_implementations: list[str] = field(default_factory=list)


@dataclass
class VerifiedSource:
    """Explorer reply for a verified-source lookup."""
    has_source: bool
    raw_payload: str = ""
    contract_name: str = ""
    abi_raw: Optional[str] = None
    compiler_version: Optional[str] = None
    optimization_used: Optional[str] = None
    runs: Optional[str] = None
    evm_version: Optional[str] = None
    library: Optional[str] = None
    license_type: Optional[str] = None
    constructor_arguments: Optional[str] = None
    proxy_flag: Optional[str] = None
    implementation_address: Optional[str] = None
    swarm_source: Optional[str] = None


@dataclass
class AbiResult:
    """Explorer reply for an ABI-only lookup."""
    has_abi: bool
    abi_raw: Optional[str] = None


@dataclass
class CreationInfo:
    """Deployer and creation transaction of a contract."""
    creator_address: str
    creation_tx_hash: Optional[str] = None


@dataclass
class InternalTransaction:
    """One internal transaction (trace entry) reported by the explorer."""
    from_address: str
    to_address: Optional[str]
    type: str = "call"
    contract_address: Optional[str] = None
    hash: Optional[str] = None


@dataclass
class DecompileResult:
    """Outcome of a decompilation attempt."""
    success: bool
    decompiled_text: str = ""
    method: str = "none"  # "bytecode", "address" or "none"
    no_source_flag: bool = False
    error: Optional[str] = None


@dataclass
class GraphNode:
    id: str
    kind: str
    data: dict = field(default_factory=dict)


@dataclass
class GraphEdge:
    id: str
    from_id: str
    to_id: str
    kind: str
    evidence: dict = field(default_factory=dict)


@dataclass
class GraphStats:
    total_contracts: int = 0
    total_proxies: int = 0
    total_source_files: int = 0
    total_type_defs: int = 0
    verified_contracts: int = 0
    decompiled_contracts: int = 0
    skipped_edges: int = 0


@dataclass
class GraphData:
    nodes: list[GraphNode] = field(default_factory=list)
    edges: list[GraphEdge] = field(default_factory=list)
    stats: GraphStats = field(default_factory=GraphStats)


@dataclass
class CrawlResult:
    """Result of one crawl: accumulated records, the assembled graph and coverage counts."""
    analysis_id: str
    root_address: str
    contracts: dict[str, AnalyzedContract]
    sources: dict[str, AnalyzedSource]
    graph: GraphData
    visited_count: int
    queue_remaining: int
    capped: bool
    timestamp: str
    dropped_count: int = 0
