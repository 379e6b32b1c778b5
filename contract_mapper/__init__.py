"""contract-mapper - Discover and graph the on-chain neighborhood of a smart contract."""

from .config import Settings, load_config
from .crawler import Crawler
from .frontier import Frontier
from .graph import GraphAssembler, to_networkx, write_gexf
from .patterns import (
    analyze_source,
    extract_declared_implementations,
    extract_hardcoded_addresses,
    parse_source_for_types,
)
from .persistence import InMemoryRepository, JsonFileRepository, Repository
from .formatters import format_json, format_summary
from .types import (
    AnalyzedContract,
    AnalyzedSource,
    CrawlResult,
    DetectedType,
    GraphData,
    QueueItem,
    SourceFile,
)

__version__ = "1.0.0"
__all__ = [
    "Settings",
    "load_config",
    "Crawler",
    "Frontier",
    "GraphAssembler",
    "to_networkx",
    "write_gexf",
    "analyze_source",
    "extract_declared_implementations",
    "extract_hardcoded_addresses",
    "parse_source_for_types",
    "InMemoryRepository",
    "JsonFileRepository",
    "Repository",
    "format_json",
    "format_summary",
    "AnalyzedContract",
    "AnalyzedSource",
    "CrawlResult",
    "DetectedType",
    "GraphData",
    "QueueItem",
    "SourceFile",
]
