"""Output formatters for crawl results."""

import json
from collections import Counter

from .types import CrawlResult, PROXY


def _to_dict(obj):
    if hasattr(obj, "__dataclass_fields__"):
        return {k: _to_dict(v) for k, v in obj.__dict__.items()}
    elif isinstance(obj, dict):
        return {k: _to_dict(v) for k, v in obj.items()}
    elif isinstance(obj, list):
        return [_to_dict(item) for item in obj]
    else:
        return obj


def format_json(result: CrawlResult, pretty: bool = True, include_code: bool = False) -> str:
    """Format as JSON. Bytecode and file contents are left out unless include_code is set."""
    data = _to_dict(result)
    if not include_code:
        for contract in data["contracts"].values():
            contract["bytecode"] = None
            for f in contract["source_files"]:
                f["content"] = None
        for source in data["sources"].values():
            for f in source["files"]:
                f["content"] = None
    if pretty:
        return json.dumps(data, indent=2)
    return json.dumps(data)


def format_summary(result: CrawlResult) -> str:
    """Format a crawl as a human-readable summary."""
    lines = []
    divider = "─" * 70
    stats = result.graph.stats

    lines.append(divider)
    lines.append(f"ANALYSIS: {result.root_address}")
    lines.append(divider)
    lines.append(f"  Analysis ID:        {result.analysis_id}")
    lines.append(f"  Visited:            {result.visited_count}")
    lines.append(f"  Recorded:           {len(result.contracts)}")
    lines.append(f"  Contracts:          {stats.total_contracts}")
    lines.append(f"  Proxies:            {stats.total_proxies}")
    lines.append(f"  Verified:           {stats.verified_contracts}")
    lines.append(f"  Decompiled:         {stats.decompiled_contracts}")
    lines.append(f"  Source files:       {stats.total_source_files}")
    lines.append(f"  Type definitions:   {stats.total_type_defs}")
    lines.append(f"  Nodes / edges:      {len(result.graph.nodes)} / {len(result.graph.edges)}")
    if result.capped:
        lines.append(f"  ⚠️  Coverage partial: cap reached, {result.dropped_count} addresses not explored")

    lines.append("")
    lines.append("Contracts:")
    for contract in result.contracts.values():
        name = contract.name or "-"
        marker = " (root)" if contract.address == result.root_address else ""
        lines.append(f"  {contract.address}  {contract.kind_on_chain:<16} {contract.source_type:<10} {name}{marker}")
        if contract.kind_on_chain == PROXY and contract.implementation_address:
            lines.append(f"    → implementation {contract.implementation_address}")
        if contract.recursion_reason and contract.recursion_source:
            lines.append(f"    found via {contract.recursion_reason} from {contract.recursion_source}")
        if contract.decompile_error:
            lines.append(f"    no source: {contract.decompile_error}")

    edge_counts = Counter(edge.kind for edge in result.graph.edges)
    if edge_counts:
        lines.append("")
        lines.append("Edges:")
        for kind, count in sorted(edge_counts.items()):
            lines.append(f"  {kind.ljust(22)}{count}")

    lines.append("")
    lines.append(f"Timestamp: {result.timestamp}")
    lines.append(divider)
    return "\n".join(lines)
