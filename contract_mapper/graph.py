import hashlib
import logging
from typing import Dict, Optional

import networkx as nx

from .patterns import (
    MAX_ADDRESSES_PER_FILE,
    MAX_DECLARED_PER_FILE,
    extract_declared_implementations,
    extract_hardcoded_addresses,
)
from .prober import EIP1967_SLOTS
from .types import (
    CALLS_RUNTIME,
    CREATED,
    CREATED_BY,
    DECLARES_TYPE,
    DEFINED_BY,
    EXTENDS_CONTRACT,
    HAS_SOURCE_FILE,
    IMPLEMENTS_INTERFACE,
    IS_PROXY_OF,
    NODE_ADDRESS,
    NODE_CONTRACT,
    NODE_SOURCE_FILE,
    NODE_TYPE_DEF,
    PROXY,
    REFERENCES_ADDRESS,
    SOURCE_DECLARED_IMPL_EDGE,
    SOURCE_DECOMPILED,
    USES_LIBRARY,
    AnalyzedContract,
    AnalyzedSource,
    GraphData,
    GraphEdge,
    GraphNode,
    GraphStats,
)


def contract_node_id(address: str) -> str:
    return f"contract:{address}"


def source_node_id(address: str, path: str) -> str:
    return f"source:{address}:{path}"


def typedef_node_id(address: str, name: str) -> str:
    return f"typedef:{address}:{name}"


def address_node_id(address: str) -> str:
    return f"address:{address}"


def edge_id(from_id: str, kind: str, to_id: str) -> str:
    return hashlib.md5(f"{from_id}|{kind}|{to_id}".encode()).hexdigest()


def _merge_evidence(target: dict, extra: dict):
    for key, value in extra.items():
        if value is None:
            continue
        if isinstance(value, list):
            merged = target.setdefault(key, [])
            merged.extend(v for v in value if v not in merged)
        elif target.get(key) is None:
            target[key] = value


class GraphAssembler:
    """
    Builds nodes and edges from the records accumulated during a crawl.

    Assembly is a pure function of its inputs: contract-vs-address rendering
    is decided from the final set of visited addresses, duplicate edges are
    merged, and any edge whose endpoint is not a node is dropped.
    """

    def __init__(self, max_addresses_per_file: int = MAX_ADDRESSES_PER_FILE,
                 max_declared_per_file: int = MAX_DECLARED_PER_FILE):
        self.max_addresses_per_file = max_addresses_per_file
        self.max_declared_per_file = max_declared_per_file

    def assemble(self, contracts: Dict[str, AnalyzedContract],
                 sources: Dict[str, AnalyzedSource]) -> GraphData:
        self._nodes: Dict[str, GraphNode] = {}
        self._edges: Dict[tuple, GraphEdge] = {}
        self._visited = set(contracts)
        stats = GraphStats()

        for contract in contracts.values():
            self._add_contract_node(contract, stats)

        for contract in contracts.values():
            self._add_chain_edges(contract)
            source = sources.get(contract.address)
            if source is not None:
                self._add_source(contract, source, stats)

        node_ids = set(self._nodes)
        edges = []
        for edge in self._edges.values():
            if edge.from_id in node_ids and edge.to_id in node_ids:
                edges.append(edge)
            else:
                stats.skipped_edges += 1
                logging.debug(f"[Graph] Dropping {edge.kind} edge {edge.from_id} -> {edge.to_id}")

        logging.info(
            f"[Graph] {len(self._nodes)} nodes, {len(edges)} edges "
            f"({stats.total_contracts} contracts, {stats.total_proxies} proxies, "
            f"{stats.total_source_files} files, {stats.total_type_defs} types, "
            f"{stats.skipped_edges} skipped)"
        )
        return GraphData(nodes=list(self._nodes.values()), edges=edges, stats=stats)

    def _add_node(self, node_id: str, kind: str, data: dict) -> bool:
        if node_id in self._nodes:
            return False
        self._nodes[node_id] = GraphNode(id=node_id, kind=kind, data=data)
        return True

    def _add_edge(self, from_id: str, to_id: str, kind: str, evidence: Optional[dict] = None):
        key = (from_id, to_id, kind)
        evidence = {k: v for k, v in (evidence or {}).items() if v is not None}
        existing = self._edges.get(key)
        if existing is not None:
            _merge_evidence(existing.evidence, evidence)
            return
        self._edges[key] = GraphEdge(
            id=edge_id(from_id, kind, to_id),
            from_id=from_id,
            to_id=to_id,
            kind=kind,
            evidence=evidence,
        )

    def _ref(self, address: str) -> str:
        """Node id for a referenced address, creating a bare address node when it was never visited."""
        address = address.lower()
        if address in self._visited:
            return contract_node_id(address)
        node_id = address_node_id(address)
        self._add_node(node_id, NODE_ADDRESS, {"address": address})
        return node_id

    def _add_contract_node(self, contract: AnalyzedContract, stats: GraphStats):
        self._add_node(contract_node_id(contract.address), NODE_CONTRACT, {
            "address": contract.address,
            "name": contract.name,
            "kindOnChain": contract.kind_on_chain,
            "verified": contract.verified,
            "sourceType": contract.source_type,
            "resolution": contract.resolution,
            "creatorAddress": contract.creator_address,
            "implementationAddress": contract.implementation_address,
            "recursionReason": contract.recursion_reason,
            "recursionSource": contract.recursion_source,
            "tags": dict(contract.tags),
        })
        stats.total_contracts += 1
        if contract.kind_on_chain == PROXY:
            stats.total_proxies += 1
        if contract.verified:
            stats.verified_contracts += 1
        elif contract.source_type == SOURCE_DECOMPILED:
            stats.decompiled_contracts += 1

    def _add_chain_edges(self, contract: AnalyzedContract):
        me = contract_node_id(contract.address)

        if contract.implementation_address:
            self._add_edge(me, self._ref(contract.implementation_address), IS_PROXY_OF, {
                "implementationSlot": EIP1967_SLOTS["implementation"] if contract.tags.get("hasEip1967ImplSlot") else None,
                "isMinimalProxy": contract.tags.get("isMinimalProxy"),
                "proxyFlag": contract.tags.get("proxyFlag"),
            })

        if contract.creator_address:
            creator = self._ref(contract.creator_address)
            self._add_edge(me, creator, CREATED_BY, {"txHash": contract.creation_tx_hash})
            if contract.creator_address in self._visited:
                self._add_edge(creator, me, CREATED, {"txHash": contract.creation_tx_hash})

        for created in contract.created_contracts:
            self._add_edge(me, self._ref(created), CREATED)

        for callee in contract.runtime_callees:
            self._add_edge(me, self._ref(callee), CALLS_RUNTIME)

    def _add_source(self, contract: AnalyzedContract, source: AnalyzedSource, stats: GraphStats):
        me = contract_node_id(contract.address)
        addr = contract.address

        for f in source.files:
            sid = source_node_id(addr, f.path)
            if self._add_node(sid, NODE_SOURCE_FILE, {
                "address": addr,
                "path": f.path,
                "sourceType": f.source_type,
                "size": len(f.content),
            }):
                stats.total_source_files += 1
            self._add_edge(me, sid, HAS_SOURCE_FILE)

            # Rerun the per-file scans so evidence names the file
            for found in extract_hardcoded_addresses(f.content, addr, self.max_addresses_per_file):
                self._add_edge(me, self._ref(found), REFERENCES_ADDRESS, {"foundInFiles": [f.path]})
            for found in extract_declared_implementations(f.content, addr, self.max_declared_per_file):
                self._add_edge(me, self._ref(found), SOURCE_DECLARED_IMPL_EDGE, {"foundInFiles": [f.path]})

        for t in source.types:
            tid = typedef_node_id(addr, t.name)
            if self._add_node(tid, NODE_TYPE_DEF, {
                "address": addr,
                "name": t.name,
                "kind": t.kind,
                "instanciable": t.instanciable,
                "isRootContractType": t.is_root_contract_type,
                "sourcePath": t.source_path,
                "parents": list(t.parents),
                "interfaces": list(t.interfaces),
                "libraries": list(t.libraries),
            }):
                stats.total_type_defs += 1

            self._add_edge(source_node_id(addr, t.source_path), tid, DECLARES_TYPE)
            if t.is_root_contract_type:
                self._add_edge(me, tid, DEFINED_BY)
            for parent in t.parents:
                self._add_edge(tid, typedef_node_id(addr, parent), EXTENDS_CONTRACT)
            for iface in t.interfaces:
                self._add_edge(tid, typedef_node_id(addr, iface), IMPLEMENTS_INTERFACE)
            for lib in t.libraries:
                self._add_edge(tid, typedef_node_id(addr, lib), USES_LIBRARY)


def to_networkx(graph: GraphData) -> nx.MultiDiGraph:
    g = nx.MultiDiGraph()
    for node in graph.nodes:
        g.add_node(node.id, **{**node.data, "nodeKind": node.kind})
    for edge in graph.edges:
        g.add_edge(edge.from_id, edge.to_id, key=edge.id, kind=edge.kind, **edge.evidence)
    return g


def _flatten(attrs: dict):
    for key, value in list(attrs.items()):
        if isinstance(value, (list, dict, set)):
            attrs[key] = str(value)
        elif value is None:
            attrs[key] = ""


def write_gexf(graph: GraphData, path: str):
    """GEXF only holds scalar attributes, so containers are stringified and None blanked."""
    g = to_networkx(graph)
    for node in g.nodes():
        g.nodes[node]["label"] = g.nodes[node].get("name") or node
        _flatten(g.nodes[node])
    for _, _, attrs in g.edges(data=True):
        _flatten(attrs)
    nx.write_gexf(g, path)
    logging.info(f"[Graph] Wrote {path}")
