import uuid
import logging
import datetime
from typing import Callable, Dict, List, Optional

from web3 import Web3

from .chain import ChainReader
from .config import Settings
from .decompiler import get_decompiler
from .explorer import ExplorerClient
from .frontier import Frontier
from .graph import GraphAssembler
from .patterns import analyze_source
from .persistence import InMemoryRepository, Repository
from .prober import Prober
from .source_resolver import SourceResolver
from .types import (
    CREATOR_CONTRACT,
    EOA,
    FACTORY_CREATED,
    HARDCODED_ADDRESS,
    PROXY_IMPLEMENTATION,
    ROOT,
    RUNTIME_CALLEE,
    SOURCE_DECLARED_IMPL,
    AnalyzedContract,
    AnalyzedSource,
    CrawlResult,
    QueueItem,
)

ProgressCallback = Callable[[int, str], None]


class Crawler:
    """
    Bounded breadth-first exploration around one root address.

    One queue item is fully processed (probe, resolve, extract, enqueue,
    persist) before the next is taken. A failure on one address is logged
    and the run moves on.
    """

    def __init__(self, chain, explorer, decompiler, repository: Optional[Repository] = None,
                 settings: Optional[Settings] = None):
        self.settings = settings or Settings()
        self.chain = chain
        self.explorer = explorer
        self.repository = repository or InMemoryRepository()
        self.prober = Prober(chain, explorer, self.settings.internal_tx_page_size)
        self.resolver = SourceResolver(explorer, decompiler)
        self.assembler = GraphAssembler(self.settings.max_hardcoded_per_file,
                                        self.settings.max_declared_per_file)

    @classmethod
    def from_settings(cls, settings: Settings, repository: Optional[Repository] = None) -> "Crawler":
        chain = ChainReader(settings.rpc_url, timeout=settings.request_timeout)
        explorer = ExplorerClient(
            settings.explorer_url,
            settings.explorer_api_key,
            chain_id=settings.chain_id if settings.send_chain_id else None,
            min_delay=settings.explorer_min_delay,
            timeout=settings.request_timeout,
        )
        decompiler = get_decompiler(settings.decompiler, settings.rpc_url, settings.decompile_timeout)
        return cls(chain, explorer, decompiler, repository, settings)

    def _discoveries(self, contract: AnalyzedContract, source: AnalyzedSource,
                     frontier: Frontier) -> List[QueueItem]:
        me = contract.address
        found = []

        for addr in (contract.implementation_address, contract.beacon_address):
            if addr:
                found.append(QueueItem(addr, PROXY_IMPLEMENTATION, me))
        if contract.creator_address and contract.tags.get("creatorIsContract"):
            found.append(QueueItem(contract.creator_address, CREATOR_CONTRACT, me))
        for addr in contract.created_contracts:
            found.append(QueueItem(addr, FACTORY_CREATED, me))
        for addr in contract.runtime_callees:
            found.append(QueueItem(addr, RUNTIME_CALLEE, me))
        for addr in source.declared_implementations:
            if addr not in contract.discovered_implementations:
                contract.discovered_implementations.append(addr)
            found.append(QueueItem(addr, SOURCE_DECLARED_IMPL, me))

        hardcoded = 0
        for addr in source.hardcoded_addresses:
            if hardcoded >= self.settings.max_hardcoded_enqueued:
                logging.debug(f"[Crawler] Hardcoded address limit reached for {me}")
                break
            if frontier.is_known(addr) or not self.chain.is_contract(addr):
                continue
            found.append(QueueItem(addr, HARDCODED_ADDRESS, me))
            hardcoded += 1
        return found

    def _process(self, item: QueueItem, root: str, contracts: Dict[str, AnalyzedContract],
                 sources: Dict[str, AnalyzedSource], frontier: Frontier, analysis_id: str):
        contract = self.prober.probe(item.address)
        contract.recursion_reason = item.reason
        contract.recursion_source = item.source_address
        if item.reason == CREATOR_CONTRACT:
            contract.tags["isFactory"] = True

        if contract.kind_on_chain == EOA:
            source = AnalyzedSource(address=contract.address)
        else:
            try:
                self.resolver.resolve(contract)
            except Exception as e:
                logging.error(f"[Crawler] Source resolution failed for {contract.address}: {e}")
            source = analyze_source(contract, root,
                                    self.settings.max_hardcoded_per_file,
                                    self.settings.max_declared_per_file)

        contracts[contract.address] = contract
        sources[contract.address] = source

        for discovered in self._discoveries(contract, source, frontier):
            if frontier.enqueue(discovered):
                logging.info(f"[Crawler] Queued {discovered.address} ({discovered.reason} from {discovered.source_address})")
            else:
                logging.debug(f"[Crawler] Skipped {discovered.address} ({discovered.reason})")

        self.repository.upsert_contract(analysis_id, contract)
        for f in contract.source_files:
            self.repository.append_source_file(analysis_id, contract.address, f)

    def run(self, root_address: str, analysis_id: Optional[str] = None,
            on_progress: Optional[ProgressCallback] = None) -> CrawlResult:
        if not Web3.is_address(root_address or ""):
            raise ValueError(f"Invalid address: {root_address}")

        root = root_address.lower()
        analysis_id = analysis_id or uuid.uuid4().hex
        progress = on_progress or (lambda percent, message: None)

        logging.info(f"[Crawler] Starting analysis {analysis_id} of {root} (max {self.settings.max_contracts} contracts)")
        progress(0, "Starting analysis...")

        self.chain.clear_cache()
        frontier = Frontier(self.settings.max_contracts)
        frontier.enqueue(QueueItem(root, ROOT))
        contracts: Dict[str, AnalyzedContract] = {}
        sources: Dict[str, AnalyzedSource] = {}

        processed = 0
        while True:
            item = frontier.dequeue()
            if item is None:
                break
            processed += 1
            logging.info(f"[Crawler] --- #{processed} {item.address} ({item.reason}) ---")
            try:
                self._process(item, root, contracts, sources, frontier, analysis_id)
            except Exception as e:
                logging.error(f"[Crawler] Failed to analyze {item.address}: {e}")

            done = processed / max(1, processed + frontier.remaining)
            progress(int(5 + 80 * done), f"Analyzed {item.address}")

        if frontier.capped:
            logging.warning(f"[Crawler] Coverage is partial: {len(frontier.overflow)} discovered addresses were not explored")

        progress(85, "Building graph...")
        graph = self.assembler.assemble(contracts, sources)

        for address, source in sources.items():
            for t in source.types:
                self.repository.append_type_def(analysis_id, address, t)
        for edge in graph.edges:
            self.repository.append_edge(analysis_id, edge)
        self.repository.flush(analysis_id)

        progress(100, "Analysis complete")
        logging.info(f"[Crawler] Finished: visited {len(frontier.visited)}, recorded {len(contracts)}")

        return CrawlResult(
            analysis_id=analysis_id,
            root_address=root,
            contracts=contracts,
            sources=sources,
            graph=graph,
            visited_count=len(frontier.visited),
            queue_remaining=frontier.remaining,
            capped=frontier.capped,
            timestamp=datetime.datetime.now(datetime.timezone.utc).isoformat(),
            dropped_count=len(frontier.overflow),
        )
