import logging
from collections import deque
from typing import Dict, Optional

from web3 import Web3

from .types import QueueItem


class Frontier:
    """
    Breadth-first work queue for a crawl.

    The frontier is the only owner of the visited/pending bookkeeping; other
    components submit discoveries through `enqueue` and never touch the sets.
    """

    def __init__(self, max_contracts: int = 100):
        self.max_contracts = max_contracts
        self.visited = set()
        self.pending = set()
        self.queue = deque()
        self.provenance: Dict[str, QueueItem] = {}
        self.capped = False
        self.overflow = set()

    def enqueue(self, item: QueueItem) -> bool:
        address = (item.address or "").lower()
        if not Web3.is_address(address):
            logging.debug(f"[Frontier] Rejecting invalid address {item.address!r}")
            return False
        if address in self.visited or address in self.pending:
            return False
        if len(self.visited) + len(self.pending) >= self.max_contracts:
            if not self.capped:
                logging.warning(f"[Frontier] Reached max contracts ({self.max_contracts}), coverage will be partial")
            self.capped = True
            self.overflow.add(address)
            logging.debug(f"[Frontier] Cap reached, skipping {address} ({item.reason})")
            return False

        item = QueueItem(address, item.reason, item.source_address.lower() if item.source_address else None)
        self.pending.add(address)
        self.queue.append(item)
        self.provenance[address] = item
        return True

    def dequeue(self) -> Optional[QueueItem]:
        if not self.queue:
            return None
        item = self.queue.popleft()
        self.pending.discard(item.address)
        self.visited.add(item.address)
        return item

    def is_known(self, address: str) -> bool:
        address = address.lower()
        return address in self.visited or address in self.pending

    @property
    def remaining(self) -> int:
        return len(self.queue)

    def __len__(self):
        return len(self.queue)
