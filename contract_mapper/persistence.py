import os
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Dict, List

from .types import AnalyzedContract, DetectedType, GraphEdge, SourceFile


class Repository(ABC):
    """Storage for one or more analysis runs, keyed by an opaque analysis id."""

    @abstractmethod
    def upsert_contract(self, analysis_id: str, record: AnalyzedContract):
        """Insert or replace the record for (analysis_id, record.address)"""
        pass

    @abstractmethod
    def append_source_file(self, analysis_id: str, address: str, source_file: SourceFile):
        pass

    @abstractmethod
    def append_type_def(self, analysis_id: str, address: str, detected_type: DetectedType):
        pass

    @abstractmethod
    def append_edge(self, analysis_id: str, edge: GraphEdge):
        pass

    def flush(self, analysis_id: str):
        pass


class InMemoryRepository(Repository):
    def __init__(self):
        self.contracts: Dict[str, Dict[str, AnalyzedContract]] = {}
        self.source_files: Dict[str, List[tuple]] = {}
        self.type_defs: Dict[str, List[tuple]] = {}
        self.edges: Dict[str, List[GraphEdge]] = {}

    def upsert_contract(self, analysis_id: str, record: AnalyzedContract):
        self.contracts.setdefault(analysis_id, {})[record.address.lower()] = record

    def append_source_file(self, analysis_id: str, address: str, source_file: SourceFile):
        self.source_files.setdefault(analysis_id, []).append((address.lower(), source_file))

    def append_type_def(self, analysis_id: str, address: str, detected_type: DetectedType):
        self.type_defs.setdefault(analysis_id, []).append((address.lower(), detected_type))

    def append_edge(self, analysis_id: str, edge: GraphEdge):
        self.edges.setdefault(analysis_id, []).append(edge)

    def snapshot(self, analysis_id: str) -> Dict:
        """Plain-dict view of one run, as written by JsonFileRepository."""
        return {
            "analysisId": analysis_id,
            "contracts": [asdict(c) for c in self.contracts.get(analysis_id, {}).values()],
            "sourceFiles": [
                {"address": addr, **asdict(f)} for addr, f in self.source_files.get(analysis_id, [])
            ],
            "typeDefs": [
                {"address": addr, **asdict(t)} for addr, t in self.type_defs.get(analysis_id, [])
            ],
            "edges": [asdict(e) for e in self.edges.get(analysis_id, [])],
        }


class JsonFileRepository(InMemoryRepository):
    """Keeps a run in memory and writes it to <output_dir>/analysis_<id>.json on flush."""

    def __init__(self, output_dir: str):
        super().__init__()
        self.output_dir = output_dir

    def path_for(self, analysis_id: str) -> str:
        return os.path.join(self.output_dir, f"analysis_{analysis_id}.json")

    def flush(self, analysis_id: str):
        os.makedirs(self.output_dir, exist_ok=True)
        path = self.path_for(analysis_id)
        tmp = path + ".tmp"
        try:
            with open(tmp, "w") as f:
                json.dump(self.snapshot(analysis_id), f, indent=2)
            os.replace(tmp, path)
        except (OSError, TypeError, ValueError) as e:
            logging.error(f"Error saving analysis {analysis_id}: {e}")
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        logging.info(f"Saved analysis to {path}")
