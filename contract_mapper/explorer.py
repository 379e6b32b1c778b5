import time
import logging
from typing import Dict, List, Optional

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException
from tenacity import retry, wait_exponential, stop_after_attempt, retry_if_exception_type
from urllib3.util.retry import Retry
from web3 import Web3

from .types import AbiResult, CreationInfo, InternalTransaction, VerifiedSource

NOT_VERIFIED_ABI = "Contract source code not verified"
CREATION_BATCH_SIZE = 5


class ExplorerRateLimited(Exception):
    """The explorer answered with a rate-limit reply instead of data."""


class APIRateLimiter:
    def __init__(self, min_delay: float = 0.5):
        self.last_call = 0
        self.min_delay = min_delay

    def wait(self):
        elapsed = time.time() - self.last_call
        if elapsed < self.min_delay:
            time.sleep(self.min_delay - elapsed)
        self.last_call = time.time()


def build_session() -> requests.Session:
    """Session with connection pooling and HTTP-level retries."""
    session = requests.Session()
    session.headers.update({"User-Agent": "contract-mapper/1.0"})
    retry_cfg = Retry(total=5, backoff_factor=0.5,
                      status_forcelist=(429, 500, 502, 503, 504),
                      allowed_methods=frozenset(["GET", "POST"]))
    adapter = HTTPAdapter(max_retries=retry_cfg, pool_connections=10, pool_maxsize=20)
    session.mount("https://", adapter)
    session.mount("http://", adapter)
    return session


def _normalize(addr: Optional[str]) -> Optional[str]:
    if addr and Web3.is_address(addr.lower()):
        return addr.lower()
    return None


def _blank_to_none(value) -> Optional[str]:
    if value is None:
        return None
    value = str(value).strip()
    return value or None


class ExplorerClient:
    """Etherscan-compatible block explorer client (Basescan, Etherscan)."""

    def __init__(self, api_url: str, api_key: str = "", chain_id: Optional[int] = None,
                 min_delay: float = 0.5, timeout: int = 30,
                 session: Optional[requests.Session] = None):
        self.api_url = api_url
        self.api_key = api_key
        self.chain_id = chain_id
        self.timeout = timeout
        self.session = session or build_session()
        self.limiter = APIRateLimiter(min_delay)

    @retry(
        wait=wait_exponential(multiplier=1, min=2, max=10),
        stop=stop_after_attempt(5),
        retry=retry_if_exception_type((RequestException, ExplorerRateLimited)),
        reraise=True
    )
    def _get(self, params: Dict) -> Dict:
        params = dict(params)
        params["apikey"] = self.api_key
        if self.chain_id is not None:
            params["chainid"] = self.chain_id

        self.limiter.wait()
        response = self.session.get(self.api_url, params=params, timeout=self.timeout)
        response.raise_for_status()
        data = response.json()

        if str(data.get("status")) == "0":
            detail = f"{data.get('message', '')} {data.get('result', '')}".lower()
            if "rate limit" in detail:
                logging.warning(f"[Explorer] Rate limited on {params.get('action')}, backing off")
                raise ExplorerRateLimited(detail.strip())
        return data

    def get_verified_source(self, address: str) -> Optional[VerifiedSource]:
        """
        Fetch verified source and compiler metadata.

        Returns None when the explorer has no entry at all. Unverified
        contracts come back with has_source=False but still carry the
        explorer's Proxy/Implementation hints.
        """
        data = self._get({
            "module": "contract",
            "action": "getsourcecode",
            "address": address,
        })
        result = data.get("result")
        if not isinstance(result, list) or not result or not isinstance(result[0], dict):
            if str(data.get("status")) == "0":
                logging.debug(f"[Explorer] getsourcecode for {address}: {data.get('result')}")
            return None

        entry = result[0]
        source = entry.get("SourceCode") or ""
        abi_raw = entry.get("ABI") or ""
        proxy_flag = _blank_to_none(entry.get("Proxy"))
        implementation = _normalize(entry.get("Implementation"))

        if not source.strip() or abi_raw == NOT_VERIFIED_ABI:
            return VerifiedSource(
                has_source=False,
                contract_name=(entry.get("ContractName") or "").strip(),
                proxy_flag=proxy_flag,
                implementation_address=implementation,
            )

        return VerifiedSource(
            has_source=True,
            raw_payload=source,
            contract_name=(entry.get("ContractName") or "").strip(),
            abi_raw=abi_raw or None,
            compiler_version=_blank_to_none(entry.get("CompilerVersion")),
            optimization_used=_blank_to_none(entry.get("OptimizationUsed")),
            runs=_blank_to_none(entry.get("Runs")),
            evm_version=_blank_to_none(entry.get("EVMVersion")),
            library=_blank_to_none(entry.get("Library")),
            license_type=_blank_to_none(entry.get("LicenseType")),
            constructor_arguments=_blank_to_none(entry.get("ConstructorArguments")),
            proxy_flag=proxy_flag,
            implementation_address=implementation,
            swarm_source=_blank_to_none(entry.get("SwarmSource")),
        )

    def get_abi_only(self, address: str) -> AbiResult:
        data = self._get({
            "module": "contract",
            "action": "getabi",
            "address": address,
        })
        result = data.get("result")
        if str(data.get("status")) == "1" and isinstance(result, str) and result.startswith("["):
            return AbiResult(has_abi=True, abi_raw=result)
        return AbiResult(has_abi=False)

    def get_creators(self, addresses: List[str]) -> Dict[str, CreationInfo]:
        """Creation info for many contracts, queried in batches of five."""
        results: Dict[str, CreationInfo] = {}
        for i in range(0, len(addresses), CREATION_BATCH_SIZE):
            batch = addresses[i:i + CREATION_BATCH_SIZE]
            data = self._get({
                "module": "contract",
                "action": "getcontractcreation",
                "contractaddresses": ",".join(batch),
            })
            result = data.get("result")
            if not isinstance(result, list):
                logging.debug(f"[Explorer] Unexpected getcontractcreation result: {result}")
                continue
            for item in result:
                if not isinstance(item, dict):
                    continue
                contract = _normalize(item.get("contractAddress"))
                creator = _normalize(item.get("contractCreator"))
                if contract and creator:
                    results[contract] = CreationInfo(
                        creator_address=creator,
                        creation_tx_hash=_blank_to_none(item.get("txHash")),
                    )
        return results

    def get_creator(self, address: str) -> Optional[CreationInfo]:
        return self.get_creators([address]).get(address.lower())

    def get_internal_transactions(self, address: str, page: int = 1,
                                  page_size: int = 50) -> List[InternalTransaction]:
        data = self._get({
            "module": "account",
            "action": "txlistinternal",
            "address": address,
            "startblock": 0,
            "endblock": 99999999,
            "page": page,
            "offset": page_size,
            "sort": "desc",
        })
        result = data.get("result")
        if not isinstance(result, list):
            # "No transactions found" and similar status 0 replies
            return []

        txs = []
        for item in result:
            if not isinstance(item, dict):
                continue
            sender = _normalize(item.get("from"))
            if not sender:
                continue
            txs.append(InternalTransaction(
                from_address=sender,
                to_address=_normalize(item.get("to")),
                type=(item.get("type") or "call").lower(),
                contract_address=_normalize(item.get("contractAddress")),
                hash=_blank_to_none(item.get("hash")),
            ))
        return txs
