import os
import re
import time
import logging
import subprocess
from abc import ABC, abstractmethod
from typing import List, Optional

from .types import DecompileResult

PY_DEF_RE = re.compile(r"def\s+(\w+)\s*\([^)]*\)")
SOL_FUNCTION_RE = re.compile(r"function\s+(\w+)\s*\([^)]*\)[^{]*")


def parse_function_signatures(text: str) -> List[str]:
    """Function headers found in decompiled pseudo-source or Solidity text."""
    signatures = [m.group(0) for m in PY_DEF_RE.finditer(text)]
    signatures.extend(m.group(0).strip() for m in SOL_FUNCTION_RE.finditer(text))
    return signatures


class Decompiler(ABC):
    @abstractmethod
    def decompile(self, address: str, bytecode: Optional[str]) -> DecompileResult:
        """Turn deployed bytecode into best-effort pseudo-source"""
        pass


class NullDecompiler(Decompiler):
    def decompile(self, address: str, bytecode: Optional[str]) -> DecompileResult:
        return DecompileResult(success=False, error="Decompilation disabled")


class PanoramixDecompiler(Decompiler):
    """
    Shells out to the panoramix CLI.

    Bytecode decompilation is tried first; if it fails or produces nothing,
    panoramix is pointed at the address and fetches the code itself through
    WEB3_PROVIDER_URI.
    """

    def __init__(self, rpc_url: str, timeout: int = 120, executable: str = "panoramix"):
        self.rpc_url = rpc_url
        self.timeout = timeout
        self.executable = executable
        self._available: Optional[bool] = None

    def is_available(self) -> bool:
        if self._available is not None:
            return self._available
        try:
            subprocess.run([self.executable, "--help"], capture_output=True, text=True,
                           timeout=10, check=True)
            self._available = True
            logging.info("[Decompiler] panoramix is available")
        except (OSError, subprocess.SubprocessError) as e:
            self._available = False
            logging.error(f"[Decompiler] panoramix is not available: {e}")
            logging.error("[Decompiler] Unverified contracts will not be decompiled (pip install panoramix-decompiler)")
        return self._available

    def _run(self, target: str, env: dict) -> str:
        start = time.time()
        try:
            proc = subprocess.run([self.executable, target], capture_output=True, text=True,
                                  timeout=self.timeout, env=env, check=True)
        except subprocess.TimeoutExpired as e:
            raise RuntimeError(f"panoramix timed out after {self.timeout}s") from e
        except subprocess.CalledProcessError as e:
            stderr = (e.stderr or "").strip()[:500]
            raise RuntimeError(f"panoramix exited with {e.returncode}: {stderr}") from e

        if proc.stderr and proc.stderr.strip():
            logging.debug(f"[Decompiler] stderr: {proc.stderr.strip()[:500]}")
        logging.info(f"[Decompiler] Finished in {time.time() - start:.1f}s ({len(proc.stdout)} chars)")
        return proc.stdout

    def _result(self, text: str, method: str) -> DecompileResult:
        flagged = not parse_function_signatures(text)
        if flagged:
            logging.warning(f"[Decompiler] Output via {method} has no function definitions")
        return DecompileResult(success=True, decompiled_text=text, method=method,
                               no_source_flag=flagged)

    def decompile(self, address: str, bytecode: Optional[str]) -> DecompileResult:
        if not self.is_available():
            return DecompileResult(success=False, error="panoramix is not installed or not in PATH")

        if bytecode and bytecode != "0x":
            clean = bytecode[2:] if bytecode.startswith("0x") else bytecode
            try:
                text = self._run(clean, dict(os.environ))
                if text.strip():
                    return self._result(text, "bytecode")
                logging.warning(f"[Decompiler] Bytecode decompilation of {address} returned nothing")
            except RuntimeError as e:
                logging.warning(f"[Decompiler] Bytecode decompilation of {address} failed: {e}")

        env = dict(os.environ)
        env["WEB3_PROVIDER_URI"] = self.rpc_url
        try:
            text = self._run(address, env)
            if text.strip():
                return self._result(text, "address")
            logging.warning(f"[Decompiler] Address decompilation of {address} returned nothing")
        except RuntimeError as e:
            logging.error(f"[Decompiler] Address decompilation of {address} failed: {e}")

        return DecompileResult(success=False, error="All decompilation methods failed")


def get_decompiler(name: str, rpc_url: str = "", timeout: int = 120) -> Decompiler:
    if name == "panoramix":
        return PanoramixDecompiler(rpc_url, timeout)
    elif name == "none":
        return NullDecompiler()
    else:
        raise ValueError(f"Unknown decompiler: {name}")
