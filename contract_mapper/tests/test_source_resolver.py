import json
import unittest
from unittest import TestCase, mock

from contract_mapper.source_resolver import (
    FlatFileMap,
    RawSingleFile,
    SourceResolver,
    StandardJsonInput,
    classify_payload,
    normalize_source_files,
)
from contract_mapper.types import (
    CONTRACT_SIMPLE,
    PROXY,
    RESOLUTION_ABI_ONLY,
    RESOLUTION_DECOMPILED,
    RESOLUTION_DECOMPILED_UNUSABLE,
    RESOLUTION_IMPLEMENTATION,
    RESOLUTION_NONE,
    RESOLUTION_VERIFIED,
    SOURCE_DECOMPILED,
    SOURCE_NONE,
    SOURCE_VERIFIED,
    AbiResult,
    AnalyzedContract,
    DecompileResult,
    VerifiedSource,
)

ADDR = "0x1111111111111111111111111111111111111111"
IMPL = "0x2222222222222222222222222222222222222222"
ABI = '[{"type":"function","name":"foo","inputs":[],"outputs":[]}]'

STANDARD_JSON = json.dumps({
    "language": "Solidity",
    "sources": {
        "contracts/Vault.sol": {"content": "contract Vault { }"},
        "contracts/IVault.sol": {"content": "interface IVault { }"},
        "contracts/Empty.sol": {"content": ""},
    },
    "settings": {"optimizer": {"enabled": True}},
})


class TestPayloadNormalization(TestCase):
    def test_plain_source(self):
        files = normalize_source_files("pragma solidity ^0.8.0;\ncontract A { }", "A")
        self.assertEqual(len(files), 1)
        self.assertEqual(files[0].path, "A.sol")
        self.assertEqual(files[0].source_type, SOURCE_VERIFIED)

    def test_standard_json_with_sources(self):
        self.assertIsInstance(classify_payload(STANDARD_JSON), StandardJsonInput)
        files = normalize_source_files(STANDARD_JSON, "Vault")
        # empty content is dropped
        self.assertEqual([f.path for f in files], ["contracts/Vault.sol", "contracts/IVault.sol"])

    def test_double_brace_wrapped(self):
        raw = "{" + STANDARD_JSON + "}"
        self.assertIsInstance(classify_payload(raw), StandardJsonInput)
        self.assertEqual(len(normalize_source_files(raw, "Vault")), 2)

    def test_flat_map(self):
        raw = json.dumps({
            "A.sol": {"content": "contract A { }"},
            "B.sol": "contract B { }",
        })
        self.assertIsInstance(classify_payload(raw), FlatFileMap)
        files = normalize_source_files(raw, "A")
        self.assertEqual([(f.path, f.content) for f in files],
                         [("A.sol", "contract A { }"), ("B.sol", "contract B { }")])

    def test_malformed_json_kept_verbatim(self):
        raw = '{"sources": {"A.sol": {"content": "contract A {'
        payload = classify_payload(raw, "Broken")
        self.assertIsInstance(payload, RawSingleFile)
        files = normalize_source_files(raw, "Broken")
        self.assertEqual(len(files), 1)
        self.assertEqual(files[0].path, "Broken.sol")
        self.assertEqual(files[0].content, raw)

    def test_unnamed_contract(self):
        files = normalize_source_files("contract X { }", "")
        self.assertEqual(files[0].path, "Contract.sol")

    def test_json_without_usable_files_kept_raw(self):
        raw = json.dumps({"sources": {"A.sol": {"content": ""}}})
        files = normalize_source_files(raw, "A")
        self.assertEqual(len(files), 1)
        self.assertEqual(files[0].content, raw)


class TestSourceResolver(TestCase):
    def setUp(self):
        self.explorer = mock.MagicMock()
        self.decompiler = mock.MagicMock()
        self.resolver = SourceResolver(self.explorer, self.decompiler)
        self.unverified = VerifiedSource(has_source=False)

    def make_contract(self, **kwargs):
        defaults = dict(address=ADDR, kind_on_chain=CONTRACT_SIMPLE, bytecode="0x6080604052")
        defaults.update(kwargs)
        return AnalyzedContract(**defaults)

    def test_verified_source(self):
        self.explorer.get_verified_source.return_value = VerifiedSource(
            has_source=True,
            raw_payload="contract Vault { }",
            contract_name="Vault",
            abi_raw=ABI,
            compiler_version="v0.8.20+commit.a1b79de6",
            optimization_used="1",
            runs="200",
            evm_version="paris",
            license_type="MIT",
        )
        contract = self.resolver.resolve(self.make_contract())

        self.assertTrue(contract.verified)
        self.assertEqual(contract.source_type, SOURCE_VERIFIED)
        self.assertEqual(contract.resolution, RESOLUTION_VERIFIED)
        self.assertEqual(contract.name, "Vault")
        self.assertEqual(contract.abi[0]["name"], "foo")
        self.assertEqual(contract.compiler_version, "v0.8.20+commit.a1b79de6")
        self.assertEqual(contract.tags["runs"], "200")
        self.assertEqual(contract.license_type, "MIT")
        self.explorer.get_abi_only.assert_not_called()
        self.decompiler.decompile.assert_not_called()

    def test_verified_proxy_hint_promotes(self):
        self.explorer.get_verified_source.return_value = VerifiedSource(
            has_source=True, raw_payload="contract P { }", contract_name="P",
            proxy_flag="1", implementation_address=IMPL,
        )
        contract = self.resolver.resolve(self.make_contract())
        self.assertEqual(contract.kind_on_chain, PROXY)
        self.assertEqual(contract.implementation_address, IMPL)
        self.assertEqual(contract.tags["proxyFlag"], "1")

    def test_implementation_source_for_proxy(self):
        def lookup(address):
            if address == IMPL:
                return VerifiedSource(has_source=True, raw_payload="contract Impl { }",
                                      contract_name="Impl", abi_raw=ABI)
            return self.unverified

        self.explorer.get_verified_source.side_effect = lookup
        contract = self.resolver.resolve(self.make_contract(kind_on_chain=PROXY, implementation_address=IMPL))

        self.assertEqual(contract.resolution, RESOLUTION_IMPLEMENTATION)
        self.assertEqual(contract.name, "Impl")
        self.assertEqual(contract.source_files[0].path, "Impl.sol")
        self.assertEqual(contract.address, ADDR)
        self.explorer.get_abi_only.assert_not_called()

    def test_explorer_proxy_flag_enables_implementation_lookup(self):
        def lookup(address):
            if address == IMPL:
                return VerifiedSource(has_source=True, raw_payload="contract Impl { }", contract_name="Impl")
            return VerifiedSource(has_source=False, proxy_flag="1", implementation_address=IMPL)

        self.explorer.get_verified_source.side_effect = lookup
        contract = self.resolver.resolve(self.make_contract())

        self.assertEqual(contract.kind_on_chain, PROXY)
        self.assertEqual(contract.implementation_address, IMPL)
        self.assertEqual(contract.resolution, RESOLUTION_IMPLEMENTATION)

    def test_abi_only_short_circuits_decompiler(self):
        self.explorer.get_verified_source.return_value = self.unverified
        self.explorer.get_abi_only.return_value = AbiResult(has_abi=True, abi_raw=ABI)

        contract = self.resolver.resolve(self.make_contract())

        self.assertEqual(contract.resolution, RESOLUTION_ABI_ONLY)
        self.assertEqual(contract.source_type, SOURCE_NONE)
        self.assertEqual(len(contract.abi), 1)
        self.decompiler.decompile.assert_not_called()

    def test_decompiled_when_abi_missing(self):
        self.explorer.get_verified_source.return_value = self.unverified
        self.explorer.get_abi_only.return_value = AbiResult(has_abi=False)
        self.decompiler.decompile.return_value = DecompileResult(
            success=True, decompiled_text="def foo() payable:\n  return 1", method="bytecode",
        )

        contract = self.resolver.resolve(self.make_contract())

        self.decompiler.decompile.assert_called_once_with(ADDR, "0x6080604052")
        self.assertEqual(contract.source_type, SOURCE_DECOMPILED)
        self.assertEqual(contract.resolution, RESOLUTION_DECOMPILED)
        self.assertFalse(contract.verified)
        self.assertEqual(contract.source_files[0].path, "Decompiled.sol")
        self.assertEqual(contract.source_files[0].source_type, SOURCE_DECOMPILED)
        self.assertEqual(contract.tags["decompileMethod"], "bytecode")

    def test_decompiled_but_unusable(self):
        self.explorer.get_verified_source.return_value = self.unverified
        self.explorer.get_abi_only.return_value = AbiResult(has_abi=False)
        self.decompiler.decompile.return_value = DecompileResult(
            success=True, decompiled_text="# garbage", method="address", no_source_flag=True,
        )

        contract = self.resolver.resolve(self.make_contract())

        self.assertEqual(contract.resolution, RESOLUTION_DECOMPILED_UNUSABLE)
        self.assertTrue(contract.tags["noSource"])
        self.assertEqual(contract.source_files[0].content, "# garbage")

    def test_decompile_failure(self):
        self.explorer.get_verified_source.return_value = self.unverified
        self.explorer.get_abi_only.return_value = AbiResult(has_abi=False)
        self.decompiler.decompile.return_value = DecompileResult(success=False, error="All decompilation methods failed")

        contract = self.resolver.resolve(self.make_contract())

        self.assertEqual(contract.source_type, SOURCE_NONE)
        self.assertEqual(contract.resolution, RESOLUTION_NONE)
        self.assertEqual(contract.source_files, [])
        self.assertEqual(contract.decompile_error, "All decompilation methods failed")
        self.assertEqual(contract.tags["decompileError"], "All decompilation methods failed")

    def test_explorer_errors_degrade_to_decompiler(self):
        self.explorer.get_verified_source.side_effect = Exception("timeout")
        self.explorer.get_abi_only.side_effect = Exception("timeout")
        self.decompiler.decompile.return_value = DecompileResult(
            success=True, decompiled_text="def foo():\n  stop", method="bytecode",
        )

        contract = self.resolver.resolve(self.make_contract())
        self.assertEqual(contract.resolution, RESOLUTION_DECOMPILED)

    def test_bad_abi_does_not_short_circuit(self):
        self.explorer.get_verified_source.return_value = self.unverified
        self.explorer.get_abi_only.return_value = AbiResult(has_abi=True, abi_raw="[not json")
        self.decompiler.decompile.return_value = DecompileResult(success=False, error="nope")

        contract = self.resolver.resolve(self.make_contract())
        self.decompiler.decompile.assert_called_once()
        self.assertIsNone(contract.abi)


if __name__ == "__main__":
    unittest.main()
