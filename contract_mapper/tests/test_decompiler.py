import subprocess
import unittest
from unittest import TestCase, mock

from contract_mapper.decompiler import (
    NullDecompiler,
    PanoramixDecompiler,
    get_decompiler,
    parse_function_signatures,
)

ADDR = "0x1111111111111111111111111111111111111111"
BYTECODE = "0x6080604052"
PSEUDO = """
def storage:
  owner is addr at storage 0

def transfer(address _to, uint256 _value) payable:
  require calldata.size - 4 >= 64
"""


def completed(stdout="", stderr=""):
    return subprocess.CompletedProcess(args=[], returncode=0, stdout=stdout, stderr=stderr)


class TestParseFunctionSignatures(TestCase):
    def test_pseudo_source(self):
        self.assertEqual(parse_function_signatures(PSEUDO),
                         ["def transfer(address _to, uint256 _value)"])

    def test_solidity_style(self):
        sigs = parse_function_signatures("function foo(uint a) external view returns (uint) { }")
        self.assertEqual(sigs, ["function foo(uint a) external view returns (uint)"])

    def test_nothing(self):
        self.assertEqual(parse_function_signatures("# nothing here"), [])


class TestPanoramixDecompiler(TestCase):
    def setUp(self):
        self.run_patcher = mock.patch("contract_mapper.decompiler.subprocess.run")
        self.mock_run = self.run_patcher.start()
        self.decompiler = PanoramixDecompiler("https://mainnet.base.org", timeout=5)

    def tearDown(self):
        self.run_patcher.stop()

    def test_bytecode_first(self):
        self.mock_run.side_effect = [completed("usage"), completed(PSEUDO)]

        result = self.decompiler.decompile(ADDR, BYTECODE)

        self.assertTrue(result.success)
        self.assertEqual(result.method, "bytecode")
        self.assertFalse(result.no_source_flag)
        args = self.mock_run.call_args_list[1][0][0]
        self.assertEqual(args, ["panoramix", "6080604052"])

    def test_address_fallback_on_empty_output(self):
        self.mock_run.side_effect = [completed("usage"), completed("  \n"), completed(PSEUDO)]

        result = self.decompiler.decompile(ADDR, BYTECODE)

        self.assertTrue(result.success)
        self.assertEqual(result.method, "address")
        call = self.mock_run.call_args_list[2]
        self.assertEqual(call[0][0], ["panoramix", ADDR])
        self.assertEqual(call[1]["env"]["WEB3_PROVIDER_URI"], "https://mainnet.base.org")

    def test_address_fallback_on_timeout(self):
        self.mock_run.side_effect = [
            completed("usage"),
            subprocess.TimeoutExpired(cmd="panoramix", timeout=5),
            completed(PSEUDO),
        ]
        result = self.decompiler.decompile(ADDR, BYTECODE)
        self.assertEqual(result.method, "address")

    def test_all_methods_fail(self):
        self.mock_run.side_effect = [
            completed("usage"),
            subprocess.CalledProcessError(1, "panoramix", stderr="boom"),
            subprocess.CalledProcessError(1, "panoramix", stderr="boom"),
        ]
        result = self.decompiler.decompile(ADDR, BYTECODE)
        self.assertFalse(result.success)
        self.assertEqual(result.method, "none")
        self.assertEqual(result.error, "All decompilation methods failed")

    def test_no_bytecode_goes_to_address(self):
        self.mock_run.side_effect = [completed("usage"), completed(PSEUDO)]
        result = self.decompiler.decompile(ADDR, None)
        self.assertEqual(result.method, "address")
        self.assertEqual(self.mock_run.call_count, 2)

    def test_output_without_functions_is_flagged(self):
        self.mock_run.side_effect = [completed("usage"), completed("# Palkeoramix decompiler.\nconst unknown = 0")]
        result = self.decompiler.decompile(ADDR, BYTECODE)
        self.assertTrue(result.success)
        self.assertTrue(result.no_source_flag)

    def test_not_installed(self):
        self.mock_run.side_effect = FileNotFoundError("panoramix")

        result = self.decompiler.decompile(ADDR, BYTECODE)
        self.assertFalse(result.success)
        self.assertIn("not installed", result.error)

        # availability is checked once
        self.decompiler.decompile(ADDR, BYTECODE)
        self.assertEqual(self.mock_run.call_count, 1)


class TestGetDecompiler(TestCase):
    def test_factory(self):
        self.assertIsInstance(get_decompiler("panoramix", "http://rpc"), PanoramixDecompiler)
        self.assertIsInstance(get_decompiler("none"), NullDecompiler)
        with self.assertRaises(ValueError):
            get_decompiler("heimdall")

    def test_null_decompiler(self):
        result = NullDecompiler().decompile(ADDR, BYTECODE)
        self.assertFalse(result.success)
        self.assertTrue(result.error)


if __name__ == "__main__":
    unittest.main()
