import os
import tempfile
import unittest
from unittest import TestCase, mock

from contract_mapper.config import load_config

CLEAN_ENV = {
    "RPC_URL": "",
    "BASE_RPC_URL": "",
    "ETH_RPC_URL": "",
    "EXPLORER_URL": "",
    "EXPLORER_API_KEY": "",
    "BASESCAN_API_KEY": "",
    "ETHERSCAN_API_KEY": "",
}


@mock.patch("contract_mapper.config.load_dotenv", lambda: None)
class TestLoadConfig(TestCase):
    def setUp(self):
        self.tmp = tempfile.TemporaryDirectory()

    def tearDown(self):
        self.tmp.cleanup()

    def write_yaml(self, text):
        path = os.path.join(self.tmp.name, "config.yaml")
        with open(path, "w") as f:
            f.write(text)
        return path

    def test_network_defaults(self):
        with mock.patch.dict(os.environ, CLEAN_ENV):
            settings = load_config(self.write_yaml("{}"))
        self.assertEqual(settings.network, "base-mainnet")
        self.assertEqual(settings.chain_id, 8453)
        self.assertEqual(settings.rpc_url, "https://mainnet.base.org")
        self.assertEqual(settings.explorer_url, "https://api.basescan.org/api")
        self.assertEqual(settings.max_contracts, 100)

    def test_precedence(self):
        path = self.write_yaml("network: eth\nmax_contracts: 40\nrpc_url: https://file.example\n")
        env = dict(CLEAN_ENV, ETH_RPC_URL="https://env.example", ETHERSCAN_API_KEY="secret")
        with mock.patch.dict(os.environ, env):
            settings = load_config(path, max_contracts=5, decompiler=None)

        self.assertEqual(settings.network, "eth")
        self.assertEqual(settings.chain_id, 1)
        self.assertEqual(settings.rpc_url, "https://env.example")
        self.assertEqual(settings.explorer_api_key, "secret")
        self.assertEqual(settings.max_contracts, 5)
        self.assertEqual(settings.decompiler, "panoramix")

    def test_unknown_yaml_keys_are_ignored(self):
        path = self.write_yaml("max_contracts: 7\ncolour: blue\n")
        with mock.patch.dict(os.environ, CLEAN_ENV):
            settings = load_config(path)
        self.assertEqual(settings.max_contracts, 7)

    def test_unknown_network(self):
        with mock.patch.dict(os.environ, CLEAN_ENV):
            with self.assertRaises(ValueError):
                load_config(self.write_yaml("{}"), network="solana")

    def test_unknown_override(self):
        with mock.patch.dict(os.environ, CLEAN_ENV):
            with self.assertRaises(ValueError):
                load_config(self.write_yaml("{}"), colour="blue")

    def test_bad_yaml(self):
        path = self.write_yaml("- just\n- a list\n")
        with self.assertRaises(ValueError):
            load_config(path)

    def test_missing_explicit_file(self):
        with self.assertRaises(ValueError):
            load_config(os.path.join(self.tmp.name, "missing.yaml"))


if __name__ == "__main__":
    unittest.main()
