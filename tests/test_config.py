"""
Tests for LinkConfig parsing.

Configuration arrives either as a dict or as a ConfigObj section read from
a file, where every value is a string. Invalid values must fall back to the
defaults instead of failing engine construction.
"""

import os
import tempfile
import unittest

from waypoint_link.config import LinkConfig


class TestLinkConfigDefaults(unittest.TestCase):

    def test_defaults(self):
        config = LinkConfig()

        self.assertEqual(config.name, "default")
        self.assertEqual(config.service_uuid, "12345678-1234-1234-1234-1234567890ab")
        self.assertEqual(config.characteristic_uuid, "abcd1234-abcd-1234-abcd-1234567890ab")
        self.assertEqual(config.device_name_patterns, ("lorav32", "lora-v32", "lora_v32"))
        self.assertEqual(config.scan_timeout, 8.0)
        self.assertEqual(config.debug_scan_window, 5.0)
        self.assertEqual(config.connect_timeout, 10.0)
        self.assertEqual(config.retry_delay, 2.0)
        self.assertEqual(config.max_retries, 3)
        self.assertEqual(config.request_mtu, 128)
        self.assertEqual(config.chunk_size, 20)
        self.assertEqual(config.chunk_delay, 0.05)
        self.assertEqual(config.disconnect_settle, 0.2)
        self.assertEqual(config.destroy_settle, 1.0)
        self.assertEqual(config.create_settle, 0.5)
        self.assertFalse(config.allow_duplicates)

    def test_str(self):
        self.assertEqual(str(LinkConfig({"name": "rover"})), "LinkConfig[rover]")


class TestLinkConfigParsing(unittest.TestCase):

    def test_string_values_are_coerced(self):
        config = LinkConfig({
            "scan_timeout": "12.5",
            "max_retries": "5",
            "allow_duplicates": "yes",
        })

        self.assertEqual(config.scan_timeout, 12.5)
        self.assertEqual(config.max_retries, 5)
        self.assertTrue(config.allow_duplicates)

    def test_bool_strings(self):
        for value, expected in [("yes", True), ("True", True), ("1", True), ("no", False), ("false", False)]:
            with self.subTest(value=value):
                self.assertEqual(LinkConfig({"allow_duplicates": value}).allow_duplicates, expected)

    def test_invalid_numbers_fall_back(self):
        config = LinkConfig({
            "scan_timeout": "soon",
            "max_retries": "many",
            "retry_delay": -1,
        })

        self.assertEqual(config.scan_timeout, LinkConfig.SCAN_TIMEOUT)
        self.assertEqual(config.max_retries, LinkConfig.MAX_RETRIES)
        self.assertEqual(config.retry_delay, LinkConfig.RETRY_DELAY)

    def test_zero_chunk_size_rejected(self):
        self.assertEqual(LinkConfig({"chunk_size": 0}).chunk_size, LinkConfig.CHUNK_SIZE)

    def test_uuids_are_lowercased(self):
        config = LinkConfig({"service_uuid": "0000FFE0-0000-1000-8000-00805F9B34FB"})
        self.assertEqual(config.service_uuid, "0000ffe0-0000-1000-8000-00805f9b34fb")

    def test_patterns_from_string(self):
        config = LinkConfig({"device_name_patterns": "Rover, Base-Station ,"})
        self.assertEqual(config.device_name_patterns, ("rover", "base-station"))

    def test_patterns_from_list(self):
        config = LinkConfig({"device_name_patterns": ["ROVER"]})
        self.assertEqual(config.device_name_patterns, ("rover",))


class TestLinkConfigFromFile(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.path = os.path.join(self.tmpdir.name, "config")

    def tearDown(self):
        self.tmpdir.cleanup()

    def write(self, text):
        with open(self.path, "w") as f:
            f.write(text)

    def test_reads_section(self):
        self.write(
            "[waypoint_link]\n"
            "  name = rover\n"
            "  device_name_patterns = rover, base\n"
            "  scan_timeout = 4\n"
            "  chunk_delay = 0.1\n"
        )

        config = LinkConfig.from_file(self.path)

        self.assertEqual(config.name, "rover")
        self.assertEqual(config.device_name_patterns, ("rover", "base"))
        self.assertEqual(config.scan_timeout, 4.0)
        self.assertEqual(config.chunk_delay, 0.1)

    def test_reads_top_level(self):
        self.write("max_retries = 1\n")

        config = LinkConfig.from_file(self.path)

        self.assertEqual(config.max_retries, 1)
        self.assertEqual(config.name, "default")


if __name__ == '__main__':
    unittest.main()
