import types
import unittest

from blocklist.cleaner import (
    CleanStats,
    clean_line,
    detect_format,
    iter_domains,
    normalize_document,
)
from blocklist.errors import FormatError
from blocklist.sources import SourceFormat


class CleanLineTests(unittest.TestCase):
    def test_zero_prefixed_hosts_line(self):
        result = clean_line("0.0.0.0 ads.example.com", SourceFormat.HOSTS_ZERO)
        self.assertEqual(result.domain, "ads.example.com")
        self.assertFalse(result.discarded)

    def test_loopback_with_tab_and_inline_comment(self):
        result = clean_line("127.0.0.1\tads.example.com # tracker", SourceFormat.HOSTS_LOOPBACK)
        self.assertEqual(result.domain, "ads.example.com")

    def test_known_prefixes_stripped_for_any_declared_format(self):
        self.assertEqual(clean_line("0.0.0.0 a.example.com", SourceFormat.RAW).domain, "a.example.com")
        self.assertEqual(clean_line("127.0.0.1 b.example.com", SourceFormat.RAW).domain, "b.example.com")
        self.assertEqual(clean_line("127.0.0.1 c.example.com", SourceFormat.HOSTS_ZERO).domain, "c.example.com")

    def test_comment_line_is_discarded(self):
        result = clean_line("# 0.0.0.0 ads.example.com")
        self.assertTrue(result.discarded)
        self.assertEqual(result.reason, "comment")

    def test_indented_comment_is_discarded(self):
        self.assertEqual(clean_line("   \t# note").reason, "comment")

    def test_whitespace_only_line_is_discarded(self):
        for line in ("", "   ", "\t \t", "\n"):
            result = clean_line(line)
            self.assertTrue(result.discarded)
            self.assertEqual(result.reason, "empty")

    def test_plain_domain_is_lowercased_and_trimmed(self):
        self.assertEqual(clean_line("  Ads.Example.COM.  \n").domain, "ads.example.com")

    def test_extra_columns_are_ignored(self):
        result = clean_line("0.0.0.0   a.example.com  b.example.com   # two aliases", SourceFormat.HOSTS_ZERO)
        self.assertEqual(result.domain, "a.example.com")

    def test_tabular_format_skips_any_leading_address(self):
        self.assertEqual(clean_line("::1\tv6.example.com", SourceFormat.TABULAR).domain, "v6.example.com")
        self.assertEqual(clean_line("10.0.0.1 lan.example.com", SourceFormat.TABULAR).domain, "lan.example.com")

    def test_raw_format_does_not_skip_unknown_addresses(self):
        with self.assertRaises(FormatError):
            clean_line("10.0.0.1 lan.example.com", SourceFormat.RAW)

    def test_address_without_domain_is_rejected(self):
        with self.assertRaises(FormatError):
            clean_line("0.0.0.0", SourceFormat.HOSTS_ZERO)
        with self.assertRaises(FormatError):
            clean_line("0.0.0.0 0.0.0.0", SourceFormat.HOSTS_ZERO)

    def test_non_domain_field_is_rejected(self):
        for line in ("||ads.example.com^", "example.com/path", "a..example.com", "0.0.0.0 #"):
            with self.subTest(line=line):
                with self.assertRaises(FormatError):
                    clean_line(line, SourceFormat.HOSTS_ZERO)

    def test_local_hostnames_kept_unless_requested(self):
        self.assertEqual(clean_line("127.0.0.1 localhost", SourceFormat.HOSTS_LOOPBACK).domain, "localhost")
        result = clean_line("127.0.0.1 localhost", SourceFormat.HOSTS_LOOPBACK, drop_local=True)
        self.assertTrue(result.discarded)
        self.assertEqual(result.reason, "local")


class DetectFormatTests(unittest.TestCase):
    def test_zero_hosts(self):
        lines = ["# header", "127.0.0.1 localhost", "0.0.0.0 a.com", "0.0.0.0 b.com", "0.0.0.0 c.com"]
        self.assertEqual(detect_format(lines), SourceFormat.HOSTS_ZERO)

    def test_loopback_hosts(self):
        lines = ["127.0.0.1\ta.com", "127.0.0.1\tb.com"]
        self.assertEqual(detect_format(lines), SourceFormat.HOSTS_LOOPBACK)

    def test_other_addresses(self):
        lines = ["::1 a.com", "10.1.1.1 b.com", "0.0.0.0 c.com"]
        self.assertEqual(detect_format(lines), SourceFormat.TABULAR)

    def test_plain_list(self):
        self.assertEqual(detect_format(["# list", "a.com", "b.com", "0.0.0.0 c.com"]), SourceFormat.RAW)

    def test_empty_document(self):
        self.assertEqual(detect_format([]), SourceFormat.RAW)


class IterDomainsTests(unittest.TestCase):
    def test_keeps_document_order_and_duplicates(self):
        lines = ["b.com", "a.com", "B.com"]
        self.assertEqual(list(iter_domains(lines)), ["b.com", "a.com", "b.com"])

    def test_is_lazy(self):
        domains = iter_domains(["a.com"])
        self.assertIsInstance(domains, types.GeneratorType)

    def test_bad_lines_are_counted_not_raised(self):
        stats = CleanStats()
        lines = [
            "# comment",
            "",
            "0.0.0.0 good.example.com",
            "~bad~ line with extra columns",
            "127.0.0.1 localhost",
            "also.good.example.com",
        ]
        domains = list(iter_domains(lines, SourceFormat.HOSTS_ZERO, stats, drop_local=True))

        self.assertEqual(domains, ["good.example.com", "also.good.example.com"])
        self.assertEqual(stats.total_lines, 6)
        self.assertEqual(stats.kept_lines, 2)
        self.assertEqual(stats.comments_removed, 1)
        self.assertEqual(stats.empty_removed, 1)
        self.assertEqual(stats.invalid_removed, 1)
        self.assertEqual(stats.local_removed, 1)

    def test_normalize_document_sniffs_auto(self):
        text = "# StevenBlack style\n0.0.0.0 a.example.com\n0.0.0.0\tb.example.com # ads\n\n"
        self.assertEqual(list(normalize_document(text)), ["a.example.com", "b.example.com"])

    def test_normalize_document_handles_crlf(self):
        text = "a.example.com\r\nb.example.com\r\n"
        self.assertEqual(list(normalize_document(text, SourceFormat.RAW)), ["a.example.com", "b.example.com"])
