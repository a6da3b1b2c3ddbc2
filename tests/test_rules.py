import unittest

from geodat.errors import MalformedCidr
from geodat.rules import (
    DIRECT,
    PROXY,
    REJECT,
    DomainPattern,
    DomainRule,
    IPCidr,
    MatchKind,
    PatternKind,
    classify_policy,
    is_cidr,
    normalize_domain,
    parse_cidr,
)


class TestNormalizeDomain(unittest.TestCase):
    def test_keyword_is_kept_verbatim(self):
        pattern = normalize_domain(DomainRule(MatchKind.KEYWORD, "goo.gle"))
        self.assertEqual(pattern, DomainPattern(PatternKind.KEYWORD, "goo.gle"))

    def test_suffix_without_leading_dot_is_plain(self):
        pattern = normalize_domain(DomainRule(MatchKind.SUFFIX, "example.com"))
        self.assertEqual(pattern, DomainPattern(PatternKind.SUFFIX, "example.com"))

    def test_suffix_with_leading_dot_is_escaped_regex(self):
        pattern = normalize_domain(DomainRule(MatchKind.SUFFIX, ".example.com"))
        self.assertEqual(pattern, DomainPattern(PatternKind.REGEX, r"\.example\.com"))

    def test_suffix_wildcard(self):
        pattern = normalize_domain(DomainRule(MatchKind.SUFFIX, ".*.example.com"))
        self.assertEqual(pattern.text, r"\..*\.example\.com")

    def test_full_is_anchored(self):
        pattern = normalize_domain(DomainRule(MatchKind.FULL, "www.example.com"))
        self.assertEqual(pattern, DomainPattern(PatternKind.REGEX, r"^www\.example\.com$"))

    def test_full_wildcard(self):
        pattern = normalize_domain(DomainRule(MatchKind.FULL, "*.example.com"))
        self.assertEqual(pattern.text, r"^.*\.example\.com$")

    def test_only_first_star_is_a_wildcard(self):
        pattern = normalize_domain(DomainRule(MatchKind.FULL, "a*b*c"))
        self.assertEqual(pattern.text, "^a.*b*c$")

    def test_unknown_kind_falls_back_to_suffix_regex(self):
        pattern = normalize_domain(DomainRule("regexp", "a.b"))
        self.assertEqual(pattern, DomainPattern(PatternKind.REGEX, r"a\.b"))

    def test_deterministic(self):
        rule = DomainRule(MatchKind.FULL, "x.*.y")
        self.assertEqual(normalize_domain(rule), normalize_domain(rule))

    def test_no_unescaped_dots_without_wildcard(self):
        values = ["a.b.c", ".lead.ing", "many.dots.in.a.row", "nodots"]
        for kind in (MatchKind.FULL, MatchKind.SUFFIX):
            for value in values:
                pattern = normalize_domain(DomainRule(kind, value))
                if pattern.kind is not PatternKind.REGEX:
                    continue
                text = pattern.text
                for i, char in enumerate(text):
                    if char == ".":
                        self.assertEqual(text[i - 1], "\\", text)

    def test_empty_value_rejected(self):
        with self.assertRaises(ValueError):
            DomainRule.make(MatchKind.SUFFIX, "")


class TestParseCidr(unittest.TestCase):
    def test_ipv4(self):
        for text, raw, prefix in [
            ("192.168.1.0/24", bytes([192, 168, 1, 0]), 24),
            ("0.0.0.0/0", bytes(4), 0),
            ("255.255.255.255/32", bytes([255] * 4), 32),
        ]:
            self.assertEqual(parse_cidr(text), IPCidr(raw, prefix))

    def test_ipv6(self):
        cidr = parse_cidr("2001:db8::/32")
        self.assertEqual(len(cidr.address), 16)
        self.assertEqual(cidr.address[:4], bytes([0x20, 0x01, 0x0D, 0xB8]))
        self.assertEqual(cidr.prefix, 32)
        self.assertEqual(str(cidr), "2001:db8::/32")

    def test_out_of_range_prefix_passes_through(self):
        self.assertEqual(parse_cidr("10.0.0.0/33").prefix, 33)

    def test_malformed(self):
        for text in ["10.0.0.0", "300.1.1.1/8", "10.0.0.0/x", "10.0.0.0/-1", "/8", "host/8"]:
            with self.assertRaises(MalformedCidr) as ctx:
                parse_cidr(text)
            self.assertIn(text, str(ctx.exception))

    def test_is_cidr(self):
        self.assertTrue(is_cidr("10.0.0.0/8"))
        self.assertTrue(is_cidr("2001:db8::/32"))
        self.assertFalse(is_cidr("10.0.0.0"))
        self.assertFalse(is_cidr("example.com"))
        self.assertFalse(is_cidr("example.com/path"))
        self.assertFalse(is_cidr("10.0.0.0/255.0.0.0"))
        self.assertFalse(is_cidr("10.0.0.0/0.0.0.255"))


class TestClassifyPolicy(unittest.TestCase):
    def test_builtin_categories(self):
        self.assertEqual(classify_policy("REJECT"), REJECT)
        self.assertEqual(classify_policy("Proxy"), PROXY)
        self.assertEqual(classify_policy("DIRECT"), DIRECT)
        self.assertEqual(classify_policy("Domestic"), DIRECT)
        self.assertEqual(classify_policy("Others"), DIRECT)
        self.assertEqual(classify_policy("\N{RED APPLE} Only"), DIRECT)

    def test_reject_wins_over_proxy(self):
        self.assertEqual(classify_policy("reject-proxy"), REJECT)

    def test_proxy_wins_over_direct(self):
        self.assertEqual(classify_policy("proxy-or-direct"), PROXY)

    def test_unmatched_defaults_to_direct(self):
        self.assertEqual(classify_policy("AdBlock"), DIRECT)
        self.assertEqual(classify_policy(""), DIRECT)


if __name__ == "__main__":
    unittest.main()
