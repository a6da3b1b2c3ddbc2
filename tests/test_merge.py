import unittest

from geodat.errors import MalformedCidr
from geodat.merge import CategoryMerger
from geodat.parsers import RuleBatch
from geodat.rules import (
    DomainPattern,
    DomainRule,
    MatchKind,
    PatternKind,
    parse_cidr,
)

SOURCE_A = RuleBatch(
    domains=[
        ("proxy", DomainRule(MatchKind.SUFFIX, "b.com")),
        ("proxy", DomainRule(MatchKind.SUFFIX, "a.com")),
        ("direct", DomainRule(MatchKind.FULL, "x.org")),
    ],
    cidrs=[("proxy", "10.0.0.0/8"), ("proxy", "1.0.0.0/8")],
)

SOURCE_B = RuleBatch(
    domains=[
        ("PROXY", DomainRule(MatchKind.KEYWORD, "a.com")),
        ("PROXY", DomainRule(MatchKind.SUFFIX, "c.com")),
        ("proxy", DomainRule(MatchKind.SUFFIX, "a.com")),
    ],
    cidrs=[("proxy", "10.0.0.0/8"), ("cn", "2001:db8::/32")],
)


def _merged(*batches):
    merger = CategoryMerger()
    for batch in batches:
        merger.add_batch(batch)
    return merger.finalize_all()


class TestCategoryMerger(unittest.TestCase):
    def test_sorted_and_deduplicated(self):
        domains, cidrs = _merged(SOURCE_A, SOURCE_B)["PROXY"]
        self.assertEqual(
            domains,
            [
                DomainPattern(PatternKind.KEYWORD, "a.com"),
                DomainPattern(PatternKind.SUFFIX, "a.com"),
                DomainPattern(PatternKind.SUFFIX, "b.com"),
                DomainPattern(PatternKind.SUFFIX, "c.com"),
            ],
        )
        self.assertEqual(cidrs, [parse_cidr("1.0.0.0/8"), parse_cidr("10.0.0.0/8")])

    def test_categories_are_case_insensitive(self):
        merger = CategoryMerger()
        merger.add_batch(SOURCE_A)
        merger.add_batch(SOURCE_B)
        self.assertEqual(merger.categories(), ["CN", "DIRECT", "PROXY"])

    def test_merging_twice_is_idempotent(self):
        self.assertEqual(_merged(SOURCE_A), _merged(SOURCE_A, SOURCE_A))

    def test_source_order_does_not_matter(self):
        self.assertEqual(_merged(SOURCE_A, SOURCE_B), _merged(SOURCE_B, SOURCE_A))

    def test_later_sources_union_in(self):
        rules = _merged(SOURCE_A, SOURCE_B)
        self.assertEqual(
            rules["DIRECT"][0], [DomainPattern(PatternKind.REGEX, r"^x\.org$")]
        )
        self.assertEqual(rules["CN"], ([], [parse_cidr("2001:db8::/32")]))

    def test_cidrs_deduplicated_in_canonical_form(self):
        merger = CategoryMerger()
        merger.add_ip_rules("cn", ["2001:DB8::/32", " 2001:db8::/32", "2001:0db8::/32"])
        self.assertEqual(merger.finalize("cn")[1], [parse_cidr("2001:db8::/32")])

    def test_category_created_on_first_use(self):
        merger = CategoryMerger()
        merger.add_ip_rules("reject", [])
        self.assertEqual(merger.finalize("REJECT"), ([], []))

    def test_unknown_category(self):
        with self.assertRaises(KeyError):
            CategoryMerger().finalize("nope")

    def test_finalize_is_cached(self):
        merger = CategoryMerger()
        merger.add_batch(SOURCE_A)
        first = merger.finalize("proxy")
        self.assertIs(merger.finalize("PROXY"), first)
        with self.assertRaises(RuntimeError):
            merger.add_domain_rules("proxy", [DomainRule(MatchKind.SUFFIX, "d.com")])

    def test_malformed_cidr_carries_context(self):
        merger = CategoryMerger()
        with self.assertRaises(MalformedCidr) as ctx:
            merger.add_ip_rules("proxy", ["10.0.0.0/8", "bogus/8"], source="surge")
        self.assertEqual(ctx.exception.value, "bogus/8")
        self.assertEqual(ctx.exception.source, "surge")
        self.assertEqual(ctx.exception.category, "PROXY")
        self.assertIn("surge", str(ctx.exception))


if __name__ == "__main__":
    unittest.main()
