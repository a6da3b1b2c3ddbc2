import logging
from collections.abc import Iterable

import polars as pl

from geodat.errors import MalformedCidr
from geodat.parsers import RuleBatch
from geodat.rules import (
    DomainPattern,
    DomainRule,
    IPCidr,
    PatternKind,
    normalize_domain,
    parse_cidr,
)

logger = logging.getLogger(__name__)

_DOMAIN_SCHEMA = {"text": pl.Utf8, "kind": pl.Int64}
_CIDR_SCHEMA = {"cidr": pl.Utf8, "address": pl.Binary, "prefix": pl.Int64}


class CategoryMerger:
    """Accumulate normalized rules per category for one build target.

    Categories are keyed upper-case. Rules are only ever added; identical
    values collapse when a category is finalized, which sorts by the
    normalized text and keeps the first of each run of equal values.
    Not safe for concurrent writers.
    """

    def __init__(self) -> None:  # noqa: D107
        self._domains: dict[str, list[DomainPattern]] = {}
        self._cidrs: dict[str, list[IPCidr]] = {}
        self._final: dict[str, tuple[list[DomainPattern], list[IPCidr]]] = {}

    def _touch(self, category: str) -> str:
        key = category.upper()
        if key in self._final:
            msg = f"category {key} is already finalized"
            raise RuntimeError(msg)
        self._domains.setdefault(key, [])
        self._cidrs.setdefault(key, [])
        return key

    def add_domain_rules(self, category: str, rules: Iterable[DomainRule]) -> None:  # noqa: D102
        key = self._touch(category)
        self._domains[key].extend(normalize_domain(rule) for rule in rules)

    def add_ip_rules(
        self,
        category: str,
        cidrs: Iterable[str],
        *,
        source: str | None = None,
    ) -> None:
        """Parse and append CIDR strings; a bad one raises ``MalformedCidr``."""
        key = self._touch(category)
        pending = self._cidrs[key]
        for text in cidrs:
            try:
                pending.append(parse_cidr(text))
            except MalformedCidr as exc:
                exc.source, exc.category = source, key
                raise

    def add_batch(self, batch: RuleBatch, *, source: str | None = None) -> None:  # noqa: D102
        domains: dict[str, list[DomainRule]] = {}
        for category, rule in batch.domains:
            domains.setdefault(category, []).append(rule)
        cidrs: dict[str, list[str]] = {}
        for category, text in batch.cidrs:
            cidrs.setdefault(category, []).append(text)

        for category, rules in domains.items():
            self.add_domain_rules(category, rules)
        for category, texts in cidrs.items():
            self.add_ip_rules(category, texts, source=source)
        logger.debug(
            "merged %d domain and %d ip rules from %s",
            len(batch.domains),
            len(batch.cidrs),
            source or "<unnamed>",
        )

    def categories(self) -> list[str]:  # noqa: D102
        return sorted(self._domains.keys() | self._final.keys())

    def finalize(self, category: str) -> tuple[list[DomainPattern], list[IPCidr]]:  # noqa: D102
        key = category.upper()
        if (done := self._final.get(key)) is not None:
            return done
        if key not in self._domains:
            raise KeyError(key)

        domains = (
            pl.DataFrame(
                [(p.text, int(p.kind)) for p in self._domains.pop(key)],
                schema=_DOMAIN_SCHEMA,
                orient="row",
            )
            .sort("text", "kind", maintain_order=True)
            .unique(subset=["text", "kind"], keep="first", maintain_order=True)
        )
        cidrs = (
            pl.DataFrame(
                [(str(c), c.address, c.prefix) for c in self._cidrs.pop(key)],
                schema=_CIDR_SCHEMA,
                orient="row",
            )
            .sort("cidr", maintain_order=True)
            .unique(subset="cidr", keep="first", maintain_order=True)
        )

        done = (
            [
                DomainPattern(PatternKind(kind), text)
                for text, kind in domains.iter_rows()
            ],
            [
                IPCidr(address, prefix)
                for _, address, prefix in cidrs.iter_rows()
            ],
        )
        self._final[key] = done
        return done

    def finalize_all(self) -> dict[str, tuple[list[DomainPattern], list[IPCidr]]]:  # noqa: D102
        return {category: self.finalize(category) for category in self.categories()}
