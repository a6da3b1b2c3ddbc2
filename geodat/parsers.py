import io
import logging
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field
from urllib.parse import unquote

import polars as pl

from geodat.errors import MalformedLine, MalformedSource
from geodat.rules import (
    DIRECT,
    PROXY,
    DomainRule,
    MatchKind,
    classify_policy,
    is_cidr,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_DOMAIN = "placeholder.invalid"
PLACEHOLDER_CIDR = "0.0.0.0/32"

_SCHEME = re.compile(r"^[a-z][a-z0-9+.-]*://", re.IGNORECASE)
_SUPPLEMENTAL_START = "Supplemental List Start"
_SUPPLEMENTAL_END = "Supplemental List End"


@dataclass
class RuleBatch:
    """Unordered ``(category, rule)`` pairs produced by one parser run."""

    domains: list[tuple[str, DomainRule]] = field(default_factory=list)
    cidrs: list[tuple[str, str]] = field(default_factory=list)

    def extend(self, other: "RuleBatch") -> None:  # noqa: D102
        self.domains.extend(other.domains)
        self.cidrs.extend(other.cidrs)

    def categories(self) -> set[str]:  # noqa: D102
        return {category for category, _ in self.domains} | {
            category for category, _ in self.cidrs
        }


def iter_lines(text: str, comments: tuple[str, ...]) -> Iterator[str]:  # noqa: D103
    for raw in text.split("\n"):
        line = raw.replace("\r", "").strip()
        if line and not line.startswith(comments):
            yield line


def extract_host(value: str) -> str | None:
    """Reduce a URL-ish rule value to its host component.

    Returns ``None`` when what is left has no dot and so is not a host.
    """
    host = _SCHEME.sub("", unquote(value.strip()))
    host = re.split(r"[/?#]", host, maxsplit=1)[0]
    host = host.rpartition("@")[2]
    if host.startswith("["):
        host = host[1:].partition("]")[0]
    elif host.count(":") == 1:
        host = host.partition(":")[0]
    return host if "." in host else None


def parse_adblock(text: str, *, evict_excluded: bool = False) -> RuleBatch:  # noqa: C901
    """Parse a gfwlist style ad-block list.

    ``||host`` and bare lines are proxy suffix rules, ``|host`` is a proxy
    full rule and ``@@`` rules are direct. Bare lines inside the
    supplemental block and ``/regex/`` lines are skipped. With
    ``evict_excluded`` an ``@@`` rule also drops the same host from the
    proxy rules collected so far.
    """
    proxy: dict[str, DomainRule] = {}
    direct: dict[str, DomainRule] = {}
    supplemental = False

    for raw in text.split("\n"):
        line = raw.replace("\r", "").strip()
        if not line:
            continue
        if line.startswith(("!", "[")):
            if _SUPPLEMENTAL_START in line:
                supplemental = True
            elif supplemental and _SUPPLEMENTAL_END in line:
                supplemental = False
            continue

        if line.startswith("||"):
            kind, value, target = MatchKind.SUFFIX, line[2:], proxy
        elif line.startswith("|"):
            kind, value, target = MatchKind.FULL, line[1:], proxy
        elif line.startswith("@@"):
            value = line[2:]
            kind = MatchKind.SUFFIX if value.startswith("||") else MatchKind.FULL
            value, target = re.sub(r"^\|{1,2}", "", value), direct
        elif line.startswith("/") or supplemental:
            continue
        else:
            kind, value, target = MatchKind.SUFFIX, line, proxy

        if (host := extract_host(value)) is None:
            logger.debug("skipping ad-block line without a host: %s", line)
            continue
        if target is direct and evict_excluded:
            proxy.pop(host, None)
        target.setdefault(host, DomainRule.make(kind, host))

    return RuleBatch(
        domains=[(PROXY, rule) for rule in proxy.values()]
        + [(DIRECT, rule) for rule in direct.values()],
    )


def _parse_rule_conf_line(line: str) -> tuple[str, str, str] | None:
    fields = [part.strip() for part in line.split(",")]
    option = fields[0].upper()
    if not option.startswith(("DOMAIN", "IP-CIDR")):
        return None
    if len(fields) < 3 or not fields[1]:  # noqa: PLR2004
        raise MalformedLine(line)
    return option, fields[1], classify_policy(fields[2])


def parse_rule_conf(text: str) -> RuleBatch:  # noqa: D103
    batch = RuleBatch()
    for line in iter_lines(text, ("#", "//", ";")):
        try:
            parsed = _parse_rule_conf_line(line)
        except MalformedLine:
            logger.debug("skipping malformed rule-conf line: %s", line)
            continue
        if parsed is None:
            continue

        option, value, category = parsed
        if option.startswith("IP-CIDR"):
            batch.cidrs.append((category, value))
        elif option.endswith("KEYWORD"):
            batch.domains.append((category, DomainRule(MatchKind.KEYWORD, value)))
        elif option.endswith("SUFFIX"):
            batch.domains.append((category, DomainRule(MatchKind.SUFFIX, value)))
        else:
            batch.domains.append((category, DomainRule(MatchKind.FULL, value)))
    return batch


def parse_override(text: str, category: str, *, custom: bool = False) -> RuleBatch:
    """Parse a hand maintained list of one domain suffix or CIDR per line.

    A custom list that yields no domains (or no CIDRs) gets an unmatchable
    placeholder so the category still exists in both outputs.
    """
    batch = RuleBatch()
    for line in iter_lines(text, ("#",)):
        if is_cidr(line):
            batch.cidrs.append((category, line))
        else:
            batch.domains.append((category, DomainRule(MatchKind.SUFFIX, line)))

    if custom and not batch.domains:
        batch.domains.append(
            (category, DomainRule(MatchKind.SUFFIX, PLACEHOLDER_DOMAIN)),
        )
    if custom and not batch.cidrs:
        batch.cidrs.append((category, PLACEHOLDER_CIDR))
    return batch


def _read_csv(data: bytes, source: str, columns: Iterable[str]) -> pl.DataFrame:
    frame = pl.read_csv(io.BytesIO(data), infer_schema_length=0)
    if missing := sorted(set(columns) - set(frame.columns)):
        raise MalformedSource(source, f"missing columns {', '.join(missing)}")
    return frame


def parse_geolite(
    locations: bytes,
    blocks: Iterable[bytes],
    *,
    source: str = "geolite",
) -> RuleBatch:
    """Join GeoLite2 country locations with network blocks.

    Produces one CIDR rule per block row, keyed by the upper-cased ISO
    country code. Rows without a known country are dropped.
    """
    countries = (
        _read_csv(locations, source, ("geoname_id", "country_iso_code"))
        .select("geoname_id", pl.col("country_iso_code").str.to_uppercase())
        .filter(
            pl.col("country_iso_code").is_not_null()
            & (pl.col("country_iso_code") != ""),
        )
        .unique(subset="geoname_id", keep="first", maintain_order=True)
    )

    batch = RuleBatch()
    for data in blocks:
        joined = (
            _read_csv(data, source, ("network", "geoname_id"))
            .select("network", "geoname_id")
            .join(countries, on="geoname_id", how="inner")
        )
        batch.cidrs.extend(
            (country, network)
            for network, country in joined.select(
                "network", "country_iso_code"
            ).iter_rows()
            if network
        )
    return batch
