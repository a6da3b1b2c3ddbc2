import enum
import ipaddress
from typing import NamedTuple

from geodat.errors import MalformedCidr

PROXY = "PROXY"
DIRECT = "DIRECT"
REJECT = "REJECT"
BUILTIN_CATEGORIES = (PROXY, DIRECT, REJECT)

# Ordered: the first matching substring wins.
POLICY_RULES: tuple[tuple[str, str], ...] = (
    ("reject", REJECT),
    ("proxy", PROXY),
    ("direct", DIRECT),
    ("domestic", DIRECT),
    ("other", DIRECT),
    ("\N{RED APPLE}", DIRECT),
)
DEFAULT_POLICY = DIRECT


class MatchKind(enum.Enum):  # noqa: D101
    KEYWORD = "keyword"
    SUFFIX = "suffix"
    FULL = "full"


class PatternKind(enum.IntEnum):
    """Domain type values of the router schema.

    The schema names them Plain, Regex, Domain and Full. ``KEYWORD`` is a
    substring match and ``SUFFIX`` matches the value or any subdomain of it.
    """

    KEYWORD = 0
    REGEX = 1
    SUFFIX = 2
    FULL = 3


class DomainRule(NamedTuple):  # noqa: D101
    kind: MatchKind
    value: str

    @classmethod
    def make(cls, kind: MatchKind, value: str) -> "DomainRule":  # noqa: D102
        if not value:
            msg = f"empty {kind.value} domain rule"
            raise ValueError(msg)
        return cls(kind, value)


class DomainPattern(NamedTuple):  # noqa: D101
    kind: PatternKind
    text: str


class IPCidr(NamedTuple):  # noqa: D101
    address: bytes
    prefix: int

    def __str__(self) -> str:  # noqa: D105
        return f"{ipaddress.ip_address(self.address)}/{self.prefix}"


def classify_policy(text: str) -> str:
    """Map the free-text policy field of a rule-conf line to a category."""
    lowered = text.lower()
    for needle, category in POLICY_RULES:
        if needle in lowered:
            return category
    return DEFAULT_POLICY


def _escape(value: str) -> str:
    # Only the first "*" becomes a wildcard; any later "*" stays literal.
    return value.replace(".", r"\.").replace("*", ".*", 1)


def normalize_domain(rule: DomainRule) -> DomainPattern:  # noqa: D103
    match rule.kind:
        case MatchKind.KEYWORD:
            return DomainPattern(PatternKind.KEYWORD, rule.value)
        case MatchKind.SUFFIX if not rule.value.startswith("."):
            return DomainPattern(PatternKind.SUFFIX, rule.value)
        case MatchKind.FULL:
            return DomainPattern(PatternKind.REGEX, f"^{_escape(rule.value)}$")
        case _:
            return DomainPattern(PatternKind.REGEX, _escape(rule.value))


def parse_cidr(text: str) -> IPCidr:
    """Parse ``address/prefix`` into packed address bytes and a prefix length.

    The prefix length is not range checked, so ``10.0.0.0/33`` is accepted.
    """
    address, sep, prefix = text.strip().partition("/")
    if not sep:
        raise MalformedCidr(text, "missing prefix length")
    try:
        packed = ipaddress.ip_address(address).packed
    except ValueError as exc:
        raise MalformedCidr(text, f"invalid address {address!r}") from exc
    if not (prefix.isascii() and prefix.isdigit()):
        raise MalformedCidr(text, f"invalid prefix length {prefix!r}")
    return IPCidr(packed, int(prefix))


def is_cidr(text: str) -> bool:
    """Whether ``text`` is ``address/prefix`` with a decimal prefix length.

    Agrees with ``parse_cidr``: netmask notation is not a CIDR here.
    """
    try:
        parse_cidr(text)
    except MalformedCidr:
        return False
    return True
