import logging
from collections.abc import Iterator, Mapping, Sequence
from typing import Any

import anyio
import orjson
from google.protobuf.message import DecodeError, Message

from geodat import schema
from geodat.errors import EncodeRoundTripFailure
from geodat.rules import BUILTIN_CATEGORIES, DomainPattern, IPCidr

logger = logging.getLogger(__name__)

Finalized = Mapping[str, tuple[Sequence[DomainPattern], Sequence[IPCidr]]]

STAGING_SUFFIX = ".tmp"


def _entries(rules: Finalized, index: int) -> Iterator[tuple[str, Sequence[Any]]]:
    """Yield (code, items) sorted by code; built-in categories always appear."""
    names = {category.upper(): category for category in rules}
    for code in sorted(names.keys() | set(BUILTIN_CATEGORIES)):
        items = rules[names[code]][index] if code in names else ()
        if items or code in BUILTIN_CATEGORIES:
            yield code, items


def build_site_list(rules: Finalized) -> Message:  # noqa: D103
    site_list = schema.GeoSiteList()
    for code, domains in _entries(rules, 0):
        entry = site_list.entry.add(country_code=code)
        for pattern in domains:
            entry.domain.add(type=int(pattern.kind), value=pattern.text)
    return site_list


def build_ip_list(rules: Finalized) -> Message:  # noqa: D103
    ip_list = schema.GeoIPList()
    for code, cidrs in _entries(rules, 1):
        entry = ip_list.entry.add(country_code=code)
        for cidr in cidrs:
            entry.cidr.add(ip=cidr.address, prefix=cidr.prefix)
    return ip_list


def decode_site_list(data: bytes) -> Message:  # noqa: D103
    return schema.GeoSiteList.FromString(data)


def decode_ip_list(data: bytes) -> Message:  # noqa: D103
    return schema.GeoIPList.FromString(data)


def summarize(message: Message) -> dict[str, int]:
    """Entry count per category code of a site or IP list."""
    return {
        entry.country_code: len(
            entry.domain if entry.DESCRIPTOR.name == "GeoSite" else entry.cidr
        )
        for entry in message.entry
    }


def staging_path(destination: anyio.Path) -> anyio.Path:  # noqa: D103
    return destination.with_name(destination.name + STAGING_SUFFIX)


async def write_verified(message: Message, destination: anyio.Path) -> anyio.Path:
    """Encode ``message`` into a staging file next to ``destination``.

    The staged bytes are read back and decoded again; anything that does not
    reproduce ``message`` raises ``EncodeRoundTripFailure``. Returns the
    staging path, see ``commit``.
    """
    staged = staging_path(destination)
    await staged.parent.mkdir(parents=True, exist_ok=True)
    await staged.write_bytes(message.SerializeToString())

    payload = await staged.read_bytes()
    try:
        decoded = type(message).FromString(payload)
    except DecodeError as exc:
        raise EncodeRoundTripFailure(str(destination), str(exc)) from exc
    if decoded != message:
        raise EncodeRoundTripFailure(
            str(destination), "decoded record differs from the encoded one"
        )

    logger.info(
        "encoded %s: %d categories, %d bytes",
        destination,
        len(decoded.entry),
        len(payload),
    )
    return staged


async def write_manifest(
    destination: anyio.Path, outputs: Mapping[str, Message]
) -> anyio.Path:
    """Stage a JSON manifest of per-category counts for each output file."""
    staged = staging_path(destination)
    await staged.parent.mkdir(parents=True, exist_ok=True)
    body: dict[str, Any] = {name: summarize(msg) for name, msg in outputs.items()}
    await staged.write_bytes(
        orjson.dumps(body, option=orjson.OPT_INDENT_2 | orjson.OPT_SORT_KEYS)
    )
    return staged


async def commit(staged: Sequence[anyio.Path]) -> None:  # noqa: D103
    for path in staged:
        await path.replace(path.with_name(path.name.removesuffix(STAGING_SUFFIX)))


async def discard(staged: Sequence[anyio.Path]) -> None:  # noqa: D103
    for path in staged:
        await path.unlink(missing_ok=True)
