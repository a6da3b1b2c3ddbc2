import base64
import binascii
import logging
from urllib.parse import unquote, urlsplit

import anyio
import httpx

from geodat.config import SourceConfig
from geodat.errors import MalformedSource, SourceUnavailable
from geodat.parsers import (
    RuleBatch,
    parse_adblock,
    parse_geolite,
    parse_override,
    parse_rule_conf,
)

logger = logging.getLogger(__name__)


def open_client() -> httpx.AsyncClient:  # noqa: D103
    return httpx.AsyncClient(
        timeout=httpx.Timeout(10.0, pool=30.0),
        limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        http2=True,
        follow_redirects=True,
    )


def _local_path(location: str) -> anyio.Path | None:
    if location.startswith("file://"):
        return anyio.Path(unquote(urlsplit(location).path))
    if "://" not in location:
        return anyio.Path(location)
    return None


async def fetch_bytes(client: httpx.AsyncClient, location: str, *, source: str) -> bytes:
    """Read a ``file://`` URL or plain path from disk, anything else over HTTP."""
    if (path := _local_path(location)) is not None:
        try:
            return await path.read_bytes()
        except OSError as exc:
            raise SourceUnavailable(source, f"{location}: {exc}") from exc

    try:
        resp = await client.get(location)
        resp.raise_for_status()
    except httpx.HTTPError as exc:
        raise SourceUnavailable(source, f"{location}: {exc}") from exc
    return resp.content


async def fetch_text(
    client: httpx.AsyncClient,
    location: str,
    *,
    source: str,
    encoded: bool = False,
) -> str:
    """Fetch ``location`` as text, base64-decoding it first when ``encoded``."""
    payload = await fetch_bytes(client, location, source=source)
    if encoded:
        try:
            payload = base64.b64decode(payload)
        except (binascii.Error, ValueError) as exc:
            raise MalformedSource(source, f"invalid base64: {exc}") from exc
    try:
        return payload.decode("utf-8")
    except UnicodeDecodeError as exc:
        logger.debug("replacing invalid utf-8 in %s: %s", source, exc)
        return payload.decode("utf-8", errors="replace")


def category_of(filename: str, prefix: str = "") -> str:
    """Category named by an override file: its name up to the first dot."""
    return prefix + filename.split(".", 1)[0]


async def load_override_dir(
    client: httpx.AsyncClient, directory: anyio.Path, source: SourceConfig
) -> RuleBatch:
    batch = RuleBatch()
    files = sorted(
        [path async for path in directory.iterdir() if not path.name.startswith(".")],
        key=lambda path: path.name,
    )
    for path in files:
        if not await path.is_file():
            continue
        text = await fetch_text(client, str(path), source=source.name)
        category = category_of(path.name, source.prefix)
        batch.extend(
            parse_override(text, category, custom=source.provenance == "custom"),
        )
        logger.debug("loaded override file %s as %s", path, category)
    return batch


async def load_source(client: httpx.AsyncClient, source: SourceConfig) -> RuleBatch:  # noqa: D103
    logger.info("loading %s source %s", source.kind, source.name)
    match source.kind:
        case "adblock":
            text = await fetch_text(
                client, source.url, source=source.name, encoded=source.base64
            )
            batch = parse_adblock(text, evict_excluded=source.evict_excluded)
        case "rule-conf":
            text = await fetch_text(
                client, source.url, source=source.name, encoded=source.base64
            )
            batch = parse_rule_conf(text)
        case "override":
            location = source.path or source.url
            path = _local_path(location)
            if path is not None and await path.is_dir():
                batch = await load_override_dir(client, path, source)
            else:
                text = await fetch_text(
                    client, location, source=source.name, encoded=source.base64
                )
                category = source.category or category_of(
                    anyio.Path(location).name, source.prefix
                )
                batch = parse_override(
                    text, category, custom=source.provenance == "custom"
                )
        case "geolite":
            locations = await fetch_bytes(client, source.locations, source=source.name)
            blocks = [
                await fetch_bytes(client, location, source=source.name)
                for location in source.blocks
            ]
            batch = parse_geolite(locations, blocks, source=source.name)
        case _:
            msg = f"unknown source kind {source.kind!r}"
            raise ValueError(msg)

    logger.info(
        "parsed %s: %d domain rules, %d ip rules in %d categories",
        source.name,
        len(batch.domains),
        len(batch.cidrs),
        len(batch.categories()),
    )
    return batch
