import asyncio
import logging
from collections.abc import Mapping, Sequence

import anyio
from google.protobuf.message import Message

from geodat.config import Config, TargetConfig
from geodat.encoder import (
    STAGING_SUFFIX,
    build_ip_list,
    build_site_list,
    commit,
    discard,
    write_manifest,
    write_verified,
)
from geodat.errors import ConfigError
from geodat.merge import CategoryMerger
from geodat.parsers import RuleBatch
from geodat.sources import load_source, open_client

logger = logging.getLogger(__name__)


def merge_target(target: TargetConfig, batches: Mapping[str, RuleBatch]) -> CategoryMerger:
    """Feed the batches of ``target`` into a fresh merger, in declared order."""
    merger = CategoryMerger()
    for name in target.sources:
        merger.add_batch(batches[name], source=name)
    return merger


async def build_target(  # noqa: D103
    target: TargetConfig,
    batches: Mapping[str, RuleBatch],
    output_dir: anyio.Path,
    staged: list[anyio.Path],
) -> None:
    logger.info("building target %s", target.name)
    rules = merge_target(target, batches).finalize_all()

    outputs: dict[str, Message] = {}
    if target.geosite:
        outputs["geosite"] = build_site_list(rules)
        staged.append(
            await write_verified(outputs["geosite"], output_dir / target.geosite)
        )
    if target.geoip:
        outputs["geoip"] = build_ip_list(rules)
        staged.append(await write_verified(outputs["geoip"], output_dir / target.geoip))
    if target.manifest:
        staged.append(await write_manifest(output_dir / target.manifest, outputs))


def select_targets(config: Config, names: Sequence[str]) -> list[TargetConfig]:  # noqa: D103
    if unknown := sorted(set(names) - {target.name for target in config.targets}):
        msg = f"unknown targets: {', '.join(unknown)}"
        raise ConfigError(msg)
    return [target for target in config.targets if not names or target.name in names]


async def fetch_all(config: Config, names: Sequence[str]) -> dict[str, RuleBatch]:  # noqa: D103
    async with open_client() as client:
        batches = await asyncio.gather(
            *(load_source(client, config.source(name)) for name in names)
        )
    return dict(zip(names, batches, strict=True))


async def run(
    config: Config,
    *,
    targets: Sequence[str] = (),
    output_dir: str | None = None,
) -> list[anyio.Path]:
    """Build every selected target; outputs are replaced only if all succeed."""
    selected = select_targets(config, targets)
    needed = list(dict.fromkeys(name for t in selected for name in t.sources))
    batches = await fetch_all(config, needed)

    base = anyio.Path(output_dir or config.output_dir)
    staged: list[anyio.Path] = []
    try:
        for target in selected:
            await build_target(target, batches, base, staged)
        await commit(staged)
    except Exception:
        await discard(staged)
        raise

    written = [
        path.with_name(path.name.removesuffix(STAGING_SUFFIX)) for path in staged
    ]
    for path in written:
        logger.info("wrote %s", path)
    return written
