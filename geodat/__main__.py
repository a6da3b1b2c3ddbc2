import argparse
import asyncio
import logging
import sys

from geodat.build import run
from geodat.config import load_config
from geodat.errors import GeodatError

logger = logging.getLogger("geodat")


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:  # noqa: D103
    parser = argparse.ArgumentParser(
        prog="geodat",
        description="Build geosite.dat and geoip.dat from rule lists.",
    )
    parser.add_argument(
        "-c",
        "--config",
        help="YAML configuration file (built-in sources when omitted)",
    )
    parser.add_argument("-o", "--output-dir", help="override the output directory")
    parser.add_argument(
        "-t",
        "--target",
        action="append",
        default=[],
        help="build only this target, may be repeated",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser.parse_args(argv)


async def main(argv: list[str] | None = None) -> int:  # noqa: D103
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        config = await load_config(args.config)
        await run(config, targets=args.target, output_dir=args.output_dir)
    except GeodatError as exc:
        logger.error("build failed: %s", exc)  # noqa: TRY400
        return 1
    return 0


def entrypoint() -> None:  # noqa: D103
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    entrypoint()
