from dataclasses import dataclass
from typing import Any

import anyio
import yaml

from geodat.errors import ConfigError

SOURCE_KINDS = frozenset({"adblock", "rule-conf", "override", "geolite"})
PROVENANCES = frozenset({"official", "custom"})

_LHIE1 = "https://github.com/lhie1/Surge/raw/master"
_GEOLITE = "./geolite/GeoLite2-Country"

DEFAULT_CONFIG: dict[str, Any] = {
    "output_dir": ".",
    "sources": [
        {
            "name": "gfwlist",
            "kind": "adblock",
            "url": "https://github.com/gfwlist/gfwlist/raw/master/gfwlist.txt",
            "base64": True,
        },
        *(
            {
                "name": f"lhie1-{name.lower()}",
                "kind": "rule-conf",
                "url": f"{_LHIE1}/{name}.conf",
            }
            for name in ("Basics", "DIRECT", "PROXY", "REJECT")
        ),
        {
            "name": "custom",
            "kind": "override",
            "path": "./custom",
            "provenance": "official",
        },
        {
            "name": "geolite",
            "kind": "geolite",
            "locations": f"{_GEOLITE}-Locations-en.csv",
            "blocks": [f"{_GEOLITE}-Blocks-IPv4.csv", f"{_GEOLITE}-Blocks-IPv6.csv"],
        },
    ],
    "targets": [
        {
            "name": "gfwlist",
            "geosite": "gfwlist/geosite.dat",
            "sources": ["gfwlist", "custom"],
        },
        {
            "name": "surge",
            "geosite": "geosite.dat",
            "geoip": "geoip.dat",
            "manifest": "manifest.json",
            "sources": [
                "lhie1-basics",
                "lhie1-direct",
                "lhie1-proxy",
                "lhie1-reject",
                "custom",
                "geolite",
            ],
        },
    ],
}


@dataclass(frozen=True)
class SourceConfig:
    """One rule source.

    ``url`` is fetched (``file://`` and plain paths are read from disk).
    ``path`` of an override source may be a single file or a directory of
    files, each file stem naming its category.
    """

    name: str
    kind: str
    url: str | None = None
    path: str | None = None
    base64: bool = False
    evict_excluded: bool = False
    category: str | None = None
    provenance: str = "official"
    prefix: str = ""
    locations: str | None = None
    blocks: tuple[str, ...] = ()


@dataclass(frozen=True)
class TargetConfig:  # noqa: D101
    name: str
    sources: tuple[str, ...]
    geosite: str | None = None
    geoip: str | None = None
    manifest: str | None = None


@dataclass(frozen=True)
class Config:  # noqa: D101
    output_dir: str = "."
    sources: tuple[SourceConfig, ...] = ()
    targets: tuple[TargetConfig, ...] = ()

    def source(self, name: str) -> SourceConfig:  # noqa: D102
        for item in self.sources:
            if item.name == name:
                return item
        msg = f"unknown source {name!r}"
        raise ConfigError(msg)


def _check_source(item: SourceConfig) -> SourceConfig:
    if item.kind not in SOURCE_KINDS:
        msg = f"source {item.name!r}: unknown kind {item.kind!r}"
        raise ConfigError(msg)
    if item.provenance not in PROVENANCES:
        msg = f"source {item.name!r}: unknown provenance {item.provenance!r}"
        raise ConfigError(msg)
    match item.kind:
        case "adblock" | "rule-conf" if not item.url:
            msg = f"source {item.name!r}: {item.kind} needs a url"
            raise ConfigError(msg)
        case "override" if not (item.path or item.url):
            msg = f"source {item.name!r}: override needs a path or url"
            raise ConfigError(msg)
        case "override" if item.url and not item.category:
            msg = f"source {item.name!r}: override url needs a category"
            raise ConfigError(msg)
        case "geolite" if not (item.locations and item.blocks):
            msg = f"source {item.name!r}: geolite needs locations and blocks"
            raise ConfigError(msg)
    return item


def parse_config(raw: dict[str, Any]) -> Config:  # noqa: D103
    if not isinstance(raw, dict):
        msg = "configuration must be a mapping"
        raise ConfigError(msg)
    try:
        sources = tuple(
            _check_source(
                SourceConfig(**{**item, "blocks": tuple(item.get("blocks", ()))}),
            )
            for item in raw.get("sources", [])
        )
        targets = tuple(
            TargetConfig(**{**item, "sources": tuple(item.get("sources", ()))})
            for item in raw.get("targets", [])
        )
    except (TypeError, AttributeError) as exc:
        raise ConfigError(str(exc)) from exc

    names = [item.name for item in sources]
    if len(names) != len(set(names)):
        msg = "source names must be unique"
        raise ConfigError(msg)
    for target in targets:
        if not (target.geosite or target.geoip):
            msg = f"target {target.name!r} writes neither geosite nor geoip"
            raise ConfigError(msg)
        if unknown := sorted(set(target.sources) - set(names)):
            msg = f"target {target.name!r}: unknown sources {', '.join(unknown)}"
            raise ConfigError(msg)

    return Config(
        output_dir=str(raw.get("output_dir", ".")),
        sources=sources,
        targets=targets,
    )


async def load_config(path: str | None) -> Config:
    """Read a YAML configuration, or the built-in one when ``path`` is None."""
    if path is None:
        return parse_config(DEFAULT_CONFIG)
    config_path = anyio.Path(path)
    if not await config_path.exists():
        msg = f"configuration file {path} does not exist"
        raise ConfigError(msg)
    try:
        raw = yaml.safe_load(await config_path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        msg = f"invalid YAML in {path}: {exc}"
        raise ConfigError(msg) from exc
    return parse_config(raw or {})
