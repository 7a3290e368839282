"""
Export the APISIX admin-plane configuration to a standalone `apisix.yaml`.

Each resource kind is fetched and normalized, stored under its section of a
ConfigSnapshot, dumped to YAML and wrapped in the auto-generation banner.
A kind that fails to fetch is logged and left out; the export still succeeds.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

import yaml

from .admin_client import AdminClient, GatewayError
from .normalizer import ResponseShape, fetch_records, shape_for

__all__ = [
    "ResourceKind",
    "RESOURCE_KINDS",
    "ConfigSnapshot",
    "SnapshotExport",
    "SnapshotAssembler",
    "ExportError",
    "DEFAULT_SNAPSHOT_PATH",
    "DEFAULT_PROVENANCE",
    "render_banner",
    "parse_kinds",
]

Record = Dict[str, Any]

DEFAULT_PROVENANCE = "https://github.com/anjia0532/discovery-syncer"
DEFAULT_SNAPSHOT_PATH = os.path.join(tempfile.gettempdir(), "apisix.yaml")

_BANNER = """
# Auto generate by {provenance}, Don't Modify

{body}
#END
"""


class ExportError(GatewayError):
    """The snapshot could not be serialized or written."""


@dataclass(frozen=True)
class ResourceKind:
    path: str
    section: str
    shape: ResponseShape = ResponseShape.NODE_TREE


RESOURCE_KINDS: Tuple[ResourceKind, ...] = (
    ResourceKind("routes", "routes"),
    ResourceKind("services", "services"),
    ResourceKind("upstreams", "upstreams"),
    ResourceKind("plugins/list", "plugins", ResponseShape.PLUGIN_NAMES),
    ResourceKind("ssl", "ssl"),
    ResourceKind("global_rules", "global_rules"),
    ResourceKind("consumers", "consumers"),
    ResourceKind("plugin_metadata", "plugin_metadata"),
    ResourceKind("stream_routes", "stream_routes"),
)


def _section_setter(section: str) -> Callable[["ConfigSnapshot", List[Record]], None]:
    def setter(snapshot: "ConfigSnapshot", records: List[Record]) -> None:
        snapshot.sections[section] = records
    return setter


class ConfigSnapshot:
    """
    Ordered aggregation of resource collections, one section per kind.
    Sections are assigned through an explicit kind-path -> setter table.
    """

    def __init__(self, kinds: Sequence[ResourceKind] = RESOURCE_KINDS) -> None:
        self.sections: Dict[str, List[Record]] = {}
        self._setters = {k.path: _section_setter(k.section) for k in kinds}

    def assign(self, kind_path: str, records: List[Record]) -> bool:
        setter = self._setters.get(kind_path)
        if setter is None:
            return False
        setter(self, records)
        return True

    def to_json(self) -> str:
        return json.dumps(self.sections, ensure_ascii=False)

    def to_yaml(self) -> str:
        # JSON first so the YAML only ever holds plain JSON types.
        data = json.loads(self.to_json())
        return yaml.safe_dump(data, sort_keys=False, allow_unicode=True, default_flow_style=False)


@dataclass
class SnapshotExport:
    text: str
    path: str
    sections: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


def render_banner(body: str, provenance: str = DEFAULT_PROVENANCE) -> str:
    return _BANNER.format(provenance=provenance, body=body)


def parse_kinds(raw: Optional[Sequence[Union[ResourceKind, Dict[str, Any], str]]]) -> Tuple[ResourceKind, ...]:
    """
    Build the kind table from config: entries are ResourceKind, "path" or
    {"path": ..., "section": ...}. Empty means the built-in table.
    """
    if not raw:
        return RESOURCE_KINDS
    out: List[ResourceKind] = []
    for item in raw:
        if isinstance(item, ResourceKind):
            out.append(item)
        elif isinstance(item, str):
            out.append(ResourceKind(item, item.split("/", 1)[0], shape_for(item)))
        elif isinstance(item, dict) and item.get("path"):
            path = str(item["path"])
            out.append(ResourceKind(path, str(item.get("section") or path.split("/", 1)[0]), shape_for(path)))
        else:
            raise ValueError(f"export.kinds entry needs a 'path': {item!r}")
    return tuple(out)


class SnapshotAssembler:
    def __init__(
        self,
        client: AdminClient,
        *,
        kinds: Sequence[ResourceKind] = RESOURCE_KINDS,
        path: str = DEFAULT_SNAPSHOT_PATH,
        provenance: str = DEFAULT_PROVENANCE,
        max_workers: int = 1,
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.client = client
        self.kinds = tuple(kinds)
        self.path = path or DEFAULT_SNAPSHOT_PATH
        self.provenance = provenance or DEFAULT_PROVENANCE
        self.max_workers = max(1, int(max_workers))
        self.log = logger or logging.getLogger("as.snapshot")

    def _fetch(self, kind: ResourceKind) -> Union[List[Record], GatewayError]:
        try:
            return fetch_records(self.client, kind.path, kind.shape)
        except GatewayError as e:
            return e

    def collect(self) -> Tuple[ConfigSnapshot, List[str]]:
        """Fetch every kind; returns the snapshot and the kinds that failed."""
        if self.max_workers > 1:
            with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
                results = list(pool.map(self._fetch, self.kinds))
        else:
            results = [self._fetch(k) for k in self.kinds]

        snapshot = ConfigSnapshot(self.kinds)
        skipped: List[str] = []
        # Assignment stays on this thread, in table order.
        for kind, result in zip(self.kinds, results):
            if isinstance(result, GatewayError):
                self.log.error("[admin_api_to_yaml] fetch error, uri:%s err:%s", kind.path, result)
                skipped.append(kind.path)
                continue
            snapshot.assign(kind.path, result)
        return snapshot, skipped

    def export(self) -> SnapshotExport:
        snapshot, skipped = self.collect()

        try:
            body = snapshot.to_yaml()
        except (TypeError, ValueError, yaml.YAMLError) as e:
            self.log.error("[admin_api_to_yaml] convert to yaml error, err:%s", e)
            raise ExportError(f"failed to render snapshot: {e}") from e

        text = render_banner(body, self.provenance)
        try:
            Path(self.path).write_text(text, encoding="utf-8")
        except OSError as e:
            self.log.error("[admin_api_to_yaml] failed to write %s, err:%s", self.path, e)
            raise ExportError(f"failed to write snapshot to {self.path}: {e}") from e

        self.log.info(
            "Snapshot written: path=%s sections=%d skipped=%s",
            self.path, len(snapshot.sections), ",".join(skipped) or "-",
        )
        return SnapshotExport(text=text, path=self.path, sections=list(snapshot.sections), skipped=skipped)
