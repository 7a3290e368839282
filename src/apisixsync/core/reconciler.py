from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from .admin_client import AdminClient, GatewayError, GatewayRejection
from .nodes import Instance, NodeMap, from_node_map, node_map_json, to_node_map
from .normalizer import node_children
from .resource_cache import UpstreamIdCache

__all__ = [
    "DEFAULT_UPSTREAM_TEMPLATE",
    "SyncResult",
    "TemplateError",
    "UpstreamReconciler",
    "render_upstream_template",
]

DEFAULT_UPSTREAM_TEMPLATE = """
{
    "timeout": {
        "connect": 30,
        "send": 30,
        "read": 30
    },
    "name": "{{.Name}}",
    "nodes": {{.Nodes}},
    "type":"roundrobin",
    "desc": "auto sync by https://github.com/anjia0532/discovery-syncer"
}
"""

_PLACEHOLDER = re.compile(r"\{\{\s*\.([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")

NOOP = "NOOP"
CREATED = "CREATED"
UPDATED = "UPDATED"
REJECTED = "REJECTED"


class TemplateError(GatewayError, ValueError):
    """An upstream template references a placeholder we cannot fill."""


@dataclass(frozen=True)
class SyncResult:
    name: str
    status: str
    method: str = ""
    url: str = ""
    status_code: int = 0
    error: str = ""

    @property
    def ok(self) -> bool:
        return self.status != REJECTED


def render_upstream_template(template: Optional[str], name: str, nodes: NodeMap) -> str:
    """
    Fill `{{.Name}}` and `{{.Nodes}}` (the JSON-encoded node map).
    An empty template means the built-in default.
    """
    values = {"Name": name, "Nodes": node_map_json(nodes)}

    def repl(m: re.Match[str]) -> str:
        key = m.group(1)
        if key not in values:
            raise TemplateError(f"unknown placeholder '{{{{.{key}}}}}' in upstream template")
        return values[key]

    return _PLACEHOLDER.sub(repl, template or DEFAULT_UPSTREAM_TEMPLATE)


class UpstreamReconciler:
    """
    Pushes discovered instances into APISIX upstreams.

    Known upstream  -> PATCH <upstreams/id>/nodes with the full node map.
    Unknown upstream -> PUT upstreams/<name> with the rendered template.
    Gateway rejections (>= 400) are logged and returned as REJECTED results;
    transport errors propagate.
    """

    def __init__(
        self,
        client: AdminClient,
        *,
        cache: Optional[UpstreamIdCache] = None,
        default_template: str = "",
        logger: Optional[Union[logging.Logger, logging.LoggerAdapter]] = None,
    ) -> None:
        self.client = client
        self.cache = cache or UpstreamIdCache()
        self.default_template = default_template
        self.log = logger or logging.getLogger("as.reconciler")

    # ------------- Listing / lookup -------------

    def _records(self, payload: Any) -> List[Dict[str, Any]]:
        out: List[Dict[str, Any]] = []
        for child in node_children(payload):
            value = child.get("value")
            if not isinstance(value, dict):
                continue
            rec = dict(value)
            if child.get("key") is not None:
                rec.setdefault("key", child["key"])
            out.append(rec)
        return out

    def _list_upstreams(self) -> List[Dict[str, Any]]:
        records = self._records(self.client.get_json(self.cache.collection))
        self.cache.warm(records)
        return records

    def get_service_all_instances(self, name: str) -> List[Instance]:
        """
        Current instances of upstream `name` as APISIX sees them.
        Every upstream seen along the way is indexed into the cache.
        """
        with self.cache.lock:
            path = self.cache.get(name) or self.cache.collection
            records = self._records(self.client.get_json(path))
            self.cache.warm(records)

        instances: List[Instance] = []
        for rec in records:
            if rec.get("name") != name:
                continue
            instances.extend(from_node_map(rec.get("nodes")))
        self.log.debug("fetch apisix upstream: path=%s name=%s instances=%d", path, name, len(instances))
        return instances

    # ------------- Write path -------------

    def sync_instances(
        self,
        name: str,
        template: Optional[str],
        desired: Sequence[Instance],
        diff: Iterable[Instance] = (),
    ) -> SyncResult:
        # Writing an empty node set would blackhole traffic.
        if not desired and not list(diff):
            self.log.debug("No instances and no diff for upstream=%s, nothing to do", name)
            return SyncResult(name, NOOP)

        nodes = to_node_map(desired)

        # PATCH replaces the node set atomically, so `diff` is not needed past this point.
        with self.cache.lock:
            path = self.cache.get(name)
            if path is None:
                self._list_upstreams()
                path = self.cache.get(name)

            if path is not None:
                method, target, status = "PATCH", f"{path}/nodes", UPDATED
                body = node_map_json(nodes)
            else:
                method, target, status = "PUT", f"{self.cache.collection}/{name}", CREATED
                body = render_upstream_template(template or self.default_template, name, nodes)

            url = self.client.url_for(target)
            try:
                resp = self.client.send(method, target, body)
            except GatewayRejection as e:
                self.log.error(
                    "update apisix upstream uri:%s,method:%s,body:%s,resp:%s failed",
                    url, method, body, e.body[:600],
                )
                return SyncResult(name, REJECTED, method=method, url=url, status_code=e.status, error=str(e))

            if status == CREATED:
                self.cache.put(name, target)

        self.log.debug(
            "update apisix upstream uri:%s,method:%s,body:%s,resp:%s",
            url, method, body, resp.text[:600],
        )
        self.log.info("Upstream %s %s (%d nodes)", name, status.lower(), len(nodes))
        return SyncResult(name, status, method=method, url=url, status_code=resp.status_code)
