"""
Normalize APISIX admin "get resource" responses into flat record lists.

Two response shapes exist:

- PLUGIN_NAMES: `plugins/list` returns ["limit-count", "mqtt-proxy", ...].
  Each name becomes {"name": ...}; stream (L4) plugins also get "stream": True.
- NODE_TREE: everything else returns an etcd-like tree,
      {"node": {"nodes": [{"key": ..., "value": {...}}, ...]}}
  or a single resource {"node": {"key": ..., "value": {...}}}.
  APISIX v3 uses {"list": [{"key": ..., "value": {...}}]} and {"key": ..., "value": {...}}.
  Only the `value` maps are kept.
"""

from __future__ import annotations

import enum
import logging
from typing import Any, Dict, List, Optional

from .admin_client import AdminClient, DecodeError

__all__ = [
    "ResponseShape",
    "STREAM_PLUGINS",
    "shape_for",
    "plugin_records",
    "node_children",
    "node_values",
    "fetch_records",
]

Record = Dict[str, Any]

# Plugins that run in the stream (L4) subsystem rather than HTTP.
STREAM_PLUGINS = frozenset({"mqtt-proxy", "dubbo-proxy"})

log = logging.getLogger("as.normalizer")


class ResponseShape(enum.Enum):
    PLUGIN_NAMES = "plugin_names"
    NODE_TREE = "node_tree"


def shape_for(kind_path: str) -> ResponseShape:
    if "plugins/list" in kind_path:
        return ResponseShape.PLUGIN_NAMES
    return ResponseShape.NODE_TREE


def plugin_records(payload: Any, *, url: str = "") -> List[Record]:
    if not isinstance(payload, list) or not all(isinstance(n, str) for n in payload):
        raise DecodeError(url=url, body=str(payload)[:200], message="plugin list must be a JSON list of strings")
    out: List[Record] = []
    for name in payload:
        rec: Record = {"name": name}
        if name in STREAM_PLUGINS:
            rec["stream"] = True
        out.append(rec)
    return out


def node_children(payload: Any) -> List[Dict[str, Any]]:
    """
    Child nodes of a NODE_TREE payload, with a single resource folded into
    a one-element list. Unknown shapes give [].
    """
    if not isinstance(payload, dict):
        return []

    node = payload.get("node")
    if isinstance(node, dict):
        children = node.get("nodes")
        if isinstance(children, list):
            return [c for c in children if isinstance(c, dict)]
        if "value" in node:
            return [node]
        return []

    children = payload.get("list")
    if isinstance(children, list):
        return [c for c in children if isinstance(c, dict)]
    if "value" in payload:
        return [payload]
    return []


def node_values(payload: Any) -> List[Record]:
    """The `value` maps of every child; children without one are skipped."""
    return [c["value"] for c in node_children(payload) if isinstance(c.get("value"), dict)]


def fetch_records(client: AdminClient, kind_path: str, shape: Optional[ResponseShape] = None) -> List[Record]:
    """
    GET `kind_path` and normalize it. Transport/decode errors propagate
    (GatewayError subclasses).
    """
    shape = shape or shape_for(kind_path)
    payload = client.get_json(kind_path)
    if shape is ResponseShape.PLUGIN_NAMES:
        records = plugin_records(payload, url=client.url_for(kind_path))
    else:
        records = node_values(payload)
    log.debug("Fetched %s: shape=%s records=%d", kind_path, shape.value, len(records))
    return records
