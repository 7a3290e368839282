"""
Instances <-> APISIX node map.

The node map is the wire form APISIX accepts for `nodes`:
    {"10.0.0.1:8080": 1, "10.0.0.2:8080": 2}
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Union

__all__ = ["Instance", "NodeMap", "node_key", "to_node_map", "from_node_map", "node_map_json"]

NodeMap = Dict[str, float]

log = logging.getLogger("as.nodes")


@dataclass(frozen=True)
class Instance:
    """One discovered backend endpoint."""
    address: str
    port: int
    weight: float = 1.0


def node_key(address: str, port: int) -> str:
    return f"{address}:{port}"


def to_node_map(instances: Iterable[Instance]) -> NodeMap:
    """
    Build the node map. Duplicate address:port keys keep the last weight.
    Weights are passed through untouched (no clamping).
    """
    nodes: NodeMap = {}
    for ins in instances:
        nodes[node_key(ins.address, ins.port)] = ins.weight
    return nodes


def node_map_json(nodes: NodeMap) -> str:
    """JSON body for `nodes`. APISIX weights are integers, so whole numbers go out as 1, not 1.0."""
    return json.dumps({k: int(w) if float(w).is_integer() else w for k, w in nodes.items()})


def from_node_map(nodes: Union[Mapping[str, Any], List[Any], None]) -> List[Instance]:
    """
    Parse `nodes` back into instances.

    Accepts the hash form ({"host:port": weight}) and the list form
    ([{"host": ..., "port": ..., "weight": ...}]) that APISIX also stores.
    Malformed entries are skipped with a warning.
    """
    out: List[Instance] = []
    if isinstance(nodes, list):
        for item in nodes:
            try:
                out.append(Instance(address=str(item["host"]), port=int(item["port"]), weight=float(item.get("weight", 1))))
            except (KeyError, TypeError, ValueError, AttributeError):
                log.warning("Skipping malformed node entry %r", item)
        return out

    for key, weight in (nodes or {}).items():
        host, _, port = str(key).rpartition(":")
        if not host:
            log.warning("Skipping node entry without port %r", key)
            continue
        try:
            out.append(Instance(address=host, port=int(port), weight=float(weight)))
        except (TypeError, ValueError):
            log.warning("Skipping malformed node entry %r=%r", key, weight)
    return out
