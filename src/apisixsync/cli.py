"""
Command-line interface for apisixsync.

Usage (examples):
  - Export the admin-plane configuration to apisix.yaml:
      apisixsync export --admin-url http://127.0.0.1:9180 --api-key KEY

  - Show what APISIX holds for an upstream:
      apisixsync instances svcA --admin-url http://127.0.0.1:9180 --api-key KEY

  - Push instances into an upstream (create or update):
      apisixsync sync svcA --node 10.0.0.1:8080=1 --node 10.0.0.2:8080=2 \
        --admin-url http://127.0.0.1:9180 --api-key KEY
      apisixsync sync svcA --instances ./instances.csv --template ./upstream.json.tpl
"""

from __future__ import annotations

import argparse
import csv
import sys
from pathlib import Path
from typing import Any, Dict, Iterable, List

from .core.admin_client import GatewayError
from .core.config import load_config
from .core.gateway import ApisixGateway
from .core.logging_setup import build_logger
from .core.nodes import Instance


def _read_instances_csv(path: str) -> List[Instance]:
    """
    CSV with header `address,port,weight` (weight optional, default 1).
    """
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Instances file not found: {path}")
    with p.open("r", encoding="utf-8-sig", newline="") as f:
        reader = csv.DictReader(f)
        columns = {c.strip() for c in (reader.fieldnames or []) if c}
        if not {"address", "port"} <= columns:
            raise ValueError(f"instances CSV needs address,port[,weight] columns: {path}")
        out: List[Instance] = []
        for lineno, row in enumerate(reader, start=2):
            row = {k.strip(): (v or "").strip() for k, v in row.items() if k is not None}
            try:
                out.append(Instance(address=row["address"], port=int(row["port"]), weight=float(row.get("weight") or 1)))
            except ValueError as e:
                raise ValueError(f"{path}:{lineno}: invalid instance row: {e}") from e
        return out


def _parse_node(spec: str) -> Instance:
    """`host:port[=weight]` -> Instance."""
    endpoint, _, weight = spec.partition("=")
    host, sep, port = endpoint.rpartition(":")
    if not sep or not host:
        raise argparse.ArgumentTypeError(f"expected host:port[=weight], got '{spec}'")
    try:
        return Instance(address=host, port=int(port), weight=float(weight or 1))
    except ValueError as e:
        raise argparse.ArgumentTypeError(f"invalid node '{spec}': {e}") from e


def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", default="", help="YAML config file (default: ./apisixsync.yml ...)")

    # Gateway / HTTP
    p.add_argument("--admin-url", default="", help="APISIX admin URL, e.g. http://127.0.0.1:9180")
    p.add_argument("--prefix", default="", help="Admin API path prefix (default /apisix/admin/)")
    p.add_argument("--api-key", default="", help="Admin API key (X-API-KEY)")
    p.add_argument("--timeout-sec", type=int, default=None, help="HTTP timeout seconds")
    p.add_argument("--verify-tls", default=None, choices=["true", "false"], help="Verify TLS (https)")

    # Logging
    p.add_argument("--logs-dir", default="", help="Logs base directory")
    p.add_argument("--console-level", default="", help="Console log level (INFO..CRITICAL)")
    p.add_argument("--file-level", default="", help="File log level (DEBUG..CRITICAL)")


def _build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="apisixsync", description="Sync discovered instances into APISIX")
    sub = p.add_subparsers(dest="cmd", required=True)

    e = sub.add_parser("export", help="Export admin API configuration to apisix.yaml")
    e.add_argument("--output", default="", help="Destination file (default: <tmp>/apisix.yaml)")
    _add_common(e)

    i = sub.add_parser("instances", help="List instances of an upstream as seen by APISIX")
    i.add_argument("name", help="Upstream name")
    _add_common(i)

    s = sub.add_parser("sync", help="Create or update an upstream from discovered instances")
    s.add_argument("name", help="Upstream name")
    s.add_argument("--instances", default="", help="CSV file with address,port,weight")
    s.add_argument("--node", action="append", type=_parse_node, default=[], help="host:port[=weight], repeatable")
    s.add_argument("--template", default="", help="Upstream creation template file ({{.Name}}, {{.Nodes}})")
    s.add_argument("--removed", action="append", type=_parse_node, default=[], help="host:port dropped by discovery, repeatable")
    _add_common(s)

    return p


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    gateway: Dict[str, Any] = {}
    if args.admin_url:
        gateway["admin_url"] = args.admin_url
    if args.prefix:
        gateway["prefix"] = args.prefix
    if args.api_key:
        gateway["api_key"] = args.api_key
    if args.timeout_sec is not None:
        gateway["timeout_sec"] = int(args.timeout_sec)
    if args.verify_tls is not None:
        gateway["verify_tls"] = args.verify_tls.lower() == "true"

    logging_cfg: Dict[str, Any] = {}
    if args.logs_dir:
        logging_cfg["base_dir"] = args.logs_dir
    if args.console_level:
        logging_cfg["console_level"] = args.console_level
    if args.file_level:
        logging_cfg["file_level"] = args.file_level

    out: Dict[str, Any] = {"gateway": gateway, "logging": logging_cfg}
    if getattr(args, "output", ""):
        out["export"] = {"path": args.output}
    return out


def _run(args: argparse.Namespace) -> int:
    load_kwargs: Dict[str, Any] = {}
    if args.config:
        load_kwargs["files"] = (args.config,)
    cfg = load_config(_overrides(args), **load_kwargs)

    logger = build_logger(
        run_id=cfg.run_id,
        action=args.cmd,
        base_dir=cfg.logging.base_dir,
        console_level=cfg.logging.console_level,
        file_level=cfg.logging.file_level,
        extra={"gateway": cfg.gateway.admin_url, "upstream": getattr(args, "name", None)},
    )
    logger.info("Starting apisixsync %s", args.cmd)
    gateway = ApisixGateway.from_config(cfg, logger=logger)

    if args.cmd == "export":
        export = gateway.export_snapshot()
        if export.skipped:
            print(f"WARNING: skipped {', '.join(export.skipped)}", file=sys.stderr)
        print(export.path)
        return 0

    if args.cmd == "instances":
        for ins in gateway.get_service_all_instances(args.name):
            print(f"{ins.address}:{ins.port} {ins.weight:g}")
        return 0

    # sync
    desired = list(args.node)
    if args.instances:
        desired.extend(_read_instances_csv(args.instances))
    template = Path(args.template).read_text(encoding="utf-8") if args.template else ""
    result = gateway.sync_instances(args.name, template, desired, args.removed)
    logger.info("Sync result: name=%s status=%s", result.name, result.status)
    print(f"{result.name} {result.status}")
    return 0 if result.ok else 2


def main(argv: Iterable[str] | None = None) -> int:
    parser = _build_arg_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return _run(args)
    except (GatewayError, ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
