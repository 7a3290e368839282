"""
ApisixGateway: the three operations a discovery syncer needs from APISIX.

    gw = ApisixGateway.from_config(cfg, logger=logger)
    gw.get_service_all_instances("svcA")
    gw.sync_instances("svcA", "", desired, diff)
    text, path = gw.fetch_admin_api_to_file()
"""

from __future__ import annotations

import logging
from typing import Iterable, List, Optional, Sequence, Tuple, Union

from .admin_client import AdminClient
from .config import AppConfig
from .nodes import Instance
from .reconciler import SyncResult, UpstreamReconciler
from .resource_cache import UpstreamIdCache
from .snapshot import RESOURCE_KINDS, ResourceKind, SnapshotAssembler, SnapshotExport, parse_kinds

__all__ = ["ApisixGateway"]

LoggerLike = Union[logging.Logger, logging.LoggerAdapter]


class ApisixGateway:
    def __init__(
        self,
        client: AdminClient,
        *,
        upstream_template: str = "",
        snapshot_path: str = "",
        provenance: str = "",
        kinds: Sequence[ResourceKind] = RESOURCE_KINDS,
        concurrency: int = 1,
        logger: Optional[LoggerLike] = None,
    ) -> None:
        self.client = client
        self.cache = UpstreamIdCache()
        self.reconciler = UpstreamReconciler(
            client, cache=self.cache, default_template=upstream_template, logger=logger,
        )
        self.assembler = SnapshotAssembler(
            client,
            kinds=kinds,
            path=snapshot_path,
            provenance=provenance,
            max_workers=concurrency,
            logger=logger,
        )

    @classmethod
    def from_config(cls, cfg: AppConfig, *, logger: Optional[LoggerLike] = None) -> "ApisixGateway":
        gw = cfg.gateway
        client = AdminClient(
            gw.admin_url,
            gw.prefix,
            api_key=gw.api_key,
            timeout_sec=gw.timeout_sec,
            verify_tls=gw.verify_tls,
            logger=logger,
        )
        return cls(
            client,
            upstream_template=gw.upstream_template,
            snapshot_path=cfg.export.path,
            provenance=cfg.export.provenance,
            kinds=parse_kinds(cfg.export.kinds),
            concurrency=cfg.app.concurrency,
            logger=logger,
        )

    def get_service_all_instances(self, upstream_name: str) -> List[Instance]:
        return self.reconciler.get_service_all_instances(upstream_name)

    def sync_instances(
        self,
        name: str,
        template: Optional[str],
        desired: Sequence[Instance],
        diff: Iterable[Instance] = (),
    ) -> SyncResult:
        return self.reconciler.sync_instances(name, template, desired, diff)

    def export_snapshot(self) -> SnapshotExport:
        return self.assembler.export()

    def fetch_admin_api_to_file(self) -> Tuple[str, str]:
        """Write the admin-API snapshot; returns (rendered text, file path)."""
        export = self.assembler.export()
        return export.text, export.path
