"""Parallel multi-region topology discovery."""

import threading
from concurrent.futures import Future, wait
from typing import Any, Dict, List

from botocore.exceptions import BotoCoreError, ClientError

from rdsconnect.errors import AuthorizationExpiredError, DiscoveryFailedError
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import (
    ClusterRecord,
    ClusterTopology,
    DiscoveryResult,
    EndpointRecord,
    EndpointRole,
    InstanceRecord,
)
from rdsconnect.services.aws_gateway import is_authorization_expired
from rdsconnect.services.topology_cache import sort_topologies


def engine_supported(engine: str, engines: List[str]) -> bool:
    engine = (engine or "").lower()
    for family in engines:
        family = family.lower()
        if family == "aurora" and engine.startswith("aurora"):
            return True
        if engine == family:
            return True
    return False


def build_region_topology(
    region: str,
    clusters: List[Dict[str, Any]],
    instances: List[Dict[str, Any]],
    engines: List[str],
    logger=None,
) -> List[ClusterTopology]:
    """Join raw ``DescribeDBClusters``/``DescribeDBInstances`` items for one region."""
    topologies: Dict[str, ClusterTopology] = {}

    for cluster in clusters:
        cluster_id = cluster.get("DBClusterIdentifier")
        if not cluster_id or not engine_supported(cluster.get("Engine", ""), engines):
            continue

        topology = ClusterTopology(cluster=ClusterRecord(cluster_id=cluster_id, region=region))
        reader_endpoint = cluster.get("ReaderEndpoint")
        writer_endpoint = cluster.get("Endpoint")
        if reader_endpoint:
            topology.endpoints.append(
                EndpointRecord(cluster_id=cluster_id, role=EndpointRole.READER, address=reader_endpoint)
            )
        if writer_endpoint:
            topology.endpoints.append(
                EndpointRecord(cluster_id=cluster_id, role=EndpointRole.WRITER, address=writer_endpoint)
            )
        topologies[cluster_id] = topology

    orphans = 0
    for instance in instances:
        cluster_id = instance.get("DBClusterIdentifier")
        if not cluster_id:
            continue
        owner = topologies.get(cluster_id)
        if owner is None:
            orphans += 1
            continue

        endpoint = instance.get("Endpoint") or {}
        address = endpoint.get("Address") if isinstance(endpoint, dict) else endpoint
        if not address:
            continue

        owner.instances.append(
            InstanceRecord(
                cluster_id=cluster_id,
                instance_id=instance.get("DBInstanceIdentifier", ""),
                address=address,
                instance_class=instance.get("DBInstanceClass", ""),
            )
        )

    if orphans and logger is not None:
        logger.debug("Dropped %s instance(s) in %s whose cluster is not discoverable.", orphans, region)

    return list(topologies.values())


class DiscoveryService:
    """Lists clusters and instances in every configured region concurrently."""

    def __init__(self, gateway, settings, logger):
        self.gateway = gateway
        self.settings = settings
        self.logger = logger

    def _discover_region(self, region: str) -> List[ClusterTopology]:
        self.logger.debug("Checking region: %s", region)
        clusters = self.gateway.list_clusters(region)
        instances = self.gateway.list_instances(region)
        return build_region_topology(region, clusters, instances, self.settings.engines, self.logger)

    def _run_region(self, region: str, future: Future):
        if not future.set_running_or_notify_cancel():
            return
        try:
            future.set_result(self._discover_region(region))
        except Exception as exc:
            future.set_exception(exc)

    def _start_region(self, region: str) -> Future:
        """Run one region on a daemon thread so a hung call never blocks exit."""
        future: Future = Future()
        worker = threading.Thread(
            target=self._run_region,
            args=(region, future),
            name=f"discover-{region}",
            daemon=True,
        )
        worker.start()
        return future

    def discover(self) -> DiscoveryResult:
        regions = list(self.settings.regions)
        collected: List[ClusterTopology] = []
        failures: Dict[str, str] = {}
        expired = False

        future_to_region = {self._start_region(region): region for region in regions}
        done, not_done = wait(future_to_region, timeout=self.settings.region_timeout_seconds)

        for future in not_done:
            region = future_to_region[future]
            failures[region] = f"timed out after {self.settings.region_timeout_seconds}s"

        for future in done:
            region = future_to_region[future]
            try:
                collected.extend(future.result())
            except (BotoCoreError, ClientError) as exc:
                expired = expired or is_authorization_expired(exc)
                failures[region] = str(exc)
            except Exception as exc:
                self.logger.debug("Unexpected discovery failure in %s", region, exc_info=True)
                failures[region] = str(exc)

        for region in regions:
            if region in failures:
                self.logger.warning("Discovery failed in %s: %s", region, failures[region])

        if len(failures) == len(regions):
            if expired:
                raise AuthorizationExpiredError(
                    actionable_error(
                        "authorization_expired",
                        action="list RDS clusters",
                        profile=self.gateway.profile,
                    )
                )
            raise DiscoveryFailedError(
                actionable_error("discovery_failed", regions=", ".join(regions))
            )

        topologies = sort_topologies(collected)
        self.logger.info(
            "Scan complete. Found %s clusters and %s instances.",
            len(topologies),
            sum(len(topology.instances) for topology in topologies),
        )
        return DiscoveryResult(topologies=topologies, failed_regions=failures)
