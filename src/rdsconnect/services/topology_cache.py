"""On-disk topology cache, one file per identity context."""

import os
from typing import Dict, List

from rdsconnect.errors import CacheUnavailableError
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import (
    ClusterRecord,
    ClusterTopology,
    EndpointRecord,
    EndpointRole,
    InstanceRecord,
)

CLUSTER_TAG = "CLUSTER"
ENDPOINT_TAG = "ENDPOINT"
INSTANCE_TAG = "INSTANCE"
SEPARATOR = "|"

_ENDPOINT_ORDER = {EndpointRole.READER: 0, EndpointRole.WRITER: 1}


def sort_topologies(topologies: List[ClusterTopology]) -> List[ClusterTopology]:
    """Return topologies in the canonical cache order."""
    ordered = []
    for topology in sorted(topologies, key=lambda item: (item.cluster_id, item.region)):
        ordered.append(
            ClusterTopology(
                cluster=topology.cluster,
                endpoints=sorted(topology.endpoints, key=lambda item: _ENDPOINT_ORDER[item.role]),
                instances=sorted(topology.instances, key=lambda item: item.instance_id),
            )
        )
    return ordered


def render(topologies: List[ClusterTopology]) -> str:
    lines: List[str] = []
    for topology in sort_topologies(topologies):
        lines.append(SEPARATOR.join([CLUSTER_TAG, topology.cluster_id, topology.region]))
        for endpoint in topology.endpoints:
            lines.append(
                SEPARATOR.join([ENDPOINT_TAG, endpoint.cluster_id, endpoint.role.value, endpoint.address])
            )
        for instance in topology.instances:
            lines.append(
                SEPARATOR.join(
                    [
                        INSTANCE_TAG,
                        instance.cluster_id,
                        instance.instance_id,
                        instance.address,
                        instance.instance_class,
                    ]
                )
            )
    return "".join(f"{line}\n" for line in lines)


def parse(content: str) -> List[ClusterTopology]:
    """Parse cache text; raises ``ValueError`` on malformed records."""
    topologies: List[ClusterTopology] = []
    by_cluster: Dict[str, ClusterTopology] = {}

    for line_number, raw_line in enumerate(content.splitlines(), start=1):
        line = raw_line.strip()
        if not line:
            continue

        parts = line.split(SEPARATOR)
        tag = parts[0]

        if tag == CLUSTER_TAG and len(parts) == 3:
            topology = ClusterTopology(cluster=ClusterRecord(cluster_id=parts[1], region=parts[2]))
            topologies.append(topology)
            by_cluster[parts[1]] = topology
            continue

        if tag in (ENDPOINT_TAG, INSTANCE_TAG) and len(parts) > 1:
            owner = by_cluster.get(parts[1])
            if owner is None:
                raise ValueError(f"line {line_number} references unknown cluster '{parts[1]}'")

            if tag == ENDPOINT_TAG and len(parts) == 4:
                try:
                    role = EndpointRole(parts[2])
                except ValueError as exc:
                    raise ValueError(f"line {line_number} has unknown endpoint role '{parts[2]}'") from exc
                owner.endpoints.append(EndpointRecord(cluster_id=parts[1], role=role, address=parts[3]))
                continue

            if tag == INSTANCE_TAG and len(parts) == 5:
                owner.instances.append(
                    InstanceRecord(
                        cluster_id=parts[1],
                        instance_id=parts[2],
                        address=parts[3],
                        instance_class=parts[4],
                    )
                )
                continue

        raise ValueError(f"line {line_number} is not a valid cache record")

    return topologies


class TopologyCache:
    """Reads and replaces the per-identity cluster cache file."""

    def __init__(self, settings, filesystem_service, logger):
        self.settings = settings
        self.filesystem_service = filesystem_service
        self.logger = logger

    def path_for(self, identity_context: str) -> str:
        return self.settings.cache_file(identity_context)

    def exists(self, identity_context: str) -> bool:
        return os.path.isfile(self.path_for(identity_context))

    def write(self, identity_context: str, topologies: List[ClusterTopology]) -> str:
        path = self.path_for(identity_context)
        self.filesystem_service.atomic_write_text(path, render(topologies))
        self.logger.info("Cluster cache updated: %s (%s clusters)", path, len(topologies))
        return path

    def load(self, identity_context: str) -> List[ClusterTopology]:
        path = self.path_for(identity_context)
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                content = file_obj.read()
        except FileNotFoundError as exc:
            raise CacheUnavailableError(
                actionable_error("cache_corrupt", path=path, reason="file does not exist")
            ) from exc
        except OSError as exc:
            raise CacheUnavailableError(
                actionable_error("cache_corrupt", path=path, reason=str(exc))
            ) from exc

        try:
            return parse(content)
        except ValueError as exc:
            raise CacheUnavailableError(
                actionable_error("cache_corrupt", path=path, reason=str(exc))
            ) from exc
