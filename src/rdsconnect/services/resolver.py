"""Cluster and endpoint selector resolution against the cached topology."""

from typing import List, Optional

from rdsconnect.errors import SelectorNotFoundError
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import ClusterTopology, EndpointRole, Target


def find_cluster(topologies: List[ClusterTopology], cluster_selector: str, profile: str) -> ClusterTopology:
    for topology in topologies:
        if topology.cluster_id == cluster_selector:
            return topology

    available = [topology.cluster_id for topology in topologies]
    raise SelectorNotFoundError(
        actionable_error(
            "cluster_not_found",
            cluster=cluster_selector,
            profile=profile,
            available=", ".join(available) or "none",
        ),
        available=available,
    )


def endpoint_targets(topology: ClusterTopology) -> List[Target]:
    """Cluster endpoints, Reader first so the safe choice is the default."""
    ordered = sorted(topology.endpoints, key=lambda item: 0 if item.role == EndpointRole.READER else 1)
    return [
        Target(
            cluster_id=topology.cluster_id,
            region=topology.region,
            address=endpoint.address,
            kind="endpoint",
            name=endpoint.role.value,
        )
        for endpoint in ordered
    ]


def instance_targets(topology: ClusterTopology) -> List[Target]:
    return [
        Target(
            cluster_id=topology.cluster_id,
            region=topology.region,
            address=instance.address,
            kind="instance",
            name=instance.instance_id,
        )
        for instance in topology.instances
    ]


def selection_options(topology: ClusterTopology) -> List[Target]:
    return endpoint_targets(topology) + instance_targets(topology)


def default_target(topology: ClusterTopology) -> Optional[Target]:
    endpoints = endpoint_targets(topology)
    return endpoints[0] if endpoints else None


def _describe_available(topology: ClusterTopology) -> List[str]:
    described = [f"{target.name}: {target.address}" for target in endpoint_targets(topology)]
    described.extend(f"{target.name}: {target.address}" for target in instance_targets(topology))
    return described


def resolve_target(topology: ClusterTopology, endpoint_selector: Optional[str]) -> Target:
    """Resolve ``endpoint_selector`` within a cluster.

    An empty selector picks the default (Reader when present). Role names
    match case-insensitively and take precedence over instance identifiers,
    so an instance literally named ``reader`` never shadows the Reader
    endpoint.
    """
    selector = (endpoint_selector or "").strip()

    if not selector:
        target = default_target(topology)
        if target is not None:
            return target
    else:
        for target in endpoint_targets(topology):
            if target.name.lower() == selector.lower():
                return target

        for target in instance_targets(topology):
            if target.name == selector:
                return target

    available = _describe_available(topology)
    raise SelectorNotFoundError(
        actionable_error(
            "endpoint_not_found",
            selector=selector or "<default>",
            cluster=topology.cluster_id,
            available="; ".join(available) or "none",
        ),
        available=available,
    )
