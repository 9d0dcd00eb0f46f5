"""Credential provisioning: selector resolution, token minting, file write."""

import time
from typing import List, Optional

from rdsconnect.errors import (
    AuthorizationExpiredError,
    CacheUnavailableError,
    ConnectError,
    SelectorNotFoundError,
)
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import ClusterTopology, Credential, ProvisionResult, Target
from rdsconnect.services.resolver import find_cluster, resolve_target


class CredentialProvisioner:
    """Turns a cluster/endpoint selection into a fresh credential file."""

    def __init__(
        self,
        settings,
        topology_cache,
        discovery_service,
        gateway,
        credential_store,
        classifier,
        logger,
        launcher=None,
        clock=time.time,
    ):
        self.settings = settings
        self.topology_cache = topology_cache
        self.discovery_service = discovery_service
        self.gateway = gateway
        self.credential_store = credential_store
        self.classifier = classifier
        self.logger = logger
        self.launcher = launcher
        self.clock = clock

    @property
    def identity_context(self) -> str:
        return self.gateway.profile

    def load_topology(self) -> List[ClusterTopology]:
        """Cached topology, discovering first when no cache exists yet."""
        profile = self.identity_context
        if not self.topology_cache.exists(profile):
            self.logger.info("Cache file not found. Running discovery for profile '%s'...", profile)
            try:
                result = self.discovery_service.discover()
            except AuthorizationExpiredError:
                raise
            except ConnectError as exc:
                raise CacheUnavailableError(
                    actionable_error("cache_unavailable", profile=profile, reason=str(exc))
                ) from exc
            self.topology_cache.write(profile, result.topologies)
            return result.topologies

        return self.topology_cache.load(profile)

    def resolve(self, cluster_selector: str, endpoint_selector: Optional[str]) -> Target:
        topologies = self.load_topology()
        if not topologies:
            raise SelectorNotFoundError(actionable_error("no_clusters", profile=self.identity_context))

        topology = find_cluster(topologies, cluster_selector, self.identity_context)
        return resolve_target(topology, endpoint_selector)

    def provision(
        self,
        cluster_selector: str,
        endpoint_selector: Optional[str] = None,
        start_daemon: bool = True,
    ) -> ProvisionResult:
        target = self.resolve(cluster_selector, endpoint_selector)
        return self.provision_target(target, start_daemon=start_daemon)

    def provision_target(self, target: Target, start_daemon: bool = True) -> ProvisionResult:
        self.logger.info("Selected %s: %s", target.label, target.address)

        # mint before touching the file so a failure leaves the old credential intact
        token = self.gateway.generate_auth_token(
            target.address,
            self.settings.db_port,
            self.settings.db_username,
            target.region,
        )
        credential = Credential(
            host=target.address,
            username=self.settings.db_username,
            token=token,
            issued_at=int(self.clock()),
            identity_context=self.identity_context,
            region=target.region,
        )
        self.credential_store.write(credential)

        classification = self.classifier.classify(credential)
        self.logger.info("Endpoint %s classified as %s", target.address, classification.value)

        daemon_pid = None
        if start_daemon and self.launcher is not None:
            daemon_pid = self.launcher.ensure_running()

        return ProvisionResult(
            credential=credential,
            target=target,
            classification=classification,
            daemon_pid=daemon_pid,
        )
