import logging
import os
import time
from typing import Callable, List, Optional

from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.prompt import IntPrompt
from rich.table import Table

from .constants import EXIT_FAILURE, EXIT_INTERRUPTED, EXIT_OK, IDENTITY_ENV_VAR
from .errors import ConnectError, CorruptCredentialFileError, IdentityContextMissingError
from .errors_catalog import actionable_error
from .models import Classification, ClusterTopology, ProvisionResult, Settings, Target
from .services.aws_gateway import RdsGateway
from .services.classifier import SafetyClassifier, environment_tier
from .services.credentials import CredentialStore
from .services.daemon_status import DaemonStatusService
from .services.discovery import DiscoveryService
from .services.filesystem import FileSystemService
from .services.process_control import DaemonLauncher, DaemonLock
from .services.provisioner import CredentialProvisioner
from .services.renewal_daemon import RenewalDaemon, TokenRefresher, compute_deadline
from .services.resolver import find_cluster, resolve_target, selection_options
from .services.topology_cache import TopologyCache

console = Console()
logger = logging.getLogger("rdsconnect")

DAEMON_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class RdsConnect:
    """Entry point tying discovery, provisioning and renewal together.

    Every public command returns a process exit code.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        config_path: Optional[str] = None,
        gateway_factory: Optional[Callable] = None,
    ):
        self.settings = settings or Settings()
        self.config_path = config_path
        self.gateway_factory = gateway_factory or self._default_gateway

        self.filesystem_service = FileSystemService(logger=logger)
        self.topology_cache = TopologyCache(
            settings=self.settings,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.credential_store = CredentialStore(
            path=self.settings.credential_file,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )
        self.classifier = SafetyClassifier(
            logger=logger,
            timeout=self.settings.classifier_timeout_seconds,
            port=self.settings.db_port,
            ssl_ca=self.settings.ssl_ca,
        )
        self.daemon_lock = DaemonLock(path=self.settings.daemon_lock_file, logger=logger)
        self.launcher = DaemonLauncher(lock=self.daemon_lock, logger=logger, config_path=config_path)
        self.status_service = DaemonStatusService(
            status_file=self.settings.daemon_status_file,
            filesystem_service=self.filesystem_service,
            logger=logger,
        )

    def _default_gateway(self, profile: str) -> RdsGateway:
        return RdsGateway(profile=profile, settings=self.settings, logger=logger)

    def _require_profile(self) -> str:
        profile = os.environ.get(IDENTITY_ENV_VAR, "").strip()
        if not profile:
            raise IdentityContextMissingError(actionable_error("identity_missing", env_var=IDENTITY_ENV_VAR))
        return profile

    def _build_provisioner(self, profile: str) -> CredentialProvisioner:
        gateway = self.gateway_factory(profile)
        return CredentialProvisioner(
            settings=self.settings,
            topology_cache=self.topology_cache,
            discovery_service=DiscoveryService(gateway=gateway, settings=self.settings, logger=logger),
            gateway=gateway,
            credential_store=self.credential_store,
            classifier=self.classifier,
            logger=logger,
            launcher=self.launcher,
        )

    def _execute(self, action: Callable[[], Optional[int]]) -> int:
        try:
            result = action()
            return EXIT_OK if result is None else result
        except KeyboardInterrupt:
            console.print("[bold red]Operation cancelled by user.[/bold red]")
            logger.info("Operation cancelled by user")
            return EXIT_INTERRUPTED
        except ConnectError as exc:
            console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
            logger.error(str(exc))
            return exc.exit_code
        except Exception as exc:
            console.print(f"[bold red]Unexpected error:[/bold red] {escape(str(exc))}")
            logger.exception("Unexpected error")
            return EXIT_FAILURE

    # discover

    def discover(self) -> int:
        return self._execute(self._discover)

    def _discover(self):
        profile = self._require_profile()
        console.print(f"[blue]Refreshing RDS cluster cache for profile: [bold]{escape(profile)}[/bold][/blue]")

        gateway = self.gateway_factory(profile)
        service = DiscoveryService(gateway=gateway, settings=self.settings, logger=logger)
        with console.status("Fetching RDS clusters and instances..."):
            result = service.discover()
        path = self.topology_cache.write(profile, result.topologies)

        for region, reason in sorted(result.failed_regions.items()):
            console.print(f"[yellow]No data from {region}: {escape(reason)}[/yellow]")
        console.print(
            f"[green]Found {len(result.topologies)} clusters and {result.instance_count} instances.[/green]"
        )
        console.print(f"[green]✓[/green] RDS cache file updated: [bold]{escape(path)}[/bold]")

    # clusters

    def list_clusters(self) -> int:
        return self._execute(self._list_clusters)

    def _list_clusters(self):
        profile = self._require_profile()
        topologies = self._build_provisioner(profile).load_topology()
        if not topologies:
            raise ConnectError(actionable_error("no_clusters", profile=profile))

        table = Table(title=f"RDS clusters ({profile})")
        table.add_column("Cluster", style="bold")
        table.add_column("Region", style="cyan")
        table.add_column("Endpoint / instance")
        table.add_column("Address", style="cyan")
        for topology in topologies:
            for index, target in enumerate(selection_options(topology)):
                table.add_row(
                    topology.cluster_id if index == 0 else "",
                    topology.region if index == 0 else "",
                    target.label,
                    target.address,
                )
        console.print(table)

    # connect

    def connect(
        self,
        cluster: Optional[str] = None,
        endpoint: Optional[str] = None,
        non_interactive: bool = False,
        start_daemon: bool = True,
    ) -> int:
        return self._execute(lambda: self._connect(cluster, endpoint, non_interactive, start_daemon))

    def _connect(
        self,
        cluster: Optional[str],
        endpoint: Optional[str],
        non_interactive: bool,
        start_daemon: bool,
    ):
        profile = self._require_profile()
        self._print_environment(profile, verbose=not non_interactive)
        provisioner = self._build_provisioner(profile)

        if non_interactive:
            if not cluster:
                raise ConnectError("Non-interactive mode requires a cluster.")
            with console.status("Generating authentication token..."):
                result = provisioner.provision(cluster, endpoint, start_daemon=start_daemon)
        else:
            topologies = provisioner.load_topology()
            if not topologies:
                raise ConnectError(actionable_error("no_clusters", profile=profile))
            topology = find_cluster(topologies, cluster, profile) if cluster else self._choose_cluster(topologies)
            target = resolve_target(topology, endpoint) if endpoint else self._choose_target(topology)
            with console.status("Generating authentication token..."):
                result = provisioner.provision_target(target, start_daemon=start_daemon)

        self._report_provision(result, start_daemon)

    def _print_environment(self, profile: str, verbose: bool):
        tier = environment_tier(profile)
        if tier == "production":
            console.print(
                Panel(
                    "[bold red]WARNING: YOU ARE CONNECTED TO PRODUCTION[/bold red]",
                    border_style="bold red",
                    expand=False,
                )
            )
        if verbose:
            colors = {"production": "red", "staging": "yellow", "development": "green", "other": "blue"}
            console.print(f"[bold {colors[tier]}]{tier.upper()} environment[/bold {colors[tier]}]")
            console.print(f"[cyan]AWS Profile:[/cyan] [bold]{escape(profile)}[/bold]")

    def _choose_cluster(self, topologies: List[ClusterTopology]) -> ClusterTopology:
        default = None
        console.print("\n[bold]Available RDS clusters (from cache)[/bold]")
        for index, topology in enumerate(topologies, start=1):
            marker = ""
            if topology.cluster_id == self.settings.default_cluster:
                default = index
                marker = " [yellow](default)[/yellow]"
            console.print(
                f"[green]{index}.[/green] [bold]{escape(topology.cluster_id)}[/bold] "
                f"[cyan]\\[{topology.region}][/cyan]{marker}"
            )

        selection = IntPrompt.ask("Select a cluster number", console=console, default=default)
        if selection is None or not 1 <= selection <= len(topologies):
            raise ConnectError(f"Invalid selection '{selection}'. Enter a number between 1 and {len(topologies)}.")
        return topologies[selection - 1]

    def _choose_target(self, topology: ClusterTopology) -> Target:
        options = selection_options(topology)
        if not options:
            raise ConnectError(f"Cluster '{topology.cluster_id}' has no endpoints or instances.")

        default = 1 if options[0].kind == "endpoint" and options[0].name == "Reader" else None
        console.print(f"\n[bold]Endpoints and instances for {escape(topology.cluster_id)}[/bold]")
        for index, target in enumerate(options, start=1):
            marker = " [yellow](default)[/yellow]" if index == default else ""
            console.print(
                f"[green]{index}.[/green] [bold]{escape(target.label)}[/bold] - "
                f"[cyan]{escape(target.address)}[/cyan]{marker}"
            )

        selection = IntPrompt.ask("Select an endpoint or instance number", console=console, default=default)
        if selection is None or not 1 <= selection <= len(options):
            raise ConnectError(f"Invalid selection '{selection}'. Enter a number between 1 and {len(options)}.")
        return options[selection - 1]

    def _report_provision(self, result: ProvisionResult, start_daemon: bool):
        credential = result.credential
        console.print(
            f"[green]✓[/green] Updated [bold]{escape(self.credential_store.path)}[/bold] "
            f"with endpoint: [bold]{escape(credential.host)}[/bold]"
        )
        console.print("[green]✓[/green] You can now connect using: [bold]mysql[/bold]")

        if result.daemon_pid is not None:
            console.print(f"[green]✓[/green] Token auto-refresh running (PID {result.daemon_pid}).")
        elif not start_daemon:
            console.print("[yellow]Token auto-refresh not started; the token expires in 15 minutes.[/yellow]")

        if result.classification == Classification.UNKNOWN:
            console.print("[yellow]Could not verify the instance role.[/yellow]")
        else:
            console.print(f"[cyan]Instance role:[/cyan] [bold]{result.classification.value}[/bold]")

        if result.requires_warning:
            tier = environment_tier(credential.identity_context)
            style = "bold red" if tier == "production" else "bold yellow"
            console.print(
                Panel(
                    f"[bold red]WARNING: You are connected to a WRITER instance.[/bold red]\n"
                    f"[{style}]Environment: {tier.upper()} ({escape(credential.identity_context)})[/{style}]",
                    border_style="bold red",
                    expand=False,
                )
            )
            logger.warning("Connected to WRITER endpoint %s", credential.host)

    # refresh / daemon

    def _refresher(self) -> TokenRefresher:
        return TokenRefresher(
            credential_store=self.credential_store,
            gateway_factory=self.gateway_factory,
            settings=self.settings,
            logger=logger,
        )

    def refresh(self) -> int:
        return self._execute(self._refresh)

    def _refresh(self):
        credential = self._refresher().refresh()
        console.print(
            f"[green]✓[/green] Refreshed the authentication token in "
            f"[bold]{escape(self.credential_store.path)}[/bold] for {escape(credential.host)}"
        )

    def run_daemon(self) -> int:
        return self._execute(self._run_daemon)

    def _run_daemon(self) -> int:
        self.filesystem_service.ensure_dir(self.settings.state_dir)
        file_handler = logging.FileHandler(self.settings.daemon_log_file)
        file_handler.setFormatter(logging.Formatter(DAEMON_LOG_FORMAT))
        logger.addHandler(file_handler)

        daemon = RenewalDaemon(
            refresher=self._refresher(),
            credential_store=self.credential_store,
            lock=self.daemon_lock,
            settings=self.settings,
            logger=logger,
            status_service=self.status_service,
            classifier=self.classifier,
        )
        daemon.install_signal_handlers()
        try:
            return daemon.run()
        finally:
            logger.removeHandler(file_handler)
            file_handler.close()

    def stop_daemon(self) -> int:
        return self._execute(self._stop_daemon)

    def _stop_daemon(self):
        pid = self.launcher.stop()
        if pid is None:
            console.print("[yellow]No renewal daemon is running.[/yellow]")
        else:
            console.print(f"[green]✓[/green] Sent stop request to renewal daemon (PID {pid}).")

    # status

    def status(self) -> int:
        return self._execute(self._status)

    def _add_credential_rows(self, table: Table):
        path = self.credential_store.path
        if not self.credential_store.exists():
            table.add_row("Credential file", f"{path} (missing)")
            return

        try:
            credential = self.credential_store.read()
        except CorruptCredentialFileError as exc:
            table.add_row("Credential file", f"{path} (unreadable)")
            table.add_row("Problem", str(exc))
            return

        modified = os.path.getmtime(path)
        deadline = compute_deadline(
            modified,
            self.settings.token_lifetime_seconds,
            self.settings.safety_margin_minutes * 60,
        )
        age = int(time.time() - modified)
        table.add_row("Credential file", path)
        table.add_row("Host", credential.host)
        table.add_row("User", credential.username)
        table.add_row("Profile", credential.identity_context)
        table.add_row("Region", credential.region)
        table.add_row("Token age", f"{age // 60}m {age % 60}s")
        table.add_row("Next refresh", time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(deadline)))

    def _status(self):
        table = Table(show_header=False)
        table.add_column("Key", style="cyan")
        table.add_column("Value")

        self._add_credential_rows(table)

        pid = self.daemon_lock.holder_pid()
        table.add_row("Daemon", f"running (PID {pid})" if pid else "not running")
        daemon_status = self.status_service.load() if pid else None
        if daemon_status:
            table.add_row("Daemon state", str(daemon_status.get("state")))
            if daemon_status.get("last_refresh_at"):
                table.add_row("Last refresh", str(daemon_status["last_refresh_at"]))
            if daemon_status.get("last_error"):
                table.add_row("Last error", str(daemon_status["last_error"]))
            if daemon_status.get("classification"):
                table.add_row("Role", str(daemon_status["classification"]))

        console.print(table)
