import io

import pytest
from rich.console import Console

import rdsconnect.core as core_module
from rdsconnect.core import RdsConnect
from rdsconnect.models import Classification, Settings

READER = "shared.cluster-ro-x.us-east-1.rds.amazonaws.com"
WRITER = "shared.cluster-x.us-east-1.rds.amazonaws.com"


class FakeGateway:
    def __init__(self, profile, fail=False):
        self.profile = profile
        self.fail = fail

    def list_clusters(self, region):
        if self.fail:
            raise RuntimeError(f"{region} unreachable")
        return [
            {
                "DBClusterIdentifier": "shared",
                "Engine": "aurora-mysql",
                "Endpoint": WRITER,
                "ReaderEndpoint": READER,
            }
        ]

    def list_instances(self, region):
        return [
            {
                "DBInstanceIdentifier": "shared-1",
                "DBClusterIdentifier": "shared",
                "DBInstanceClass": "db.r6g.large",
                "Endpoint": {"Address": "shared-1.x.us-east-1.rds.amazonaws.com"},
            }
        ]

    def generate_auth_token(self, host, port, username, region):
        return f"token-for-{host}"


class FakeClassifier:
    def classify(self, credential):
        return Classification.WRITER if credential.host == WRITER else Classification.READER


class FakeLauncher:
    def __init__(self):
        self.started = 0
        self.stopped = 0

    def ensure_running(self):
        self.started += 1
        return 4242

    def stop(self):
        self.stopped += 1
        return None


@pytest.fixture
def output(monkeypatch):
    buffer = io.StringIO()
    monkeypatch.setattr(core_module, "console", Console(file=buffer, width=200, color_system=None))
    return buffer


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setenv("AWS_PROFILE", "dev")
    settings = Settings(
        regions=["us-east-1"],
        db_username="app",
        state_dir=str(tmp_path / "state"),
        credential_file=str(tmp_path / ".my.cnf"),
    )
    instance = RdsConnect(settings=settings, gateway_factory=FakeGateway)
    instance.classifier = FakeClassifier()
    instance.launcher = FakeLauncher()
    return instance


def test_connect_requires_identity_context(app, output, monkeypatch):
    monkeypatch.delenv("AWS_PROFILE")

    assert app.connect("shared", non_interactive=True) == 6
    assert "AWS_PROFILE is not set" in output.getvalue()


def test_non_interactive_connect_provisions_reader_and_starts_daemon(app, output, tmp_path):
    assert app.connect("shared", non_interactive=True) == 0

    content = (tmp_path / ".my.cnf").read_text(encoding="utf-8")
    assert f"host={READER}" in content
    assert f"password=token-for-{READER}" in content
    assert (tmp_path / "state" / "rds-cache-dev").exists()
    assert app.launcher.started == 1
    assert "WRITER instance" not in output.getvalue()
    assert "PID 4242" in output.getvalue()


def test_non_interactive_connect_to_writer_prints_warning(app, output):
    assert app.connect("shared", "writer", non_interactive=True, start_daemon=False) == 0

    assert "WARNING: You are connected to a WRITER instance." in output.getvalue()
    assert app.launcher.started == 0


def test_unknown_cluster_returns_selector_exit_code(app, output):
    assert app.connect("analytics", non_interactive=True) == 3
    assert "Available clusters: shared" in output.getvalue()


def test_non_interactive_connect_requires_cluster(app, output):
    assert app.connect(None, non_interactive=True) == 1
    assert "requires a cluster" in output.getvalue()


def test_interactive_connect_uses_numbered_selection(app, output, monkeypatch):
    answers = iter([1, 2])
    monkeypatch.setattr(core_module.IntPrompt, "ask", lambda *args, **kwargs: next(answers))

    assert app.connect() == 0

    text = output.getvalue()
    assert "1. shared [us-east-1] (default)" in text
    assert "1. Reader endpoint" in text
    assert "WRITER instance" in text


def test_interactive_cancel_returns_interrupted(app, output, monkeypatch):
    def cancel(*_args, **_kwargs):
        raise KeyboardInterrupt

    monkeypatch.setattr(core_module.IntPrompt, "ask", cancel)

    assert app.connect() == 130
    assert "cancelled" in output.getvalue()


def test_interactive_out_of_range_selection_fails(app, output, monkeypatch):
    monkeypatch.setattr(core_module.IntPrompt, "ask", lambda *args, **kwargs: 9)

    assert app.connect() == 1
    assert "Invalid selection" in output.getvalue()


def test_production_profile_prints_banner(app, output, monkeypatch):
    monkeypatch.setenv("AWS_PROFILE", "acme-prod")

    assert app.connect("shared", non_interactive=True, start_daemon=False) == 0
    assert "YOU ARE CONNECTED TO PRODUCTION" in output.getvalue()


def test_discover_writes_cache(app, output, tmp_path):
    assert app.discover() == 0

    assert (tmp_path / "state" / "rds-cache-dev").read_text(encoding="utf-8").startswith("CLUSTER|shared|us-east-1\n")
    assert "Found 1 clusters and 1 instances." in output.getvalue()


def test_discover_failing_everywhere_returns_cache_exit_code(app, output, tmp_path):
    app.gateway_factory = lambda profile: FakeGateway(profile, fail=True)

    assert app.discover() == 5
    assert not (tmp_path / "state" / "rds-cache-dev").exists()


def test_list_clusters_prints_topology(app, output):
    assert app.list_clusters() == 0
    text = output.getvalue()
    assert "shared" in text
    assert "instance shared-1" in text


def test_refresh_without_credential_file_returns_corrupt_exit_code(app, output):
    assert app.refresh() == 7
    assert "Credential file not found" in output.getvalue()


def test_refresh_rotates_token(app, output, tmp_path):
    assert app.connect("shared", non_interactive=True, start_daemon=False) == 0

    assert app.refresh() == 0
    assert "Refreshed the authentication token" in output.getvalue()
    assert f"password=token-for-{READER}" in (tmp_path / ".my.cnf").read_text(encoding="utf-8")


def test_status_reports_credential_and_daemon(app, output):
    assert app.connect("shared", non_interactive=True, start_daemon=False) == 0

    assert app.status() == 0
    text = output.getvalue()
    assert READER in text
    assert "not running" in text


def test_stop_without_daemon(app, output):
    assert app.stop_daemon() == 0
    assert "No renewal daemon is running." in output.getvalue()


def test_status_reports_unreadable_credential_file(app, output, tmp_path):
    (tmp_path / ".my.cnf").write_text("[client]\nhost=h\n", encoding="utf-8")

    assert app.status() == 0
    text = output.getvalue()
    assert "(unreadable)" in text
    assert "missing required fields" in text
    assert "not running" in text
