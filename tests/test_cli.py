from click.testing import CliRunner

import rdsconnect.cli as cli_module


class FakeApp:
    instances = []

    def __init__(self, settings, config_path=None):
        self.settings = settings
        self.config_path = config_path
        self.calls = []
        FakeApp.instances.append(self)

    def connect(self, **kwargs):
        self.calls.append(("connect", kwargs))
        return 0

    def discover(self):
        self.calls.append(("discover", {}))
        return 5

    def stop_daemon(self):
        self.calls.append(("stop", {}))
        return 0


def _patch_app(monkeypatch):
    FakeApp.instances = []
    monkeypatch.setattr(cli_module, "RdsConnect", FakeApp)


def test_cli_uses_config_for_settings(tmp_path, monkeypatch):
    _patch_app(monkeypatch)
    config_file = tmp_path / "rdsconnect.yml"
    config_file.write_text(
        "regions: [eu-west-1]\n" "db_username: alice\n" f"state_dir: {tmp_path / 'state'}\n",
        encoding="utf-8",
    )

    result = CliRunner().invoke(
        cli_module.main,
        ["--config", str(config_file), "connect", "shared", "Writer", "-n", "--no-daemon"],
    )

    assert result.exit_code == 0
    app = FakeApp.instances[0]
    assert app.config_path == str(config_file)
    assert app.settings.regions == ["eu-west-1"]
    assert app.settings.db_username == "alice"
    assert app.calls == [
        (
            "connect",
            {"cluster": "shared", "endpoint": "Writer", "non_interactive": True, "start_daemon": False},
        )
    ]


def test_cli_reads_config_path_from_environment(tmp_path, monkeypatch):
    _patch_app(monkeypatch)
    config_file = tmp_path / "env.yml"
    config_file.write_text("default_cluster: analytics\n", encoding="utf-8")
    monkeypatch.setenv("RDSCONNECT_CONFIG", str(config_file))

    result = CliRunner().invoke(cli_module.main, ["stop"])

    assert result.exit_code == 0
    assert FakeApp.instances[0].settings.default_cluster == "analytics"


def test_cli_propagates_exit_code(tmp_path, monkeypatch):
    _patch_app(monkeypatch)
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.delenv("RDSCONNECT_CONFIG", raising=False)

    result = CliRunner().invoke(cli_module.main, ["discover"])

    assert result.exit_code == 5
    assert FakeApp.instances[0].calls == [("discover", {})]


def test_cli_rejects_invalid_config(tmp_path, monkeypatch):
    _patch_app(monkeypatch)
    config_file = tmp_path / "rdsconnect.yml"
    config_file.write_text("token_lifetime_minutes: 1\nsafety_margin_minutes: 2\n", encoding="utf-8")

    result = CliRunner().invoke(cli_module.main, ["--config", str(config_file), "discover"])

    assert result.exit_code == 1
    assert "safety_margin_minutes" in result.output
    assert FakeApp.instances == []
