import os
import stat

import pytest

from rdsconnect.errors import ConnectError
from rdsconnect.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


def test_atomic_write_creates_private_file_and_directory(tmp_path):
    service = FileSystemService(logger=DummyLogger())
    target = tmp_path / "state" / "creds.cnf"

    service.atomic_write_text(str(target), "first\n")

    assert target.read_text(encoding="utf-8") == "first\n"
    assert stat.S_IMODE(os.stat(target).st_mode) == 0o600
    assert stat.S_IMODE(os.stat(target.parent).st_mode) == 0o700


def test_atomic_write_replaces_content_without_leaving_temp_files(tmp_path):
    service = FileSystemService(logger=DummyLogger())
    target = tmp_path / "creds.cnf"
    target.write_text("old\n", encoding="utf-8")

    service.atomic_write_text(str(target), "new\n")

    assert target.read_text(encoding="utf-8") == "new\n"
    assert sorted(os.listdir(tmp_path)) == ["creds.cnf"]


def test_atomic_write_failure_keeps_previous_file(tmp_path, monkeypatch):
    service = FileSystemService(logger=DummyLogger())
    target = tmp_path / "creds.cnf"
    target.write_text("old\n", encoding="utf-8")

    def failing_replace(_src, _dst):
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", failing_replace)

    with pytest.raises(ConnectError, match="disk full"):
        service.atomic_write_text(str(target), "new\n")

    assert target.read_text(encoding="utf-8") == "old\n"
    assert sorted(os.listdir(tmp_path)) == ["creds.cnf"]


def test_modified_time_ns_is_none_for_missing_file(tmp_path):
    assert FileSystemService.modified_time_ns(str(tmp_path / "missing")) is None
