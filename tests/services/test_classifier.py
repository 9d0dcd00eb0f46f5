import pymysql
import pytest

from rdsconnect.models import Classification, Credential
from rdsconnect.services.classifier import READ_ONLY_QUERY, ROLE_QUERY, SafetyClassifier, environment_tier


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class FakeCursor:
    def __init__(self, results):
        self.results = results
        self.executed = []
        self._row = None

    def __enter__(self):
        return self

    def __exit__(self, *_exc):
        return False

    def execute(self, query):
        self.executed.append(query)
        result = self.results[query]
        if isinstance(result, Exception):
            raise result
        self._row = result

    def fetchone(self):
        return self._row


class FakeConnection:
    def __init__(self, results):
        self.cursor_obj = FakeCursor(results)
        self.closed = False

    def cursor(self):
        return self.cursor_obj

    def close(self):
        self.closed = True


def _credential():
    return Credential(
        host="shared.cluster-x.us-east-1.rds.amazonaws.com",
        username="app",
        token="token",
        issued_at=0,
        identity_context="dev",
        region="us-east-1",
    )


def _classifier(connection, captured=None, **kwargs):
    def connect(**connect_kwargs):
        if captured is not None:
            captured.update(connect_kwargs)
        if isinstance(connection, Exception):
            raise connection
        return connection

    return SafetyClassifier(logger=DummyLogger(), connect=connect, **kwargs)


def test_replication_status_identifies_writer():
    connection = FakeConnection({ROLE_QUERY: ("shared-1", "WRITER")})
    captured = {}

    result = _classifier(connection, captured, timeout=3).classify(_credential())

    assert result == Classification.WRITER
    assert connection.closed
    assert captured["password"] == "token"
    assert captured["connect_timeout"] == 3
    assert captured["read_timeout"] == 3
    assert captured["ssl"] == {"check_hostname": False}


def test_replication_status_identifies_reader():
    connection = FakeConnection({ROLE_QUERY: ("shared-2", "READER")})

    assert _classifier(connection).classify(_credential()) == Classification.READER


@pytest.mark.parametrize("read_only, expected", [((0,), Classification.WRITER), ((1,), Classification.READER)])
def test_falls_back_to_read_only_flag(read_only, expected):
    connection = FakeConnection(
        {
            ROLE_QUERY: pymysql.err.ProgrammingError(1109, "Unknown table 'REPLICA_HOST_STATUS'"),
            READ_ONLY_QUERY: read_only,
        }
    )

    assert _classifier(connection).classify(_credential()) == expected
    assert connection.cursor_obj.executed == [ROLE_QUERY, READ_ONLY_QUERY]


def test_connection_failure_is_unknown():
    error = pymysql.err.OperationalError(2003, "Can't connect")

    assert _classifier(error).classify(_credential()) == Classification.UNKNOWN


def test_ssl_ca_is_used_when_configured():
    captured = {}
    connection = FakeConnection({ROLE_QUERY: ("shared-2", "READER")})

    _classifier(connection, captured, ssl_ca="/etc/ssl/rds.pem").classify(_credential())

    assert captured["ssl"] == {"ca": "/etc/ssl/rds.pem"}


def test_environment_tier_from_profile_name():
    assert environment_tier("acme-prod") == "production"
    assert environment_tier("staging") == "staging"
    assert environment_tier("dev") == "development"
    assert environment_tier("sandbox") == "other"
