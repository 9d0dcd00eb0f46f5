import pytest

from rdsconnect.errors_catalog import actionable_error


def test_actionable_error_formats_message_with_suggested_action():
    message = actionable_error("cluster_not_found", cluster="nope", profile="dev", available="shared, analytics")

    assert "Cluster 'nope' not found for profile 'dev'." in message
    assert "shared, analytics" in message
    assert "Suggested action:" in message


def test_actionable_error_rejects_unknown_code():
    with pytest.raises(KeyError):
        actionable_error("does_not_exist")
