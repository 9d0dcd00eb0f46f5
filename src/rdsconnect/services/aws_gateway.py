"""AWS access for rdsconnect: RDS topology listings and IAM auth tokens."""

from typing import Any, Callable, Dict, List

import boto3
from botocore.config import Config
from botocore.exceptions import (
    BotoCoreError,
    ClientError,
    NoCredentialsError,
    ProfileNotFound,
    SSOTokenLoadError,
    TokenRetrievalError,
    UnauthorizedSSOTokenError,
)

from rdsconnect.constants import USER_AGENT_EXTRA
from rdsconnect.errors import AuthorizationExpiredError, ConnectError
from rdsconnect.errors_catalog import actionable_error

EXPIRED_ERROR_CODES = {
    "ExpiredToken",
    "ExpiredTokenException",
    "RequestExpired",
    "InvalidClientTokenId",
    "UnrecognizedClientException",
}

EXPIRED_EXCEPTIONS = (
    NoCredentialsError,
    SSOTokenLoadError,
    TokenRetrievalError,
    UnauthorizedSSOTokenError,
)


def is_authorization_expired(exc: BaseException) -> bool:
    if isinstance(exc, AuthorizationExpiredError):
        return True
    if isinstance(exc, EXPIRED_EXCEPTIONS):
        return True
    if isinstance(exc, ClientError):
        return exc.response.get("Error", {}).get("Code") in EXPIRED_ERROR_CODES
    return False


def translate_aws_error(exc: Exception, action: str, profile: str) -> ConnectError:
    """Map a botocore failure onto the rdsconnect error taxonomy."""
    if is_authorization_expired(exc):
        return AuthorizationExpiredError(
            actionable_error("authorization_expired", action=action, profile=profile)
        )
    if isinstance(exc, ProfileNotFound):
        return ConnectError(f"AWS profile '{profile}' is not configured in ~/.aws/config.")
    if isinstance(exc, ClientError):
        code = exc.response.get("Error", {}).get("Code", "Unknown")
        return ConnectError(f"AWS error while trying to {action}: {code}")
    return ConnectError(f"Could not {action}: {exc}")


class RdsGateway:
    """Thin wrapper over the boto3 RDS client for a single identity context.

    A new session is built for every client so worker threads never share
    one, and so credentials refreshed by a re-login are picked up on the
    next call.
    """

    def __init__(self, profile: str, settings, logger, session_factory: Callable = boto3.Session):
        self.profile = profile
        self.settings = settings
        self.logger = logger
        self.session_factory = session_factory

    def _client_config(self) -> Config:
        return Config(
            retries={"max_attempts": self.settings.api_max_retries, "mode": "standard"},
            connect_timeout=self.settings.api_connect_timeout,
            read_timeout=self.settings.api_read_timeout,
            user_agent_extra=USER_AGENT_EXTRA,
        )

    def client(self, region: str):
        session = self.session_factory(profile_name=self.profile, region_name=region)
        return session.client("rds", config=self._client_config())

    def _paginate(self, region: str, paginator_name: str, result_key: str) -> List[Dict[str, Any]]:
        results: List[Dict[str, Any]] = []
        paginator = self.client(region).get_paginator(paginator_name)
        for page in paginator.paginate():
            results.extend(page.get(result_key, []))
        return results

    def list_clusters(self, region: str) -> List[Dict[str, Any]]:
        return self._paginate(region, "describe_db_clusters", "DBClusters")

    def list_instances(self, region: str) -> List[Dict[str, Any]]:
        return self._paginate(region, "describe_db_instances", "DBInstances")

    def generate_auth_token(self, host: str, port: int, username: str, region: str) -> str:
        self.logger.debug("Generating IAM auth token for %s@%s:%s (%s)", username, host, port, region)
        try:
            token = self.client(region).generate_db_auth_token(
                DBHostname=host,
                Port=port,
                DBUsername=username,
                Region=region,
            )
        except (BotoCoreError, ClientError) as exc:
            raise translate_aws_error(exc, "generate an auth token", self.profile) from exc

        if not token:
            raise ConnectError(f"AWS returned an empty auth token for {host}.")
        return token
