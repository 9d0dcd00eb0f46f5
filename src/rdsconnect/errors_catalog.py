"""Actionable error catalog for rdsconnect."""

from typing import Dict

_ERROR_MESSAGES: Dict[str, Dict[str, str]] = {
    "identity_missing": {
        "what": "{env_var} is not set.",
        "next": "Log in and export {env_var} (for example `export {env_var}=dev`) before retrying.",
    },
    "authorization_expired": {
        "what": "AWS rejected the request while trying to {action} for profile '{profile}'.",
        "next": "Re-authenticate with `aws sso login --profile {profile}` and retry.",
    },
    "discovery_failed": {
        "what": "Discovery failed in every region ({regions}).",
        "next": "Check network access and RDS read permissions, then run `rdsconnect discover`.",
    },
    "cache_unavailable": {
        "what": "No cluster cache for profile '{profile}' and discovery failed: {reason}",
        "next": "Fix the discovery error above and run `rdsconnect discover`.",
    },
    "cache_corrupt": {
        "what": "Cluster cache {path} is unreadable: {reason}",
        "next": "Rebuild it with `rdsconnect discover`.",
    },
    "cluster_not_found": {
        "what": "Cluster '{cluster}' not found for profile '{profile}'. Available clusters: {available}.",
        "next": "Pick one of the listed clusters, or run `rdsconnect discover` if it was created recently.",
    },
    "endpoint_not_found": {
        "what": "Endpoint or instance '{selector}' not found for cluster '{cluster}'. Available: {available}.",
        "next": "Use `reader`, `writer`, or one of the listed instance identifiers.",
    },
    "no_clusters": {
        "what": "No clusters are cached for profile '{profile}'.",
        "next": "Run `rdsconnect discover` and check that the profile can list RDS clusters.",
    },
    "credential_file_missing": {
        "what": "Credential file not found: {path}",
        "next": "Run `rdsconnect connect` to create it.",
    },
    "credential_file_corrupt": {
        "what": "Credential file {path} is missing required fields: {fields}",
        "next": "Recreate it with `rdsconnect connect`.",
    },
}


def actionable_error(code: str, **kwargs: str) -> str:
    if code not in _ERROR_MESSAGES:
        raise KeyError(f"Unknown error catalog key: {code}")

    template = _ERROR_MESSAGES[code]
    what = template["what"].format(**kwargs)
    next_step = template["next"].format(**kwargs)
    return f"{what} Suggested action: {next_step}"
