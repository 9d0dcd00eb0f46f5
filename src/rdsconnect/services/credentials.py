"""Credential file (MySQL option file) persistence and token rotation."""

import os
from dataclasses import replace
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from rdsconnect.errors import CorruptCredentialFileError, RenewalError
from rdsconnect.errors_catalog import actionable_error
from rdsconnect.models import Credential

PROFILE_KEY = "AWS_PROFILE"
REGION_KEY = "AWS_REGION"
ISSUED_AT_KEY = "TOKEN_CREATED_AT"
CLIENT_SECTION = "[client]"

_META_PREFIX = "# "
_TARGET_FIELDS = ("host", "username", "region", "identity_context")
_REQUIRED = (
    ("host", "host"),
    ("user", "user"),
    ("password", "password"),
    (PROFILE_KEY, "meta"),
    (REGION_KEY, "meta"),
)


def render_credential(credential: Credential, generated_at: Optional[datetime] = None) -> str:
    generated_at = generated_at or datetime.now(timezone.utc)
    lines = [
        f"# Generated by rdsconnect on {generated_at.isoformat(timespec='seconds')}",
        "# This file is monitored by the rdsconnect renewal daemon for token rotation.",
        f"{_META_PREFIX}{PROFILE_KEY}={credential.identity_context}",
        f"{_META_PREFIX}{REGION_KEY}={credential.region}",
        f"{_META_PREFIX}{ISSUED_AT_KEY}={credential.issued_at}",
        CLIENT_SECTION,
        f"host={credential.host}",
        f"user={credential.username}",
        f"password={credential.token}",
        "enable-cleartext-plugin",
    ]
    return "\n".join(lines) + "\n"


class CredentialDocument:
    """Line-preserving view over a credential file.

    Only the ``password`` and ``TOKEN_CREATED_AT`` lines are ever rewritten;
    every other line is carried through untouched.
    """

    def __init__(self, lines: List[str]):
        self.lines = lines
        self.meta: Dict[str, Tuple[int, str]] = {}
        self.options: Dict[str, Tuple[int, str]] = {}
        self.client_index: Optional[int] = None
        self._index()

    @classmethod
    def from_text(cls, content: str) -> "CredentialDocument":
        return cls(content.splitlines(keepends=True))

    def _index(self):
        in_client = False
        for position, raw_line in enumerate(self.lines):
            line = raw_line.rstrip("\r\n")
            stripped = line.strip()

            if stripped.startswith("#"):
                body = stripped[1:].strip()
                key, sep, value = body.partition("=")
                if sep and key in (PROFILE_KEY, REGION_KEY, ISSUED_AT_KEY):
                    self.meta[key] = (position, value.strip())
                continue

            if stripped.startswith("[") and stripped.endswith("]"):
                in_client = stripped == CLIENT_SECTION
                if in_client and self.client_index is None:
                    self.client_index = position
                continue

            if in_client and "=" in stripped:
                key, _, value = stripped.partition("=")
                self.options[key.strip()] = (position, value.strip())

    def to_text(self) -> str:
        return "".join(self.lines)

    def credential(self, fallback_issued_at: int = 0) -> Credential:
        missing = []
        for key, kind in _REQUIRED:
            store = self.meta if kind == "meta" else self.options
            if not store.get(key, (None, ""))[1]:
                missing.append(key)
        if missing:
            raise ValueError(", ".join(missing))

        issued_raw = self.meta.get(ISSUED_AT_KEY, (None, ""))[1]
        try:
            issued_at = int(issued_raw) if issued_raw else fallback_issued_at
        except ValueError as exc:
            raise ValueError(ISSUED_AT_KEY) from exc

        return Credential(
            host=self.options["host"][1],
            username=self.options["user"][1],
            token=self.options["password"][1],
            issued_at=issued_at,
            identity_context=self.meta[PROFILE_KEY][1],
            region=self.meta[REGION_KEY][1],
        )

    def _line_ending(self, position: int) -> str:
        line = self.lines[position]
        return line[len(line.rstrip("\r\n")):] or "\n"

    def set_token(self, token: str, issued_at: int):
        position, _ = self.options["password"]
        self.lines[position] = f"password={token}{self._line_ending(position)}"

        if ISSUED_AT_KEY in self.meta:
            position, _ = self.meta[ISSUED_AT_KEY]
            self.lines[position] = f"{_META_PREFIX}{ISSUED_AT_KEY}={issued_at}{self._line_ending(position)}"
        else:
            insert_at = self.client_index if self.client_index is not None else 0
            self.lines.insert(insert_at, f"{_META_PREFIX}{ISSUED_AT_KEY}={issued_at}\n")

        self.meta = {}
        self.options = {}
        self.client_index = None
        self._index()


class CredentialStore:
    """Owns the credential file at a well-known path."""

    def __init__(self, path: str, filesystem_service, logger):
        self.path = path
        self.filesystem_service = filesystem_service
        self.logger = logger

    def exists(self) -> bool:
        return os.path.isfile(self.path)

    def modified_time_ns(self) -> Optional[int]:
        return self.filesystem_service.modified_time_ns(self.path)

    def write(self, credential: Credential):
        self.filesystem_service.atomic_write_text(self.path, render_credential(credential))
        self.logger.info("Updated %s with endpoint: %s", self.path, credential.host)

    def _load_document(self) -> Tuple[CredentialDocument, Credential]:
        try:
            with open(self.path, "r", encoding="utf-8", newline="") as file_obj:
                content = file_obj.read()
            mtime = int(os.path.getmtime(self.path))
        except FileNotFoundError as exc:
            raise CorruptCredentialFileError(
                actionable_error("credential_file_missing", path=self.path)
            ) from exc
        except OSError as exc:
            raise CorruptCredentialFileError(f"Could not read credential file {self.path}: {exc}") from exc

        document = CredentialDocument.from_text(content)
        try:
            credential = document.credential(fallback_issued_at=mtime)
        except ValueError as exc:
            raise CorruptCredentialFileError(
                actionable_error("credential_file_corrupt", path=self.path, fields=str(exc))
            ) from exc
        return document, credential

    def read(self) -> Credential:
        _, credential = self._load_document()
        return credential

    def rotate(self, token: str, issued_at: int, expected: Optional[Credential] = None) -> Credential:
        """Replace only the token and its issuance timestamp, atomically.

        When ``expected`` is given the file must still point at the same
        target; a file rewritten for another host since the token was minted
        raises ``RenewalError`` and is left untouched.
        """
        document, credential = self._load_document()
        if expected is not None:
            changed = [name for name in _TARGET_FIELDS if getattr(credential, name) != getattr(expected, name)]
            if changed:
                raise RenewalError(
                    f"{self.path} now targets a different {', '.join(changed)}; discarding the minted token."
                )
        document.set_token(token, issued_at)
        self.filesystem_service.atomic_write_text(self.path, document.to_text())
        return replace(credential, token=token, issued_at=issued_at)
