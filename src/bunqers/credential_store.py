"""Local persistence of the credential record."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path

from bunqers.credentials import Credential, Uninitialized, from_record, to_record
from bunqers.errors import CredentialStoreError

LOGGER = logging.getLogger(__name__)

CREDENTIALS_FILE = "credentials.json"
DEFAULT_BUNQERS_HOME = str(Path.home() / ".bunqers")


def get_home_dir(explicit_home_dir: str | None = None) -> str:
    return explicit_home_dir or os.environ.get("BUNQERS_HOME") or DEFAULT_BUNQERS_HOME


class CredentialStore:
    """One JSON record per home directory, readable only by its owner."""

    def __init__(self, home_dir: str | None = None):
        self.home_dir = get_home_dir(home_dir)
        self.path = Path(self.home_dir) / CREDENTIALS_FILE

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Credential:
        if not self.path.exists():
            return Uninitialized()

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as error:
            raise CredentialStoreError(f"Failed to parse credential file {self.path}: {error}") from error

        if not isinstance(raw, dict):
            raise CredentialStoreError(f"Credential file {self.path} is invalid")

        credential = from_record(raw)
        LOGGER.debug("Loaded %s credential from %s", credential.stage, self.path)
        return credential

    def save(self, credential: Credential) -> None:
        record = to_record(credential)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        os.chmod(self.path.parent, 0o700)
        tmp_path = self.path.with_suffix(".tmp")
        tmp_path.write_text(json.dumps(record, indent=2) + "\n", encoding="utf-8")
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        LOGGER.debug("Saved %s credential to %s", credential.stage, self.path)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()
