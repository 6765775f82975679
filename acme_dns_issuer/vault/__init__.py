# Copyright 2025 Jared Hendrickson
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
"""
On-disk storage for the ACME account, identifiers and certificates. The vault is a single JSON document under a root
directory that persists between runs, so identifiers and certificates can be found again by alias.
"""
import json
import logging
import os
import pathlib

from .. import errors
from ..models import Certificate, Identifier


# Constants and Variables
VAULT_FILE = "vault.json"
CERTS_DIR = "certs"
logger = logging.getLogger(__name__)


class Vault:
    """A JSON document holding all ACME state for this system."""

    def __init__(self, root: str) -> None:
        """
        Args:
            root (str): The root storage directory. It is created on the first `save()`.
        """
        self.root = pathlib.Path(root).expanduser().absolute()
        self.path = self.root.joinpath(VAULT_FILE)
        self.data = self.__empty__()

    @classmethod
    def load(cls, root: str) -> "Vault":
        """
        Opens the vault stored under `root`, or an empty one if none was saved yet.

        Args:
            root (str): The root storage directory.

        Returns:
            acme_dns_issuer.vault.Vault: The loaded vault.

        Raises:
            acme_dns_issuer.errors.AccountError: When the vault file exists but cannot be parsed.
        """
        vault = cls(root)
        if vault.path.exists():
            try:
                with open(vault.path, "r", encoding="utf-8") as vault_file:
                    vault.data.update(json.load(vault_file))
            except (OSError, ValueError) as exc:
                raise errors.AccountError(f"Vault at '{vault.path}' could not be read: {exc}") from exc
        return vault

    def save(self) -> None:
        """Writes the vault to disk, replacing the previous file in a single rename."""
        self.root.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(".tmp")
        with open(tmp_path, "w", encoding="utf-8") as vault_file:
            json.dump(self.data, vault_file, indent=2)
        os.chmod(tmp_path, 0o600)
        os.replace(tmp_path, self.path)
        logger.debug("Saved vault to %s", self.path)

    def reset_account(self, directory: str, account_key: str) -> None:
        """Replaces the account with a fresh, unregistered one bound to `directory`."""
        self.data["account"] = {"directory": directory, "key": account_key, "registration": None}

    @property
    def account(self) -> dict:
        return self.data.get("account") or {}

    @property
    def has_account(self) -> bool:
        return bool(self.account.get("key") and self.account.get("directory"))

    @property
    def registration(self) -> dict:
        return self.account.get("registration") or {}

    @registration.setter
    def registration(self, value: dict) -> None:
        self.data["account"]["registration"] = value

    @property
    def contact(self) -> str:
        """The email address the account was registered with, empty until registration."""
        if self.account.get("contact"):
            return self.account["contact"]
        contacts = self.registration.get("body", {}).get("contact", [])
        return contacts[0].replace("mailto:", "") if contacts else ""

    @contact.setter
    def contact(self, value: str) -> None:
        self.data["account"]["contact"] = value

    def identifiers(self) -> list:
        """All identifiers, in the order they were created."""
        return [Identifier.from_dict(item) for item in self.data["identifiers"]]

    def put_identifier(self, identifier: Identifier) -> None:
        """Adds or replaces an identifier by alias."""
        self.__put__("identifiers", identifier.alias, identifier.to_dict())

    def certificates(self) -> list:
        """All certificates, in the order they were created."""
        return [Certificate.from_dict(item) for item in self.data["certificates"]]

    def put_certificate(self, certificate: Certificate) -> None:
        """Adds or replaces a certificate by alias."""
        self.__put__("certificates", certificate.alias, certificate.to_dict())

    def certificate_dir(self, alias: str) -> pathlib.Path:
        """The default export directory for a certificate."""
        return self.root.joinpath(CERTS_DIR, alias)

    def __put__(self, section: str, alias: str, item: dict) -> None:
        items = self.data[section]
        for index, existing in enumerate(items):
            if existing.get("alias") == alias:
                items[index] = item
                return
        items.append(item)

    @staticmethod
    def __empty__() -> dict:
        return {"account": {}, "identifiers": [], "certificates": []}
