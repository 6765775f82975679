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
"""One-time ACME account setup."""
from acme import errors as acme_errors
from acme import messages

from .. import errors
from ..config import PRODUCTION_DIRECTORY, STAGING_DIRECTORY
from ..tools import Reporter, is_valid_email


# Constants and Variables
MAX_PROMPTS = 5


class AccountRegistrar:
    """Makes sure an initialized, registered ACME account exists in the vault."""

    def __init__(self, client, email: str = None, prompt=None, reporter: Reporter = None, email_validator=None):
        """
        Args:
            client (acme_dns_issuer.client.ACMEClient): The vault-backed ACME client.
            email (str): The contact email to register with. When unset, `prompt` is asked for one.
            prompt (callable): Called with a prompt message, returns a candidate email. None disables prompting.
            reporter (acme_dns_issuer.tools.Reporter): Receives progress and outcome records.
            email_validator (callable): Decides whether an email is acceptable. Defaults to `is_valid_email`.
        """
        self.client = client
        self.email = email
        self.prompt = prompt
        self.reporter = reporter or Reporter()
        self.email_validator = email_validator or is_valid_email

    def ensure_account(self, force: bool = False, staging: bool = False, init: bool = False):
        """
        Initializes the account when there is none (or when `force`/`init` is set) and registers it when it has no
        contact yet.

        Args:
            force (bool): Replace any existing account with a new one.
            staging (bool): Bind a new account to the staging endpoint instead of production.
            init (bool): Explicitly initialize a new account.

        Returns:
            acme_dns_issuer.client.ACMEClient: The client, now holding a registered account.

        Raises:
            acme_dns_issuer.errors.AccountError: When initialization or registration fails.
            acme_dns_issuer.errors.InvalidEmail: When no valid contact email could be obtained.
        """
        directory = STAGING_DIRECTORY if staging else PRODUCTION_DIRECTORY

        if force or init or not self.client.has_account:
            self.reporter.info("account", directory, "initializing ACME account")
            try:
                self.client.init_account(directory)
            except (acme_errors.Error, messages.Error, OSError, ValueError) as exc:
                raise errors.AccountError(f"ACME account could not be initialized at '{directory}': {exc}") from exc

        if self.client.contact:
            self.reporter.info("account", self.client.contact, "account already registered")
            return self.client

        email = self.__contact_email__()
        try:
            self.client.register(email)
        except (acme_errors.Error, messages.Error, OSError, ValueError) as exc:
            raise errors.AccountError(f"ACME account could not be registered for '{email}': {exc}") from exc

        self.reporter.success("account", email, "account registered, terms of service accepted")
        return self.client

    def __contact_email__(self) -> str:
        if self.email:
            if not self.email_validator(self.email):
                raise errors.InvalidEmail(f"Value '{self.email}' is not a valid email address.")
            return self.email

        if self.prompt is None:
            raise errors.InvalidEmail("No account email found. A contact email is required to register.")

        for _ in range(MAX_PROMPTS):
            candidate = (self.prompt("Contact email for the ACME account: ") or "").strip()
            if self.email_validator(candidate):
                return candidate
            self.reporter.error("account", candidate or "<empty>", "not a valid email address")

        raise errors.InvalidEmail("No valid account email was entered.")
