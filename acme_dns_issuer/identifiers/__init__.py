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
Driving an ACME identifier to the valid state. `IdentifierResolver` finds or creates the identifier for a DNS name,
and `ChallengeHandler` answers its DNS-01 challenge by publishing the expected TXT record, waiting for it to propagate
and then asking the CA to validate it.
"""
import time

from .. import errors
from ..models import CHALLENGE_TYPE, STATUS_PENDING, STATUS_PROCESSING, STATUS_VALID, Identifier
from ..polling import PropagationPoller, StatusPoller, poll_identifier
from ..tools import Reporter, split_record_name


class ChallengeHandler:
    """Answers the DNS-01 challenge of a pending identifier."""

    # pylint: disable=too-many-arguments
    def __init__(
            self,
            client,
            records,
            propagation: PropagationPoller,
            poller: StatusPoller,
            zone: str,
            master_server: str,
            validation_server: str,
            propagation_interval: float = 10,
            cleanup: bool = False,
            reporter: Reporter = None
    ):
        """
        Args:
            client (acme_dns_issuer.client.ACMEClient): The vault-backed ACME client.
            records (acme_dns_issuer.records.DNSRecordManager): Publishes the challenge record.
            propagation (acme_dns_issuer.polling.PropagationPoller): Waits for the record on the validation server.
            poller (acme_dns_issuer.polling.StatusPoller): Waits for the CA to validate the identifier.
            zone (str): The DNS zone the record is published in.
            master_server (str): The authoritative server receiving the record.
            validation_server (str): The server propagation is confirmed on.
            propagation_interval (float): Seconds between two propagation lookups.
            cleanup (bool): Remove the challenge record once the CA has decided.
            reporter (acme_dns_issuer.tools.Reporter): Receives progress and outcome records.
        """
        self.client = client
        self.records = records
        self.propagation = propagation
        self.poller = poller
        self.zone = zone
        self.master_server = master_server
        self.validation_server = validation_server or master_server
        self.propagation_interval = propagation_interval
        self.cleanup = cleanup
        self.reporter = reporter or Reporter()

    def handle(self, identifier: Identifier) -> Identifier:
        """
        Runs the challenge for an identifier and waits for the CA's verdict.

        Args:
            identifier (acme_dns_issuer.models.Identifier): A pending or processing identifier.

        Returns:
            acme_dns_issuer.models.Identifier: The identifier once it is valid.

        Raises:
            acme_dns_issuer.errors.ChallengeError: When the CA offers no DNS-01 challenge, or the challenge has failed.
            acme_dns_issuer.errors.DNSRecordError: When the TXT record cannot be published.
            acme_dns_issuer.errors.InvalidIdentifier: When the CA marks the identifier invalid.
        """
        descriptor = self.client.complete_challenge(identifier.alias, CHALLENGE_TYPE)
        if descriptor is None:
            raise errors.ChallengeError(f"No {CHALLENGE_TYPE} challenge response found for '{identifier.dns}'.")
        if descriptor.status in (STATUS_PROCESSING, STATUS_VALID):
            # Already answered by an earlier run, only the verdict is missing
            self.reporter.info("challenge", identifier.dns, "already %s at the CA", descriptor.status)
            return poll_identifier(self.client, identifier.alias, self.poller)
        if descriptor.status != STATUS_PENDING:
            raise errors.ChallengeError(
                f"The {CHALLENGE_TYPE} challenge for '{identifier.dns}' is {descriptor.status}, expected pending."
            )

        try:
            record_name = split_record_name(descriptor.record_name, self.zone)
        except ValueError as exc:
            raise errors.ChallengeError(str(exc)) from exc
        self.reporter.info("challenge", descriptor.record_name, "expects TXT value %s", descriptor.record_value)

        if not self.records.create_txt_record(record_name, self.zone, descriptor.record_value, self.master_server):
            raise errors.DNSRecordError(
                f"TXT record '{descriptor.record_name}' could not be created on '{self.master_server}'."
            )
        self.reporter.success("dns", descriptor.record_name, "published on %s", self.master_server)

        try:
            elapsed = self.propagation.wait_for_txt(
                record_name, self.zone, descriptor.record_value, self.validation_server, self.propagation_interval
            )
            self.reporter.success("propagation", descriptor.record_name, "visible on %s after %.1f seconds",
                                  self.validation_server, elapsed)

            self.client.submit_challenge(identifier.alias, CHALLENGE_TYPE)
            self.reporter.info("challenge", identifier.dns, "submitted to the CA")
            return poll_identifier(self.client, identifier.alias, self.poller)
        finally:
            if self.cleanup:
                self.records.delete_txt_record(record_name, self.zone, self.master_server)


class IdentifierResolver:
    """Finds or creates the identifier for a DNS name and makes sure it is valid."""

    def __init__(self, client, challenge_handler: ChallengeHandler, reporter: Reporter = None, clock=time.time):
        self.client = client
        self.challenge_handler = challenge_handler
        self.reporter = reporter or Reporter()
        self.clock = clock

    def find(self, dns_name: str, refresh: bool = False) -> Identifier:
        """
        Returns the first identifier for `dns_name` that is not invalid, or None.

        Args:
            dns_name (str): The fully qualified name.
            refresh (bool): Re-read each candidate's status from the CA before choosing it. Candidates the CA has
                invalidated, or can no longer read, are passed over.
        """
        for identifier in self.client.list_identifiers():
            if identifier.dns != dns_name or identifier.is_invalid:
                continue
            if refresh:
                identifier = self.refresh(identifier)
                if identifier is None or identifier.is_invalid:
                    continue
            return identifier
        return None

    def refresh(self, identifier: Identifier) -> Identifier:
        """Returns the identifier with its status as the CA reports it, or None when the CA cannot be asked."""
        try:
            return self.client.refresh_identifier(identifier.alias)
        except errors.IdentifierError as exc:
            self.reporter.info("identifier", identifier.dns, "skipping identifier %s: %s",
                               identifier.alias, exc.message)
            return None

    def get(self, alias: str) -> Identifier:
        """Returns the stored identifier with `alias`, or None."""
        for identifier in self.client.list_identifiers():
            if identifier.alias == alias:
                return identifier
        return None

    def resolve(self, dns_name: str) -> Identifier:
        """
        Returns a valid identifier for a DNS name, creating and validating one when needed. Stored identifiers are
        checked against the CA first. An identifier that is already valid is returned without any DNS or challenge
        work.

        Args:
            dns_name (str): The fully qualified name.

        Returns:
            acme_dns_issuer.models.Identifier: The valid identifier.

        Raises:
            acme_dns_issuer.errors.IdentifierError: When a created identifier cannot be found again.
        """
        identifier = self.find(dns_name, refresh=True)

        if identifier is None:
            alias = self.new_alias(dns_name)
            self.reporter.info("identifier", dns_name, "creating identifier %s", alias)
            self.client.create_identifier(dns_name, alias)
            identifier = self.get(alias)
            if identifier is None:
                raise errors.IdentifierError(f"Identifier for '{dns_name}' could not be created.")

        if identifier.is_valid:
            self.reporter.success("identifier", dns_name, "identifier %s is valid", identifier.alias)
            return identifier

        self.reporter.info("identifier", dns_name, "identifier %s is %s", identifier.alias, identifier.status)
        self.challenge_handler.handle(identifier)

        identifier = self.get(identifier.alias)
        if identifier is None or not identifier.is_valid:
            raise errors.InvalidIdentifier(f"Identifier for '{dns_name}' did not become valid.")
        return identifier

    def new_alias(self, dns_name: str) -> str:
        """Builds a unique alias from the name with dots replaced by hyphens and a timestamp suffix."""
        return f"{dns_name.replace('.', '-')}-{int(self.clock())}"
