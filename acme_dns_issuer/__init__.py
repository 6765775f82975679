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
acme_dns_issuer issues a TLS certificate for a name in a DNS zone you control, using the ACME DNS-01 challenge. It
publishes the challenge record on your authoritative DNS server through RFC 2136 dynamic updates, waits until a
validation-facing resolver sees it, has the CA validate it, and then gets the certificate signed and exported.
Although this module is intended for use with Let's Encrypt, it will support any CA utilizing the ACME v2 protocol.
"""
import collections
import threading

from . import errors
from .account import AccountRegistrar
from .certificates import CertificateExporter, CertificateIssuer
from .client import ACMEClient
from .config import IssuerConfig, load_config
from .identifiers import ChallengeHandler, IdentifierResolver
from .polling import PropagationPoller, StatusPoller
from .records import DNSRecordManager
from .tools import Reporter
from .vault import Vault


# Constants and Variables
DNS_LABEL = '_acme-challenge'
__pdoc__ = {"tests": False}    # Excludes 'tests' submodule from documentation

IssuanceResult = collections.namedtuple("IssuanceResult", ["identifier", "certificate", "exported"])


class Issuer:
    """
    Runs one issuance for the name described by an `IssuerConfig`. Components can be swapped for testing by passing
    them in; anything not passed is built from the configuration.
    """
    # One object wires every component together, the same way ACMEClient keeps everything on one class.
    # pylint: disable=too-many-instance-attributes

    def __init__(
            self,
            config: IssuerConfig,
            client: ACMEClient = None,
            records: DNSRecordManager = None,
            reporter: Reporter = None,
            cancel: threading.Event = None,
            prompt=None,
            email_validator=None
    ):
        """
        Args:
            config (acme_dns_issuer.config.IssuerConfig): The run parameters.
            client (acme_dns_issuer.client.ACMEClient): The ACME client. Defaults to one on the configured vault.
            records (acme_dns_issuer.records.DNSRecordManager): The DNS record manager for the master server.
            reporter (acme_dns_issuer.tools.Reporter): Receives progress and outcome records.
            cancel (threading.Event): Setting this event stops any wait in progress.
            prompt (callable): Asked for a contact email when registration needs one and none was configured.
            email_validator (callable): Overrides contact email validation.

        Examples:
            >>> import acme_dns_issuer
            >>> config = acme_dns_issuer.load_config(
            ...     name="www",
            ...     zone="example.com",
            ...     email="hostmaster@example.com",
            ...     staging=True,
            ...     master_server="127.0.0.1",
            ...     validation_server="8.8.8.8",
            ...     export=True
            ... )
            >>> result = acme_dns_issuer.Issuer(config).run()
        """
        self.config = config
        self.reporter = reporter or Reporter(quiet=config.quiet)
        self.cancel = cancel or threading.Event()
        self.vault = client.vault if client else Vault.load(config.vault_dir)
        self.client = client or ACMEClient(self.vault, key_type=config.key_type)
        self.records = records or DNSRecordManager(
            default_server=config.master_server,
            ttl=config.record_ttl,
            key_name=config.tsig_key_name,
            key_secret=config.tsig_key_secret,
            key_algorithm=config.tsig_algorithm,
        )

        acme_poller = StatusPoller(
            interval=config.acme_interval,
            max_wait=config.acme_max_wait,
            cancel=self.cancel,
            reporter=self.reporter,
        )
        propagation = PropagationPoller(
            self.records,
            max_wait=config.propagation_max_wait,
            cancel=self.cancel,
            reporter=self.reporter,
        )

        self.registrar = AccountRegistrar(
            self.client, email=config.email, prompt=prompt, reporter=self.reporter, email_validator=email_validator
        )
        self.challenge_handler = ChallengeHandler(
            self.client,
            self.records,
            propagation,
            acme_poller,
            zone=config.zone,
            master_server=config.master_server,
            validation_server=config.resolved_validation_server,
            propagation_interval=config.propagation_interval,
            cleanup=config.cleanup,
            reporter=self.reporter,
        )
        self.resolver = IdentifierResolver(self.client, self.challenge_handler, reporter=self.reporter)
        self.issuer = CertificateIssuer(self.client, acme_poller, reporter=self.reporter)
        self.exporter = CertificateExporter(self.vault, reporter=self.reporter)

    def run(self) -> IssuanceResult:
        """
        Registers the account if needed, validates the name, issues the certificate and exports it when requested.

        Returns:
            IssuanceResult: The valid identifier, the signed certificate and the exported files (empty when export
                was not requested).

        Raises:
            acme_dns_issuer.errors.IssuanceError: The first fatal condition met. It has already been reported.
        """
        config = self.config
        try:
            self.registrar.ensure_account(force=config.force, staging=config.staging, init=config.init)
            identifier = self.resolver.resolve(config.dns_name)
            certificate = self.issuer.issue(identifier)
            exported = self.exporter.export(certificate, config.export_dir, config.overwrite) if config.export else []
        except errors.IssuanceError as exc:
            self.reporter.error("run", config.dns_name, "%s: %s", type(exc).__name__, exc.message)
            raise

        self.reporter.success("run", config.dns_name, "certificate %s issued", certificate.alias)
        return IssuanceResult(identifier, certificate, exported)


__all__ = [
    "DNS_LABEL",
    "ACMEClient",
    "DNSRecordManager",
    "IssuanceResult",
    "Issuer",
    "IssuerConfig",
    "Reporter",
    "Vault",
    "errors",
    "load_config",
]
