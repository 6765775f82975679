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
"""DNS, validation and reporting tools shared by the issuance components."""
import hashlib
import logging

import dns.exception
import dns.inet
import dns.rdatatype
import dns.resolver
import validators


# Constants and Variables
DEFAULT_TIMEOUT = 10
CHECKSUM_ALGORITHM = "sha256"
OUTCOME_INFO = "info"
OUTCOME_SUCCESS = "success"
OUTCOME_ERROR = "error"
OUTCOME_PROGRESS = "progress"
logger = logging.getLogger(__name__)


class DNSQuery:
    """A basic class to make DNS queries against a specific set of nameservers."""

    def __init__(self, domain: str, rtype: str = "A", nameservers: list = None, timeout: float = DEFAULT_TIMEOUT):
        """
        Initializes our DNS query. When `nameservers` is given, the system resolver configuration is ignored
        entirely, so answers only ever come from those servers.

        Args:
            domain (str): The fully qualified name to query.
            rtype (str): The DNS request type (e.g. `A`, `TXT`, `MX`, `SOA`, etc.).
            nameservers (list): Nameservers (IP addresses or host names) to query.
            timeout (float): The lifetime (in seconds) of a single query.
        """
        self.domain = domain
        self.type = rtype.upper()
        self.nameservers = [server for server in (nameservers or []) if server]
        self.timeout = timeout
        self.answers = []
        self.values = []

    def resolve(self) -> list:
        """
        Queries the nameservers with our configured object values. A name or record that does not exist yields an
        empty answer; every other resolution failure is raised to the caller.

        Returns:
            list: A list of the textual value of each answer.

        Raises:
            dns.exception.DNSException: When the query fails for any reason besides NXDOMAIN or NoAnswer.
        """
        try:
            self.answers = list(self.__resolver__().resolve(self.domain, self.type, search=False))
        except (dns.resolver.NoAnswer, dns.resolver.NXDOMAIN):
            self.answers = []

        self.values = [answer.to_text() for answer in self.answers]
        return self.values

    @property
    def value_sets(self) -> list:
        """
        The string segments of each TXT answer. A single TXT record may carry several strings.

        Returns:
            list: A list with one list of decoded strings per TXT record. Bytes that are not UTF-8 are replaced.
        """
        return [
            [segment.decode(errors="replace") for segment in answer.strings]
            for answer in self.answers if hasattr(answer, "strings")
        ]

    @property
    def types(self) -> list:
        """The record type names of each answer."""
        return [dns.rdatatype.to_text(answer.rdtype) for answer in self.answers]

    def __resolver__(self) -> dns.resolver.Resolver:
        """
        Builds the resolver for this query.

        Returns:
            dns.resolver.Resolver: A resolver restricted to our nameservers, or the system resolver otherwise.
        """
        resolver = dns.resolver.Resolver(configure=not self.nameservers)
        if self.nameservers:
            resolver.nameservers = [server_address(server) for server in self.nameservers]
        resolver.lifetime = self.timeout
        resolver.cache = None
        return resolver


def server_address(server: str) -> str:
    """
    Returns the IP address for a DNS server given as either an address or a host name.

    Args:
        server (str): An IPv4/IPv6 address or a resolvable host name.

    Returns:
        str: The address of the server.
    """
    if dns.inet.is_address(server):
        return server

    return DNSQuery(server, rtype="A").resolve()[0]


def has_mx_record(domain: str) -> bool:
    """
    Checks that a mail domain publishes at least one MX record.

    Args:
        domain (str): The domain portion of an email address.

    Returns:
        bool: True when at least one MX record was returned.
    """
    try:
        return bool(DNSQuery(domain, rtype="MX").resolve())
    except dns.exception.DNSException as exc:
        logger.debug("MX lookup for %s failed: %s", domain, exc)
        return False


def is_valid_email(address: str, mx_lookup=has_mx_record) -> bool:
    """
    Checks whether a value can be used as the ACME account contact address.

    Args:
        address (str): The candidate email address.
        mx_lookup (callable): Called with the domain part, returns whether the domain accepts mail.

    Returns:
        bool: True when the address splits into exactly a local part and a non-empty domain, the domain has an
            MX record, and the address is syntactically well-formed.
    """
    parts = (address or "").split("@")
    if len(parts) != 2 or not parts[1]:
        return False
    if not mx_lookup(parts[1]):
        return False

    return bool(validators.email(address))


def split_record_name(fqdn: str, zone: str) -> str:
    """
    Strips the zone suffix from a fully qualified record name.

    Args:
        fqdn (str): Fully qualified record name (e.g. `_acme-challenge.www.example.com`).
        zone (str): The DNS zone (e.g. `example.com`).

    Returns:
        str: The name relative to the zone (e.g. `_acme-challenge.www`).

    Raises:
        ValueError: When the record is not inside the zone.
    """
    fqdn = fqdn.rstrip(".")
    zone = zone.rstrip(".")
    suffix = f".{zone}"

    if not fqdn.lower().endswith(suffix.lower()):
        raise ValueError(f"Record '{fqdn}' is not under zone '{zone}'")

    return fqdn[:-len(suffix)]


def file_checksum(path, algorithm: str = CHECKSUM_ALGORITHM) -> str:
    """
    Hashes the contents of a file.

    Args:
        path (str): The file to hash.
        algorithm (str): Any algorithm name accepted by `hashlib.new()`.

    Returns:
        str: The upper-case hex digest of the file contents.
    """
    digest = hashlib.new(algorithm)
    with open(path, "rb") as hashed_file:
        for chunk in iter(lambda: hashed_file.read(65536), b""):
            digest.update(chunk)
    return digest.hexdigest().upper()


class Reporter:
    """
    Emits the progress of an issuance run as log records. Every record carries `phase`, `target` and `outcome`
    attributes so handlers can filter or format on them.
    """

    def __init__(self, log: logging.Logger = None, quiet: bool = False) -> None:
        self.log = log or logging.getLogger("acme_dns_issuer")
        self.quiet = quiet

    def info(self, phase: str, target: str, msg: str, *args) -> None:
        self.__emit__(logging.INFO, OUTCOME_INFO, phase, target, msg, args)

    def success(self, phase: str, target: str, msg: str, *args) -> None:
        self.__emit__(logging.INFO, OUTCOME_SUCCESS, phase, target, msg, args)

    def progress(self, phase: str, target: str, msg: str, *args) -> None:
        self.__emit__(logging.DEBUG, OUTCOME_PROGRESS, phase, target, msg, args)

    def error(self, phase: str, target: str, msg: str, *args) -> None:
        self.__emit__(logging.ERROR, OUTCOME_ERROR, phase, target, msg, args)

    def __emit__(self, level: int, outcome: str, phase: str, target: str, msg: str, args: tuple) -> None:
        # Quiet mode only lets failures through
        if self.quiet and level < logging.WARNING:
            return
        extra = {"phase": phase, "target": target, "outcome": outcome}
        self.log.log(level, "[%s] %s: " + msg, phase, target, *args, extra=extra)
