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
"""DNS record management on an authoritative server through RFC 2136 dynamic updates."""
import logging

import dns.exception
import dns.name
import dns.query
import dns.rcode
import dns.rdatatype
import dns.tsig
import dns.tsigkeyring
import dns.update

from .. import errors
from ..tools import DEFAULT_TIMEOUT, DNSQuery, server_address


# Constants and Variables
PORT = 53
ALGORITHMS = {
    "HMAC-MD5": dns.tsig.HMAC_MD5,
    "HMAC-SHA1": dns.tsig.HMAC_SHA1,
    "HMAC-SHA224": dns.tsig.HMAC_SHA224,
    "HMAC-SHA256": dns.tsig.HMAC_SHA256,
    "HMAC-SHA384": dns.tsig.HMAC_SHA384,
    "HMAC-SHA512": dns.tsig.HMAC_SHA512,
}
logger = logging.getLogger(__name__)


class DNSRecordManager:
    """Creates, removes and inspects records in a zone hosted on a named DNS server."""

    def __init__(
            self,
            default_server: str = None,
            ttl: int = 60,
            key_name: str = None,
            key_secret: str = None,
            key_algorithm: str = "HMAC-SHA256",
            timeout: float = DEFAULT_TIMEOUT,
            port: int = PORT
    ):
        """
        Args:
            default_server (str): The server used when an operation is not given one explicitly.
            ttl (int): The TTL of created records.
            key_name (str): Optional TSIG key name used to sign updates.
            key_secret (str): The base64 TSIG key secret.
            key_algorithm (str): The TSIG algorithm. Options are the keys of `ALGORITHMS`.
            timeout (float): Network timeout (in seconds) of queries and updates.
            port (int): The DNS port of the servers.

        Raises:
            acme_dns_issuer.errors.ConfigError: When the TSIG algorithm is unknown.
        """
        self.default_server = default_server
        self.ttl = ttl
        self.timeout = timeout
        self.port = port
        self.keyring = None
        self.algorithm = None

        if key_name:
            if key_algorithm.upper() not in ALGORITHMS:
                raise errors.ConfigError(f"Unknown TSIG algorithm '{key_algorithm}'. Options {list(ALGORITHMS)}")
            self.keyring = dns.tsigkeyring.from_text({key_name: key_secret})
            self.algorithm = ALGORITHMS[key_algorithm.upper()]

    def zone_exists(self, zone: str, server: str = None) -> bool:
        """
        Checks that a server answers with the SOA record of a zone. Lookup failures are logged and reported as a
        missing zone.

        Args:
            zone (str): The DNS zone.
            server (str): The server to ask. Defaults to `default_server`.

        Returns:
            bool: True when the SOA record of the zone was returned.
        """
        query = DNSQuery(zone, rtype="SOA", nameservers=self.__servers__(server), timeout=self.timeout)
        try:
            query.resolve()
        except (dns.exception.DNSException, OSError, IndexError) as exc:
            logger.error("Zone lookup for %s on %s failed: %s", zone, server or self.default_server, exc)
            return False
        return "SOA" in query.types

    def record_exists(self, fqdn: str, rtype: str, server: str = None) -> bool:
        """
        Checks whether a record of an exact type exists, asking only the given DNS server.

        Args:
            fqdn (str): The fully qualified record name.
            rtype (str): The record type (e.g. `TXT`).
            server (str): The server to ask. Defaults to `default_server`.

        Returns:
            bool: True iff an answer has exactly the requested type. A missing name or record returns False.

        Raises:
            acme_dns_issuer.errors.DNSQueryError: When resolution fails for any other reason.
        """
        query = DNSQuery(fqdn, rtype=rtype, nameservers=self.__servers__(server), timeout=self.timeout)
        try:
            query.resolve()
        except (dns.exception.DNSException, OSError, IndexError) as exc:
            raise errors.DNSQueryError(f"Could not look up {rtype} record '{fqdn}': {exc}") from exc
        return rtype.upper() in query.types

    def remove_record(self, name: str, zone: str, rtype: str, server: str = None) -> bool:
        """
        Removes every record of a type at a name.

        Args:
            name (str): The record name relative to the zone.
            zone (str): The DNS zone.
            rtype (str): The record type.
            server (str): The server holding the zone. Defaults to `default_server`.

        Returns:
            bool: True when a record existed and was removed, False when there was nothing to remove or the removal
                failed.
        """
        server = server or self.default_server
        try:
            if not self.zone_exists(zone, server):
                return False
            if not self.record_exists(f"{name}.{zone}", rtype, server):
                return False

            update = self.__update__(zone)
            update.delete(self.__relative_name__(name, zone), dns.rdatatype.from_text(rtype))
            self.__send__(update, server)
        except (errors.DNSRecordError, dns.exception.DNSException, OSError) as exc:
            logger.error("Could not remove %s record %s.%s on %s: %s", rtype, name, zone, server, exc)
            return False

        logger.info("Removed %s record %s.%s on %s", rtype, name, zone, server)
        return True

    def create_txt_record(self, name: str, zone: str, data: str, server: str = None) -> bool:
        """
        Publishes a TXT record, replacing any TXT record already at that name so exactly one value remains.

        Args:
            name (str): The record name relative to the zone.
            zone (str): The DNS zone.
            data (str): The TXT value.
            server (str): The server holding the zone. Defaults to `default_server`.

        Returns:
            bool: True when the server accepted the record.
        """
        server = server or self.default_server
        self.remove_record(name, zone, "TXT", server)

        try:
            update = self.__update__(zone)
            update.replace(self.__relative_name__(name, zone), self.ttl, dns.rdatatype.TXT, quote_txt(data))
            self.__send__(update, server)
        except (errors.DNSRecordError, dns.exception.DNSException, OSError) as exc:
            logger.error("Could not create TXT record %s.%s on %s: %s", name, zone, server, exc)
            return False

        logger.info("Created TXT record %s.%s on %s", name, zone, server)
        return True

    def delete_txt_record(self, name: str, zone: str, server: str = None) -> bool:
        """Removes the TXT record at a name, e.g. once a challenge has been validated."""
        return self.remove_record(name, zone, "TXT", server)

    def get_txt_records(self, name: str, zone: str, server: str = None) -> list:
        """
        Reads the TXT values published at a name.

        Args:
            name (str): The record name relative to the zone.
            zone (str): The DNS zone.
            server (str): The server to ask. Defaults to `default_server`.

        Returns:
            list: One list of string segments per TXT record. Empty when the lookup fails.

        Raises:
            acme_dns_issuer.errors.ZoneNotFound: When the server does not have the zone.
        """
        server = server or self.default_server
        if not self.zone_exists(zone, server):
            raise errors.ZoneNotFound(f"Zone '{zone}' does not exist on '{server}'.")

        query = DNSQuery(f"{name}.{zone}", rtype="TXT", nameservers=self.__servers__(server), timeout=self.timeout)
        try:
            query.resolve()
        except (dns.exception.DNSException, OSError, IndexError) as exc:
            logger.error("TXT lookup for %s.%s on %s failed: %s", name, zone, server, exc)
            return []
        return query.value_sets

    def __servers__(self, server: str) -> list:
        server = server or self.default_server
        return [server] if server else []

    def __update__(self, zone: str) -> dns.update.Update:
        return dns.update.Update(zone, keyring=self.keyring, keyalgorithm=self.algorithm or dns.tsig.default_algorithm)

    @staticmethod
    def __relative_name__(name: str, zone: str) -> dns.name.Name:
        return dns.name.from_text(f"{name}.{zone}").relativize(dns.name.from_text(zone))

    def __send__(self, update: dns.update.Update, server: str) -> None:
        if not server:
            raise errors.DNSRecordError("No DNS server given for the update.")

        response = dns.query.tcp(update, server_address(server), timeout=self.timeout, port=self.port)
        rcode = response.rcode()
        if rcode != dns.rcode.NOERROR:
            raise errors.DNSRecordError(f"Received response from server: {dns.rcode.to_text(rcode)}")


def quote_txt(data: str) -> str:
    """Quotes a value as the presentation form of a single TXT string."""
    escaped = data.replace("\\", "\\\\").replace('"', '\\"')
    return f'"{escaped}"'
