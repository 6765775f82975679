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
The ACME side of issuance. `ACMEClient` exposes the CA as vault-backed identifiers and certificates that are looked up
by alias, and performs every network call against the CA through the `acme` library.
"""
import json
import logging

import OpenSSL
import josepy as jose
from acme import challenges
from acme import client
from acme import crypto_util
from acme import errors as acme_errors
from acme import messages
from cryptography import x509
from cryptography.hazmat.backends import default_backend
from cryptography.hazmat.primitives.asymmetric import rsa, ec
from cryptography.hazmat.primitives.serialization import Encoding, PrivateFormat, NoEncryption

from .. import errors
from ..models import (
    CHALLENGE_TYPE,
    Certificate,
    ChallengeDescriptor,
    Identifier,
    certificate_alias,
    normalize_status,
)
from ..vault import Vault


# Constants and Variables
USER_AGENT = "acme_dns_issuer/1.0"
KEY_TYPES = ["ec256", "ec384", "rsa2048", "rsa4096"]
CA_ERRORS = (acme_errors.Error, messages.Error, jose.errors.Error, OSError)
logger = logging.getLogger(__name__)


def generate_private_key(key_type: str = "ec256") -> bytes:
    """
    Generates a new RSA or EC private key.

    Args:
        key_type (str): The requested key type. Options are: [`ec256`, `ec384`, `rsa2048`, `rsa4096`]

    Returns:
        bytes: The PEM encoded private key data bytes-string.

    Raises:
        acme_dns_issuer.errors.ConfigError: When an unknown/unsupported `key_type` is requested.
    """
    if key_type in ("ec256", "ec384"):
        curve = ec.SECP256R1() if key_type == "ec256" else ec.SECP384R1()
        key = ec.generate_private_key(curve, default_backend())
        return key.private_bytes(
            encoding=Encoding.PEM,
            format=PrivateFormat.TraditionalOpenSSL,
            encryption_algorithm=NoEncryption()
        )
    if key_type in ("rsa2048", "rsa4096"):
        key = OpenSSL.crypto.PKey()
        key.generate_key(OpenSSL.crypto.TYPE_RSA, int(key_type[3:]))
        return OpenSSL.crypto.dump_privatekey(OpenSSL.crypto.FILETYPE_PEM, key)

    raise errors.ConfigError(f"Invalid private key type '{key_type}'. Options {KEY_TYPES}")


def split_chain(fullchain_pem: str) -> tuple:
    """
    Splits a PEM chain returned by the CA into its leaf and issuer certificates.

    Args:
        fullchain_pem (str): The PEM chain, leaf first.

    Returns:
        tuple: The leaf `cryptography.x509.Certificate` and the issuer `cryptography.x509.Certificate`.

    Raises:
        acme_dns_issuer.errors.InvalidCertificate: When the chain does not hold at least a leaf and an issuer.
    """
    certs = x509.load_pem_x509_certificates(fullchain_pem.encode())
    if len(certs) < 2:
        raise errors.InvalidCertificate("The CA returned a chain without an issuer certificate.")
    return certs[0], certs[1]


class ACMEClient:
    """Vault-backed access to one ACME account and the identifiers and certificates it owns."""

    def __init__(self, vault: Vault, verify_ssl: bool = True, key_type: str = "ec256"):
        """
        Args:
            vault (acme_dns_issuer.vault.Vault): The vault holding the account and all objects.
            verify_ssl (bool): Verify the SSL certificate of the ACME server when making requests.
            key_type (str): The key type generated for certificate private keys.
        """
        self.vault = vault
        self.verify_ssl = verify_ssl
        self.key_type = key_type
        self._acme_client = None

    # Account

    @property
    def has_account(self) -> bool:
        return self.vault.has_account

    @property
    def contact(self) -> str:
        return self.vault.contact

    def init_account(self, directory: str) -> None:
        """
        Creates a new account key bound to an ACME directory. Any previous account in the vault is replaced.

        Args:
            directory (str): The ACME directory URL to interact with.
        """
        # Generate a new RSA2048 account key
        rsa_key = rsa.generate_private_key(public_exponent=65537, key_size=2048, backend=default_backend())
        account_key = jose.JWKRSA(key=rsa_key)

        self.vault.reset_account(directory, account_key.json_dumps())
        self._acme_client = None
        # Fetch the directory now so an unreachable CA fails the initialization
        _ = self.acme_client
        self.vault.save()
        logger.info("Initialized ACME account key for %s", directory)

    def register(self, email: str) -> messages.RegistrationResource:
        """
        Registers the account at the ACME server with a contact email. By running this method, you are agreeing to
        the ACME server's terms of use.

        Args:
            email (str): The contact email address.

        Returns:
            acme.messages.RegistrationResource: The registration returned by the server.
        """
        registration = messages.NewRegistration.from_data(email=email, terms_of_service_agreed=True)
        regr = self.__request__(errors.AccountError, "register the account", self.acme_client.new_account, registration)

        self.vault.registration = json.loads(regr.json_dumps())
        self.vault.contact = email
        self.vault.save()
        logger.info("Registered ACME account %s for %s", regr.uri, email)
        return regr

    # Identifiers

    def list_identifiers(self) -> list:
        return self.vault.identifiers()

    def get_identifier(self, alias: str) -> Identifier:
        for identifier in self.vault.identifiers():
            if identifier.alias == alias:
                return identifier
        raise errors.IdentifierError(f"No identifier with alias '{alias}' exists.")

    def create_identifier(self, dns_name: str, alias: str) -> Identifier:
        """
        Creates a new identifier for a DNS name. A private key and CSR are generated for the name and a new order is
        placed with them; the order's authorization becomes the identifier.

        Args:
            dns_name (str): The fully qualified name to validate.
            alias (str): The unique alias to store the identifier under.

        Returns:
            acme_dns_issuer.models.Identifier: The stored identifier.
        """
        private_key = generate_private_key(self.key_type)
        csr = crypto_util.make_csr(private_key, [dns_name])
        order = self.__request__(
            errors.IdentifierError, f"create an order for '{dns_name}'", self.acme_client.new_order, csr
        )
        authzr = order.authorizations[0]

        identifier = Identifier(
            dns=dns_name,
            alias=alias,
            status=normalize_status(authzr.body.status.name),
            authorization_uri=authzr.uri,
            order_uri=order.uri,
            private_key=private_key.decode(),
            csr=csr.decode(),
        )
        self.vault.put_identifier(identifier)
        self.vault.save()
        logger.info("Created identifier %s for %s (order %s)", alias, dns_name, order.uri)
        return identifier

    def refresh_identifier(self, alias: str) -> Identifier:
        """Re-reads an identifier's status from its authorization."""
        identifier = self.get_identifier(alias)
        authorization = self.__fetch_authorization__(identifier.authorization_uri, errors.IdentifierError)

        identifier.status = normalize_status(authorization.status.name)
        self.vault.put_identifier(identifier)
        self.vault.save()
        return identifier

    def complete_challenge(self, alias: str, challenge_type: str = CHALLENGE_TYPE) -> ChallengeDescriptor:
        """
        Computes the record the CA expects for an identifier's challenge. Nothing is sent to the CA and nothing is
        published.

        Args:
            alias (str): The identifier alias.
            challenge_type (str): The challenge type. Only `dns-01` is supported.

        Returns:
            acme_dns_issuer.models.ChallengeDescriptor: The challenge's status and its expected record, or None when
                the CA did not offer the challenge for this identifier.
        """
        identifier = self.get_identifier(alias)
        challb = self.__find_challenge__(identifier, challenge_type)
        if challb is None:
            return None

        _, validation = challb.response_and_validation(self.acme_client.net.key)
        return ChallengeDescriptor(
            type=challenge_type,
            status=challb.status.name,
            record_name=challb.chall.validation_domain_name(identifier.dns),
            record_value=validation,
        )

    def submit_challenge(self, alias: str, challenge_type: str = CHALLENGE_TYPE) -> None:
        """Tells the CA the challenge is ready to be validated."""
        identifier = self.get_identifier(alias)
        challb = self.__find_challenge__(identifier, challenge_type)
        if challb is None:
            raise errors.ChallengeError(f"No {challenge_type} challenge available for '{identifier.dns}'.")

        self.__request__(
            errors.ChallengeError,
            f"accept the {challenge_type} challenge for '{identifier.dns}'",
            self.acme_client.answer_challenge,
            challb,
            challb.response(self.acme_client.net.key),
        )
        logger.info("Submitted %s challenge for %s", challenge_type, identifier.dns)

    # Certificates

    def list_certificates(self) -> list:
        return self.vault.certificates()

    def get_certificate(self, alias: str) -> Certificate:
        for certificate in self.vault.certificates():
            if certificate.alias == alias:
                return certificate
        raise errors.InvalidCertificate(f"No certificate with alias '{alias}' exists.")

    def create_certificate(self, identifier_alias: str, alias: str = None) -> Certificate:
        """
        Creates a certificate object for an identifier. It reuses the identifier's order, key and CSR.

        Args:
            identifier_alias (str): The alias of the (valid) identifier to certify.
            alias (str): The certificate alias. Defaults to `<identifier_alias>-cert`.

        Returns:
            acme_dns_issuer.models.Certificate: The stored, unsigned certificate.
        """
        identifier = self.get_identifier(identifier_alias)
        certificate = Certificate(
            alias=alias or certificate_alias(identifier_alias),
            identifier_alias=identifier_alias,
            order_uri=identifier.order_uri,
            private_key=identifier.private_key,
            csr=identifier.csr,
        )
        self.vault.put_certificate(certificate)
        self.vault.save()
        return certificate

    def submit_certificate(self, alias: str) -> Certificate:
        """
        Submits a certificate's CSR for signing by finalizing its order. Orders that are already being processed or
        are already valid are left alone.
        """
        certificate = self.get_certificate(alias)
        order = self.__fetch_order__(certificate.order_uri, certificate.csr.encode())

        if order.body.status == messages.STATUS_READY:
            order = self.__request__(
                errors.CertificateError, f"finalize certificate '{alias}'", self.acme_client.begin_finalization, order
            )
            logger.info("Submitted certificate %s for signing", alias)
        elif order.body.status in (messages.STATUS_INVALID, messages.STATUS_PENDING):
            raise errors.CertificateError(
                f"Order for certificate '{alias}' is {order.body.status.name} and cannot be finalized."
            )

        certificate.status = order.body.status.name
        self.vault.put_certificate(certificate)
        self.vault.save()
        return certificate

    def refresh_certificate(self, alias: str) -> Certificate:
        """
        Re-reads a certificate's order. Once the order is valid the chain is downloaded, split into the leaf and
        issuer certificates, and `issuer_serial_number` is set.
        """
        certificate = self.get_certificate(alias)
        if certificate.is_signed:
            return certificate

        body = self.__request__(
            errors.CertificateError,
            f"read the order of certificate '{alias}'",
            self.__post_json__,
            messages.Order,
            certificate.order_uri,
        )
        certificate.status = body.status.name

        if body.status == messages.STATUS_VALID and body.certificate:
            fullchain_pem = self.__request__(
                errors.CertificateError, f"download certificate '{alias}'", self.__post_text__, body.certificate
            )
            leaf, issuer = split_chain(fullchain_pem)
            certificate.certificate = leaf.public_bytes(Encoding.PEM).decode()
            certificate.issuer = issuer.public_bytes(Encoding.PEM).decode()
            certificate.issuer_serial_number = format(issuer.serial_number, "X")
            logger.info("Certificate %s signed with serial %X", alias, leaf.serial_number)

        self.vault.put_certificate(certificate)
        self.vault.save()
        return certificate

    @property
    def acme_client(self) -> client.ClientV2:
        """
        The `acme` client for the vault's account, built on first use.

        Raises:
            acme_dns_issuer.errors.AccountError: When the vault does not hold an account yet, or when the account's
                directory cannot be read.
        """
        if self._acme_client is None:
            if not self.vault.has_account:
                raise errors.AccountError("No ACME account found. Initialize an account first.")

            account = self.vault.account
            account_key = jose.JWKRSA.json_loads(account["key"])
            net = client.ClientNetwork(account_key, user_agent=USER_AGENT, verify_ssl=self.verify_ssl)
            directory_obj = self.__request__(
                errors.AccountError,
                f"read the directory at {account['directory']}",
                lambda: messages.Directory.from_json(net.get(account["directory"]).json()),
            )
            self._acme_client = client.ClientV2(directory_obj, net=net)

            if self.vault.registration:
                net.account = messages.RegistrationResource.from_json(self.vault.registration)

        return self._acme_client

    @staticmethod
    def __request__(error_class, action: str, func, *args):
        """Runs a call against the CA, re-raising protocol and transport failures as `error_class`."""
        try:
            return func(*args)
        except CA_ERRORS as exc:
            raise error_class(f"ACME server failed to {action}: {exc}") from exc

    def __post_json__(self, message_class, uri: str):
        # POST-as-GET, the server is the source of truth for object state
        return message_class.from_json(self.acme_client.net.post(uri, None).json())

    def __post_text__(self, uri: str) -> str:
        return self.acme_client.net.post(uri, None).text

    def __fetch_authorization__(self, uri: str, error_class=errors.IdentifierError) -> messages.Authorization:
        return self.__request__(
            error_class, f"read authorization {uri}", self.__post_json__, messages.Authorization, uri
        )

    def __fetch_order__(self, order_uri: str, csr_pem: bytes) -> messages.OrderResource:
        body = self.__request__(
            errors.CertificateError, f"read order {order_uri}", self.__post_json__, messages.Order, order_uri
        )
        authorizations = [
            messages.AuthorizationResource(body=self.__fetch_authorization__(uri, errors.CertificateError), uri=uri)
            for uri in body.authorizations
        ]
        return messages.OrderResource(body=body, uri=order_uri, authorizations=authorizations, csr_pem=csr_pem)

    def __find_challenge__(self, identifier: Identifier, challenge_type: str) -> messages.ChallengeBody:
        if challenge_type != CHALLENGE_TYPE:
            raise errors.ChallengeError(f"Unsupported challenge type '{challenge_type}'.")

        authorization = self.__fetch_authorization__(identifier.authorization_uri, errors.ChallengeError)
        for challb in authorization.challenges:
            if isinstance(challb.chall, challenges.DNS01):
                return challb
        return None
