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
"""Certificate signing and export."""
import collections
import pathlib

from cryptography import x509
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.serialization import pkcs12

from .. import errors
from ..models import Certificate, Identifier, certificate_alias
from ..polling import StatusPoller, poll_certificate
from ..tools import Reporter, file_checksum


ExportedFile = collections.namedtuple("ExportedFile", ["path", "checksum"])


class CertificateIssuer:
    """Finds or creates the certificate of a valid identifier and gets it signed."""

    def __init__(self, client, poller: StatusPoller, reporter: Reporter = None):
        self.client = client
        self.poller = poller
        self.reporter = reporter or Reporter()

    def find(self, alias: str) -> Certificate:
        for certificate in self.client.list_certificates():
            if certificate.alias == alias:
                return certificate
        return None

    def issue(self, identifier: Identifier) -> Certificate:
        """
        Returns the signed certificate for an identifier. A certificate that is already signed is returned without
        being submitted again.

        Args:
            identifier (acme_dns_issuer.models.Identifier): A valid identifier.

        Returns:
            acme_dns_issuer.models.Certificate: The signed certificate.

        Raises:
            acme_dns_issuer.errors.InvalidIdentifier: When the identifier is not valid.
            acme_dns_issuer.errors.CertificateError: When the certificate cannot be created or is rejected.
        """
        if identifier is None or not identifier.is_valid:
            raise errors.InvalidIdentifier("A certificate can only be issued for a valid identifier.")

        alias = certificate_alias(identifier.alias)
        certificate = self.find(alias)
        if certificate is None:
            self.reporter.info("certificate", alias, "creating certificate")
            self.client.create_certificate(identifier.alias, alias)
            certificate = self.find(alias)
            if certificate is None:
                raise errors.CertificateError(f"Certificate '{alias}' could not be created.")

        if not certificate.is_signed:
            self.client.submit_certificate(alias)
            self.reporter.info("certificate", alias, "submitted for signing")
            poll_certificate(self.client, alias, self.poller)
        else:
            self.reporter.info("certificate", alias, "already signed, issuer serial %s",
                               certificate.issuer_serial_number)

        return self.client.get_certificate(alias)


class CertificateExporter:
    """Writes a signed certificate and its key material to a directory."""

    def __init__(self, vault, reporter: Reporter = None):
        self.vault = vault
        self.reporter = reporter or Reporter()

    def target_dir(self, certificate: Certificate, target_dir: str = None) -> pathlib.Path:
        """
        Resolves the export directory. An explicit directory must already exist; the default one under the vault
        root is created when missing.

        Raises:
            acme_dns_issuer.errors.InvalidPath: When the explicit directory does not exist.
        """
        if target_dir:
            path = pathlib.Path(target_dir).expanduser().absolute()
            if not path.is_dir():
                raise errors.InvalidPath(f"Directory at '{target_dir}' does not exist.")
            return path

        path = self.vault.certificate_dir(certificate.alias)
        path.mkdir(parents=True, exist_ok=True)
        return path

    def export(self, certificate: Certificate, target_dir: str = None, overwrite: bool = False) -> list:
        """
        Exports the key, CSR, leaf and issuer certificates (PEM and DER), a PKCS#12 bundle and a combined PEM of
        key, leaf and issuer, in that order.

        Args:
            certificate (acme_dns_issuer.models.Certificate): A signed certificate.
            target_dir (str): The directory to write to. Defaults to a directory under the vault root.
            overwrite (bool): Replace an existing combined PEM. The other files are always replaced.

        Returns:
            list: An `ExportedFile` (path and checksum) for each of the eight files.

        Raises:
            acme_dns_issuer.errors.InvalidCertificate: When the certificate is not signed yet.
            acme_dns_issuer.errors.InvalidPath: When an explicit `target_dir` does not exist.
        """
        if not certificate.is_signed or not certificate.certificate or not certificate.issuer:
            raise errors.InvalidCertificate(f"Certificate '{certificate.alias}' is not signed yet.")

        directory = self.target_dir(certificate, target_dir)
        alias = certificate.alias
        leaf = x509.load_pem_x509_certificate(certificate.certificate.encode())
        issuer = x509.load_pem_x509_certificate(certificate.issuer.encode())
        private_key = serialization.load_pem_private_key(certificate.private_key.encode(), password=None)

        key_pem = certificate.private_key.encode()
        leaf_pem = leaf.public_bytes(serialization.Encoding.PEM)
        issuer_pem = issuer.public_bytes(serialization.Encoding.PEM)
        outputs = [
            (f"{alias}-key.pem", key_pem),
            (f"{alias}-csr.pem", certificate.csr.encode()),
            (f"{alias}.pem", leaf_pem),
            (f"{alias}.der", leaf.public_bytes(serialization.Encoding.DER)),
            (f"{alias}-issuer.pem", issuer_pem),
            (f"{alias}-issuer.der", issuer.public_bytes(serialization.Encoding.DER)),
            (f"{alias}.pkcs12", pkcs12.serialize_key_and_certificates(
                name=alias.encode(),
                key=private_key,
                cert=leaf,
                cas=[issuer],
                encryption_algorithm=serialization.NoEncryption(),
            )),
        ]

        exported = []
        for name, data in outputs:
            exported.append(self.__write__(directory.joinpath(name), data))

        combined = directory.joinpath(f"{alias}-combined.pem")
        if combined.exists() and not overwrite:
            self.reporter.info("export", str(combined), "exists, keeping it (overwrite not requested)")
            exported.append(ExportedFile(str(combined), file_checksum(combined)))
        else:
            exported.append(self.__write__(combined, key_pem + leaf_pem + issuer_pem))

        return exported

    def __write__(self, path: pathlib.Path, data: bytes) -> ExportedFile:
        path.write_bytes(data)
        if path.name.endswith(("-key.pem", "-combined.pem", ".pkcs12")):
            path.chmod(0o600)
        exported = ExportedFile(str(path), file_checksum(path))
        self.reporter.success("export", exported.path, "checksum %s", exported.checksum)
        return exported
