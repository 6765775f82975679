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
"""Tests the vault-backed ACME client with the ACME server mocked out."""
import json
import tempfile
import unittest
from unittest import mock

import josepy as jose
from acme import challenges
from acme import messages
from cryptography.hazmat.primitives.asymmetric import rsa

from acme_dns_issuer import errors
from acme_dns_issuer.__main__ import exit_code
from acme_dns_issuer.client import ACMEClient, generate_private_key, split_chain
from acme_dns_issuer.config import STAGING_DIRECTORY
from acme_dns_issuer.models import Certificate, Identifier
from acme_dns_issuer.tests import TEST_DNS_NAME, TEST_EMAIL, TEST_TOKEN
from acme_dns_issuer.tests.tools import (
    AUTHZ_URI,
    ORDER_URI,
    authorization_json,
    chain_pem,
    http_response,
    is_csr,
    is_json,
    is_private_key,
    make_chain,
    order_json,
)
from acme_dns_issuer.vault import Vault


class TestACMEClient(unittest.TestCase):
    """Tests ACME objects stored in the vault."""

    @classmethod
    def setUpClass(cls):
        """Creates an account key shared by each test."""
        cls.account_key = jose.JWKRSA(key=rsa.generate_private_key(public_exponent=65537, key_size=2048))

    def setUp(self):
        tmp_dir = tempfile.TemporaryDirectory()
        self.addCleanup(tmp_dir.cleanup)
        self.vault = Vault(tmp_dir.name)
        self.vault.reset_account(STAGING_DIRECTORY, self.account_key.json_dumps())
        self.client = ACMEClient(self.vault)
        self.acme = mock.Mock()
        self.acme.net.key = self.account_key
        self.client._acme_client = self.acme    # pylint: disable=protected-access

        self.private_key = generate_private_key("ec256").decode()
        self.vault.put_identifier(Identifier(
            dns=TEST_DNS_NAME,
            alias="www-example-com-1",
            authorization_uri=AUTHZ_URI,
            order_uri=ORDER_URI,
            private_key=self.private_key,
            csr="-----BEGIN CERTIFICATE REQUEST-----",
        ))

    def test_generate_private_key(self):
        """Checks each supported key type and rejects unknown ones."""
        for key_type in ("ec256", "ec384", "rsa2048"):
            self.assertTrue(is_private_key(generate_private_key(key_type), key_type))
        with self.assertRaises(errors.ConfigError):
            generate_private_key("dsa1024")

    def test_split_chain(self):
        """Checks that a chain is split into its leaf and issuer certificates."""
        leaf, issuer = make_chain(TEST_DNS_NAME, self.private_key)
        self.assertEqual(split_chain(chain_pem(leaf, issuer)), (leaf, issuer))
        with self.assertRaises(errors.InvalidCertificate):
            split_chain(chain_pem(leaf, issuer).split("-----END CERTIFICATE-----")[0] + "-----END CERTIFICATE-----\n")

    def test_no_account(self):
        """Checks that the ACME client requires an initialized account."""
        with self.assertRaises(errors.AccountError):
            return ACMEClient(Vault(self.vault.root.joinpath("empty"))).acme_client

    @mock.patch("acme_dns_issuer.client.messages.Directory.from_json")
    @mock.patch("acme_dns_issuer.client.client")
    def test_init_account(self, acme_client_module, directory_from_json):
        """Checks that a new account key is stored and the directory is fetched."""
        vault = Vault(self.vault.root.joinpath("new"))
        client = ACMEClient(vault)
        client.init_account(STAGING_DIRECTORY)

        self.assertTrue(vault.has_account)
        self.assertTrue(is_json(vault.account["key"]))
        self.assertIsInstance(jose.JWKRSA.json_loads(vault.account["key"]), jose.JWKRSA)
        acme_client_module.ClientNetwork.return_value.get.assert_called_once_with(STAGING_DIRECTORY)
        directory_from_json.assert_called_once()
        self.assertTrue(Vault.load(vault.root).has_account)

    def test_register(self):
        """Checks that the registration and its contact are persisted."""
        regr = mock.Mock()
        regr.json_dumps.return_value = json.dumps({"body": {}, "uri": "https://ca.example/acct/1"})
        self.acme.new_account.return_value = regr

        self.client.register(TEST_EMAIL)
        registration = self.acme.new_account.call_args.args[0]
        self.assertTrue(registration.terms_of_service_agreed)
        self.assertEqual(registration.emails, (TEST_EMAIL,))
        self.assertEqual(Vault.load(self.vault.root).contact, TEST_EMAIL)
        self.assertEqual(self.client.contact, TEST_EMAIL)

    def test_create_identifier(self):
        """Checks that a new order is placed and its authorization stored as an identifier."""
        authzr = mock.Mock(uri="https://ca.example/authz/2")
        authzr.body.status = messages.STATUS_PENDING
        self.acme.new_order.return_value = mock.Mock(uri="https://ca.example/order/2", authorizations=[authzr])

        identifier = self.client.create_identifier("mail.example.com", "mail-example-com-1")
        self.assertEqual(identifier.status, "pending")
        self.assertEqual(identifier.authorization_uri, "https://ca.example/authz/2")
        self.assertTrue(is_csr(self.acme.new_order.call_args.args[0]))
        self.assertTrue(is_private_key(identifier.private_key.encode(), "ec256"))
        self.assertEqual(self.client.get_identifier("mail-example-com-1").order_uri, "https://ca.example/order/2")

    def test_refresh_identifier(self):
        """Checks that the identifier status follows its authorization."""
        self.acme.net.post.return_value = http_response(authorization_json("dns-01", status="deactivated"))
        self.assertEqual(self.client.refresh_identifier("www-example-com-1").status, "invalid")
        self.acme.net.post.assert_called_once_with(AUTHZ_URI, None)

    def test_unknown_identifier(self):
        """Checks that looking up an unknown alias raises IdentifierError."""
        with self.assertRaises(errors.IdentifierError):
            self.client.get_identifier("missing")

    def test_complete_challenge(self):
        """Checks that the expected record is computed from the challenge token and the account key."""
        self.acme.net.post.return_value = http_response(authorization_json("http-01", "dns-01"))
        descriptor = self.client.complete_challenge("www-example-com-1", "dns-01")

        expected = challenges.DNS01(token=jose.b64decode(TEST_TOKEN)).validation(self.account_key)
        self.assertEqual(descriptor.type, "dns-01")
        self.assertEqual(descriptor.status, "pending")
        self.assertEqual(descriptor.record_name, f"_acme-challenge.{TEST_DNS_NAME}")
        self.assertEqual(descriptor.record_value, expected)
        self.acme.answer_challenge.assert_not_called()

    def test_challenge_not_offered(self):
        """Checks that an authorization without DNS-01 yields no descriptor."""
        self.acme.net.post.return_value = http_response(authorization_json("http-01"))
        self.assertIsNone(self.client.complete_challenge("www-example-com-1", "dns-01"))
        with self.assertRaises(errors.ChallengeError):
            self.client.submit_challenge("www-example-com-1", "dns-01")

    def test_unsupported_challenge_type(self):
        """Checks that only the DNS-01 challenge is supported."""
        with self.assertRaises(errors.ChallengeError):
            self.client.complete_challenge("www-example-com-1", "http-01")

    def test_submit_challenge(self):
        """Checks that the DNS-01 challenge is answered."""
        self.acme.net.post.return_value = http_response(authorization_json("dns-01"))
        self.client.submit_challenge("www-example-com-1", "dns-01")
        challb, response = self.acme.answer_challenge.call_args.args
        self.assertIsInstance(challb.chall, challenges.DNS01)
        self.assertIsInstance(response, challenges.DNS01Response)

    def test_create_certificate(self):
        """Checks that a certificate reuses the identifier's order, key and CSR."""
        certificate = self.client.create_certificate("www-example-com-1")
        self.assertEqual(certificate.alias, "www-example-com-1-cert")
        self.assertEqual(certificate.order_uri, ORDER_URI)
        self.assertEqual(certificate.private_key, self.private_key)
        self.assertFalse(self.client.get_certificate("www-example-com-1-cert").is_signed)
        with self.assertRaises(errors.InvalidCertificate):
            self.client.get_certificate("missing")

    def test_submit_certificate(self):
        """Checks that a ready order is finalized and an unvalidated one is refused."""
        self.client.create_certificate("www-example-com-1")
        ready = messages.OrderResource(body=messages.Order(status=messages.STATUS_READY), uri=ORDER_URI)
        processing = messages.OrderResource(body=messages.Order(status=messages.STATUS_PROCESSING), uri=ORDER_URI)
        self.acme.begin_finalization.return_value = processing

        with mock.patch.object(self.client, "__fetch_order__", return_value=ready):
            certificate = self.client.submit_certificate("www-example-com-1-cert")
        self.assertEqual(certificate.status, "processing")
        self.acme.begin_finalization.assert_called_once_with(ready)

        pending = messages.OrderResource(body=messages.Order(status=messages.STATUS_PENDING), uri=ORDER_URI)
        with mock.patch.object(self.client, "__fetch_order__", return_value=pending):
            with self.assertRaises(errors.CertificateError):
                self.client.submit_certificate("www-example-com-1-cert")

    def test_refresh_certificate(self):
        """Checks that a valid order's chain is downloaded and split."""
        self.client.create_certificate("www-example-com-1")
        leaf, issuer = make_chain(TEST_DNS_NAME, self.private_key)
        self.acme.net.post.side_effect = [
            http_response(order_json("processing")),
            http_response(order_json("valid", "https://ca.example/cert/1")),
            http_response(text=chain_pem(leaf, issuer)),
        ]

        self.assertFalse(self.client.refresh_certificate("www-example-com-1-cert").is_signed)
        certificate = self.client.refresh_certificate("www-example-com-1-cert")
        self.assertEqual(certificate.issuer_serial_number, format(issuer.serial_number, "X"))
        self.assertEqual(certificate.status, "valid")
        self.assertIn("BEGIN CERTIFICATE", certificate.certificate)
        self.assertTrue(Vault.load(self.vault.root).certificates()[0].is_signed)

        # Signed certificates are served from the vault
        self.assertEqual(self.client.refresh_certificate("www-example-com-1-cert"), certificate)
        self.assertEqual(self.acme.net.post.call_count, 3)

    def test_order_rejected(self):
        """Checks that a CA error while placing an order raises IdentifierError and nothing is stored."""
        self.acme.new_order.side_effect = messages.Error(
            typ="urn:ietf:params:acme:error:rateLimited", detail="too many new orders"
        )
        with self.assertRaises(errors.IdentifierError) as ctx:
            self.client.create_identifier("mail.example.com", "mail-example-com-1")

        self.assertIsInstance(ctx.exception.__cause__, messages.Error)
        self.assertIn("too many new orders", ctx.exception.message)
        self.assertEqual(exit_code(ctx.exception), 4)
        self.assertEqual([i.alias for i in self.client.list_identifiers()], ["www-example-com-1"])

    def test_challenge_answer_rejected(self):
        """Checks that a CA error while answering the challenge raises ChallengeError."""
        self.acme.net.post.return_value = http_response(authorization_json("dns-01"))
        self.acme.answer_challenge.side_effect = messages.Error(
            typ="urn:ietf:params:acme:error:rateLimited", detail="too many failed authorizations"
        )
        with self.assertRaises(errors.ChallengeError) as ctx:
            self.client.submit_challenge("www-example-com-1", "dns-01")
        self.assertEqual(exit_code(ctx.exception), 4)

    def test_finalization_rejected(self):
        """Checks that a CA error while finalizing the order raises CertificateError."""
        self.client.create_certificate("www-example-com-1")
        ready = messages.OrderResource(body=messages.Order(status=messages.STATUS_READY), uri=ORDER_URI)
        self.acme.begin_finalization.side_effect = messages.Error(
            typ="urn:ietf:params:acme:error:badCSR", detail="key too weak"
        )
        with mock.patch.object(self.client, "__fetch_order__", return_value=ready):
            with self.assertRaises(errors.CertificateError) as ctx:
                self.client.submit_certificate("www-example-com-1-cert")
        self.assertEqual(exit_code(ctx.exception), 7)

    def test_unreachable_ca(self):
        """Checks that transport failures against the CA raise the error of the object being read."""
        self.client.create_certificate("www-example-com-1")
        self.acme.net.post.side_effect = ConnectionError("connection refused")

        with self.assertRaises(errors.IdentifierError):
            self.client.refresh_identifier("www-example-com-1")
        with self.assertRaises(errors.ChallengeError):
            self.client.complete_challenge("www-example-com-1", "dns-01")
        with self.assertRaises(errors.CertificateError):
            self.client.submit_certificate("www-example-com-1-cert")
        with self.assertRaises(errors.CertificateError):
            self.client.refresh_certificate("www-example-com-1-cert")

    def test_chain_download_failure(self):
        """Checks that a failed chain download raises CertificateError and leaves the certificate unsigned."""
        self.client.create_certificate("www-example-com-1")
        self.acme.net.post.side_effect = [
            http_response(order_json("valid", "https://ca.example/cert/1")),
            ConnectionError("connection reset"),
        ]
        with self.assertRaises(errors.CertificateError):
            self.client.refresh_certificate("www-example-com-1-cert")
        self.assertFalse(self.client.get_certificate("www-example-com-1-cert").is_signed)

    def test_malformed_authorization(self):
        """Checks that an authorization the client cannot parse raises IdentifierError."""
        self.acme.net.post.return_value = http_response(authorization_json("dns-01", status="bogus"))
        with self.assertRaises(errors.IdentifierError):
            self.client.refresh_identifier("www-example-com-1")

    @mock.patch("acme_dns_issuer.client.client.ClientNetwork")
    def test_directory_unreachable(self, client_network):
        """Checks that an unreachable directory raises AccountError."""
        client_network.return_value.get.side_effect = ConnectionError("connection refused")
        with self.assertRaises(errors.AccountError) as ctx:
            _ = ACMEClient(self.vault).acme_client
        self.assertEqual(exit_code(ctx.exception), 3)

    def test_certificate_round_trip(self):
        """Checks that stored certificates keep their identifier binding."""
        self.vault.put_certificate(Certificate(alias="www-example-com-1-cert", identifier_alias="www-example-com-1"))
        self.assertEqual([c.identifier_alias for c in self.client.list_certificates()], ["www-example-com-1"])


if __name__ == "__main__":
    unittest.main()
