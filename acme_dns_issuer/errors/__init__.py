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
"""Custom exception classes for acme_dns_issuer."""


class IssuanceError(Exception):
    """Base class for every condition that must stop the current issuance run."""
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ConfigError(IssuanceError):
    """Error occurs when the supplied run parameters are missing or contradictory"""


class AccountError(IssuanceError):
    """Error occurs when the ACME account cannot be initialized or registered"""


class InvalidEmail(AccountError):
    """Error occurs when an account contact email is required but no valid value exists"""


class IdentifierError(IssuanceError):
    """Error occurs when an identifier cannot be created or found after creation"""


class InvalidIdentifier(IdentifierError):
    """Error occurs when an identifier is (or becomes) invalid, or is not valid when it must be"""


class ChallengeError(IssuanceError):
    """Error occurs when the DNS-01 challenge descriptor is missing or not in the pending state"""


class DNSRecordError(IssuanceError):
    """Error occurs when a DNS record cannot be published to the master server"""


class DNSQueryError(DNSRecordError):
    """Error occurs when a DNS lookup fails for a reason other than the name or record not existing"""


class ZoneNotFound(DNSRecordError):
    """Error occurs when the requested zone does not exist on the queried server"""


class PollTimeout(IssuanceError):
    """Base class for waits that reached their deadline before the desired state was observed"""


class PropagationTimeout(PollTimeout):
    """Error occurs when the challenge TXT record was not observed on the validation server in time"""


class ACMETimeout(PollTimeout):
    """Error occurs when the max time has been exceeded waiting for an ACME server event"""


class PollCancelled(IssuanceError):
    """Error occurs when a wait is cancelled through its cancellation event"""


class CertificateError(IssuanceError):
    """Error occurs when the certificate cannot be created, submitted or fetched"""


class InvalidCertificate(CertificateError):
    """Error occurs when the certificate is invalid or does not exist."""


class InvalidPath(IssuanceError):
    """Error occurs when a request file path does not exist"""
