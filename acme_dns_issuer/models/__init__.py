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
"""Data classes for the ACME objects tracked in the vault."""
import dataclasses


# Constants and Variables
STATUS_PENDING = "pending"
STATUS_PROCESSING = "processing"
STATUS_VALID = "valid"
STATUS_INVALID = "invalid"
STATUSES = (STATUS_PENDING, STATUS_PROCESSING, STATUS_VALID, STATUS_INVALID)
CHALLENGE_TYPE = "dns-01"


def normalize_status(status: str) -> str:
    """
    Maps an ACME v2 status onto the four states this package tracks. Anything that is not pending, processing or
    valid (e.g. `deactivated`, `expired`, `revoked`) can no longer become valid and is treated as `invalid`.

    Args:
        status (str): The status name reported by the ACME server.

    Returns:
        str: One of `pending`, `processing`, `valid` or `invalid`.
    """
    status = (status or "").lower()
    return status if status in STATUSES else STATUS_INVALID


@dataclasses.dataclass
class Identifier:
    """A DNS name under ACME validation."""

    dns: str
    alias: str
    status: str = STATUS_PENDING
    authorization_uri: str = ""
    order_uri: str = ""
    private_key: str = ""
    csr: str = ""

    @property
    def is_valid(self) -> bool:
        return self.status == STATUS_VALID

    @property
    def is_invalid(self) -> bool:
        return self.status == STATUS_INVALID

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Identifier":
        return cls(
            dns=data["dns"],
            alias=data["alias"],
            status=normalize_status(data.get("status", STATUS_PENDING)),
            authorization_uri=data.get("authorization_uri", ""),
            order_uri=data.get("order_uri", ""),
            private_key=data.get("private_key", ""),
            csr=data.get("csr", ""),
        )


@dataclasses.dataclass(frozen=True)
class ChallengeDescriptor:
    """The record a CA expects to find for a DNS-01 challenge."""

    type: str
    status: str
    record_name: str
    record_value: str


@dataclasses.dataclass
class Certificate:
    """An ACME certificate bound to one identifier."""

    alias: str
    identifier_alias: str
    issuer_serial_number: str = ""
    status: str = STATUS_PENDING
    order_uri: str = ""
    private_key: str = ""
    csr: str = ""
    certificate: str = ""
    issuer: str = ""

    @property
    def is_signed(self) -> bool:
        return bool(self.issuer_serial_number)

    def to_dict(self) -> dict:
        return dataclasses.asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> "Certificate":
        known = {field.name for field in dataclasses.fields(cls)}
        return cls(**{key: value for key, value in data.items() if key in known})


def certificate_alias(identifier_alias: str) -> str:
    """Returns the deterministic certificate alias for an identifier alias."""
    return f"{identifier_alias}-cert"
