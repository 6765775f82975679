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
"""Run configuration for acme_dns_issuer, loaded from keyword arguments and `ACME_DNS_*` environment variables."""
import dataclasses
import os
import pathlib
from typing import Optional

from .. import errors


# Constants and Variables
PRODUCTION_DIRECTORY = "https://acme-v02.api.letsencrypt.org/directory"
STAGING_DIRECTORY = "https://acme-staging-v02.api.letsencrypt.org/directory"
DEFAULT_VAULT_DIR = pathlib.Path.home().joinpath(".acme_dns_issuer")
ENV_PREFIX = "ACME_DNS_"


@dataclasses.dataclass(frozen=True)
class IssuerConfig:
    """Every parameter of a single issuance run."""

    # pylint: disable=too-many-instance-attributes
    name: str
    zone: str
    email: Optional[str] = None
    master_server: str = "127.0.0.1"
    validation_server: Optional[str] = None
    init: bool = False
    force: bool = False
    staging: bool = False
    export: bool = False
    export_dir: Optional[str] = None
    overwrite: bool = False
    quiet: bool = False
    cleanup: bool = False
    vault_dir: str = str(DEFAULT_VAULT_DIR)
    key_type: str = "ec256"
    record_ttl: int = 60
    tsig_key_name: Optional[str] = None
    tsig_key_secret: Optional[str] = None
    tsig_algorithm: str = "HMAC-SHA256"
    propagation_interval: float = 10
    propagation_max_wait: float = 900
    acme_interval: float = 5
    acme_max_wait: float = 300

    def __post_init__(self):
        if not self.name or not self.zone:
            raise errors.ConfigError("Both a DNS name and a DNS zone are required.")
        if bool(self.tsig_key_name) != bool(self.tsig_key_secret):
            raise errors.ConfigError("A TSIG key name and secret must both be set or both be unset.")
        for field in ("propagation_interval", "propagation_max_wait", "acme_interval", "acme_max_wait"):
            if getattr(self, field) < 0:
                raise errors.ConfigError(f"'{field}' must not be negative.")

    @property
    def dns_name(self) -> str:
        """The fully qualified name the certificate is issued for."""
        name = self.name.rstrip(".")
        zone = self.zone.rstrip(".")
        return zone if name in ("@", zone) else f"{name}.{zone}"

    @property
    def directory(self) -> str:
        """The ACME directory URL of the selected CA endpoint."""
        return STAGING_DIRECTORY if self.staging else PRODUCTION_DIRECTORY

    @property
    def resolved_validation_server(self) -> str:
        """The server propagation is checked against, the master server unless one was given."""
        return self.validation_server or self.master_server


def __env_bool__(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def load_config(environ: dict = None, **overrides) -> IssuerConfig:
    """
    Builds an `IssuerConfig` from `ACME_DNS_<FIELD>` environment variables, with explicit keyword overrides
    taking precedence. Overrides set to `None` are ignored so unset command-line options fall through.

    Args:
        environ (dict): The environment to read. Defaults to `os.environ`.
        **overrides: Field values that take precedence over the environment.

    Returns:
        acme_dns_issuer.config.IssuerConfig: The validated configuration.

    Raises:
        acme_dns_issuer.errors.ConfigError: When a value cannot be converted or the configuration is incomplete.
    """
    environ = os.environ if environ is None else environ
    values = {}

    for field in dataclasses.fields(IssuerConfig):
        raw = environ.get(f"{ENV_PREFIX}{field.name.upper()}")
        if raw is None:
            continue
        try:
            if field.type in (bool, "bool"):
                values[field.name] = __env_bool__(raw)
            elif field.type in (int, "int"):
                values[field.name] = int(raw)
            elif field.type in (float, "float"):
                values[field.name] = float(raw)
            else:
                values[field.name] = raw
        except ValueError as exc:
            raise errors.ConfigError(f"{ENV_PREFIX}{field.name.upper()} has an invalid value: {raw!r}") from exc

    values.update({key: value for key, value in overrides.items() if value is not None})

    try:
        return IssuerConfig(**values)
    except TypeError as exc:
        raise errors.ConfigError(f"Incomplete configuration: {exc}") from exc
