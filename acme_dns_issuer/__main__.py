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
"""Command line entry point: `python -m acme_dns_issuer --name www --zone example.com ...`"""
import argparse
import logging
import signal
import sys

from . import Issuer, errors, load_config


# Exit codes, most specific class first
EXIT_CODES = [
    (errors.ConfigError, 2),
    (errors.AccountError, 3),
    (errors.IdentifierError, 4),
    (errors.ChallengeError, 4),
    (errors.DNSRecordError, 5),
    (errors.PollTimeout, 6),
    (errors.PollCancelled, 6),
    (errors.CertificateError, 7),
    (errors.InvalidPath, 7),
]


def exit_code(exc: errors.IssuanceError) -> int:
    """Maps a fatal error onto the process exit code."""
    for error_class, code in EXIT_CODES:
        if isinstance(exc, error_class):
            return code
    return 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="acme_dns_issuer",
        description="Issue a TLS certificate with the ACME DNS-01 challenge for a zone you control.",
    )
    parser.add_argument("--name", help="Host name within the zone (e.g. www), or @ for the zone apex.")
    parser.add_argument("--zone", help="The DNS zone (e.g. example.com).")
    parser.add_argument("--email", help="Contact email used when registering the ACME account.")
    parser.add_argument("--master-server", dest="master_server", help="Authoritative server receiving updates.")
    parser.add_argument("--validation-server", dest="validation_server",
                        help="Resolver used to confirm propagation. Defaults to the master server.")
    parser.add_argument("--init", action="store_true", default=None, help="Initialize a new ACME account.")
    parser.add_argument("--force", action="store_true", default=None, help="Replace any existing ACME account.")
    endpoint = parser.add_mutually_exclusive_group()
    endpoint.add_argument("--staging", action="store_true", default=None, help="Use the CA's staging endpoint.")
    endpoint.add_argument("--production", dest="staging", action="store_false", default=None,
                          help="Use the CA's production endpoint.")
    parser.add_argument("--export", action="store_true", default=None, help="Export the issued certificate.")
    parser.add_argument("--export-dir", dest="export_dir", help="Existing directory to export to.")
    parser.add_argument("--overwrite", action="store_true", default=None, help="Replace an existing combined PEM.")
    parser.add_argument("--cleanup", action="store_true", default=None,
                        help="Remove the challenge TXT record once the CA has validated it.")
    parser.add_argument("--vault-dir", dest="vault_dir", help="Directory holding the ACME vault.")
    parser.add_argument("--key-type", dest="key_type", choices=["ec256", "ec384", "rsa2048", "rsa4096"])
    parser.add_argument("--quiet", action="store_true", default=None, help="Only report failures.")
    parser.add_argument("--verbose", action="store_true", help="Also report polling progress.")
    return parser


def main(argv: list = None) -> int:
    args = vars(build_parser().parse_args(argv))
    verbose = args.pop("verbose")

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)-7s %(message)s",
        stream=sys.stderr,
    )
    # The acme library and urllib3 are chatty at debug level
    logging.getLogger("acme").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)

    try:
        issuer = Issuer(load_config(**args), prompt=input)
    except errors.IssuanceError as exc:
        logging.getLogger(__name__).error("%s", exc.message)
        return exit_code(exc)

    signal.signal(signal.SIGTERM, lambda *_: issuer.cancel.set())

    try:
        result = issuer.run()
    except errors.IssuanceError as exc:
        return exit_code(exc)
    except KeyboardInterrupt:
        logging.getLogger(__name__).error("Interrupted")
        return 130

    for exported in result.exported:
        print(f"{exported.checksum}  {exported.path}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
