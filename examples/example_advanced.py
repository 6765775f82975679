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

import logging
import signal
import sys

import acme_dns_issuer

verbose = "--verbose" in sys.argv

# Every report record carries 'phase', 'target' and 'outcome' attributes for handlers to use
logging.basicConfig(level=logging.WARNING)
handler = logging.StreamHandler()
handler.setFormatter(logging.Formatter("%(asctime)s %(outcome)-8s %(phase)-12s %(target)s | %(message)s"))
report_log = logging.getLogger("example")
report_log.addHandler(handler)
report_log.setLevel(logging.DEBUG if verbose else logging.INFO)
report_log.propagate = False

# Sign updates with a TSIG key, give propagation up to 30 minutes and remove the challenge record afterwards.
config = acme_dns_issuer.load_config(
    name="@",
    zone="example.com",
    email="hostmaster@example.com",
    staging=True,
    master_server="ns1.example.com",
    validation_server="1.1.1.1",
    tsig_key_name="acme-update",
    tsig_key_secret="c2VjcmV0LXNoYXJlZC13aXRoLXRoZS1tYXN0ZXItc2VydmVy",
    tsig_algorithm="HMAC-SHA512",
    propagation_interval=15,
    propagation_max_wait=1800,
    key_type="rsa2048",
    cleanup=True,
    export=True,
    export_dir="/etc/ssl/example.com",
    overwrite=True,
)

issuer = acme_dns_issuer.Issuer(config, reporter=acme_dns_issuer.Reporter(report_log))

# Stop waiting (and exit) when the process is asked to terminate
signal.signal(signal.SIGTERM, lambda *_: issuer.cancel.set())

try:
    result = issuer.run()
except acme_dns_issuer.errors.PollTimeout:
    print("The CA or the DNS servers took too long, try again later.")
    sys.exit(6)
except acme_dns_issuer.errors.IssuanceError as exc:
    print(f"Failed to issue certificate for {config.dns_name}: {exc.message}")
    sys.exit(1)

print(f"Issued {result.certificate.alias} (issuer serial {result.certificate.issuer_serial_number})")
