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

import sys

import acme_dns_issuer

# Describe the run. In this example, www.example.com is issued on the Let's Encrypt staging environment.
config = acme_dns_issuer.load_config(
    name="www",
    zone="example.com",
    email="hostmaster@example.com",
    staging=True,
    master_server="127.0.0.1",  # The authoritative server that accepts dynamic updates for example.com
    validation_server="8.8.8.8",  # The resolver checked for propagation before the CA is asked to validate
    export=True,  # Write the key, certificate, issuer and bundles under the vault directory
)

# Register the account if needed, publish and validate the challenge, then issue and export the certificate.
try:
    result = acme_dns_issuer.Issuer(config).run()
except acme_dns_issuer.errors.IssuanceError as exc:
    print(f"Failed to issue certificate for {config.dns_name}: {exc.message}")
    sys.exit(1)

for exported in result.exported:
    print(f"{exported.checksum}  {exported.path}")
