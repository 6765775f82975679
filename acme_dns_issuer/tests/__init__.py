"""Unit tests and testing tools for the acme_dns_issuer package."""

TEST_NAME = "www"
TEST_ZONE = "example.com"
TEST_DNS_NAME = f"{TEST_NAME}.{TEST_ZONE}"
TEST_EMAIL = f"hostmaster@{TEST_ZONE}"
TEST_MASTER_SERVER = "127.0.0.1"
TEST_VALIDATION_SERVER = "8.8.8.8"
TEST_TOKEN = "evaGxfADs6pSRb2LAv9IZf17Dt3juxGJ-PCt92wr-oA"
