"""
Request signing tests.
Run: pytest tests/test_signing.py -v
"""

import re
from urllib.parse import unquote

from storesync.platform.signing import (
    OAuth1Signer, percent_encode, normalize_url, signature_base_string, hmac_sha1_signature,
)

URL = "https://shop.example.com/wp-json/wc/v3/products?per_page=10&page=1"


def fixed_signer(nonce="abc"):
    return OAuth1Signer("ck_test", "cs_test", clock=lambda: 1700000000.7, nonce_factory=lambda: nonce)


def parse_header(header):
    assert header.startswith("OAuth ")
    return {k: unquote(v) for k, v in re.findall(r'(\w+)="([^"]*)"', header)}


class TestEncoding:

    def test_unreserved_kept(self):
        assert percent_encode("aZ9-._~") == "aZ9-._~"

    def test_reserved_escaped(self):
        assert percent_encode("a b&c=d/e+f") == "a%20b%26c%3Dd%2Fe%2Bf"

    def test_normalize_url_strips_query_and_default_port(self):
        base, params = normalize_url("HTTPS://Shop.Example.com:443/wp-json/wc/v3/orders?status=processing,on-hold")
        assert base == "https://shop.example.com/wp-json/wc/v3/orders"
        assert params == [("status", "processing,on-hold")]


class TestSignature:

    def test_base_string_sorts_oauth_and_query_params(self):
        params = fixed_signer().oauth_params()
        base = signature_base_string("get", URL, params)
        assert base == (
            "GET&https%3A%2F%2Fshop.example.com%2Fwp-json%2Fwc%2Fv3%2Fproducts&"
            "oauth_consumer_key%3Dck_test%26oauth_nonce%3Dabc%26"
            "oauth_signature_method%3DHMAC-SHA1%26oauth_timestamp%3D1700000000%26"
            "oauth_version%3D1.0%26page%3D1%26per_page%3D10"
        )

    def test_signature_is_hmac_sha1_of_base_string_keyed_with_secret(self):
        fields = parse_header(fixed_signer().sign("GET", URL)["Authorization"])
        assert fields["oauth_signature"] == "MrCnPNiHNV3ot8jjEk8qr4Q6H2w="

    def test_rfc5849_temporary_credentials_example(self):
        # RFC 5849 section 1.2, no token secret
        params = {
            "oauth_consumer_key": "dpf43f3p2l4k3l03",
            "oauth_signature_method": "HMAC-SHA1",
            "oauth_timestamp": "137131200",
            "oauth_nonce": "wIjqoS",
            "oauth_callback": "http://printer.example.com/ready",
        }
        base = signature_base_string("POST", "https://photos.example.net/initiate", params)
        assert base == (
            "POST&https%3A%2F%2Fphotos.example.net%2Finitiate&"
            "oauth_callback%3Dhttp%253A%252F%252Fprinter.example.com%252Fready%26"
            "oauth_consumer_key%3Ddpf43f3p2l4k3l03%26oauth_nonce%3DwIjqoS%26"
            "oauth_signature_method%3DHMAC-SHA1%26oauth_timestamp%3D137131200"
        )
        assert hmac_sha1_signature(base, "kd94hf93k423kf44") == "74KNZJeDHnMBp0EMJ9ZHt/XKycU="

    def test_header_carries_all_parameters(self):
        fields = parse_header(fixed_signer().sign("PUT", URL)["Authorization"])
        assert fields["oauth_consumer_key"] == "ck_test"
        assert fields["oauth_nonce"] == "abc"
        assert fields["oauth_signature_method"] == "HMAC-SHA1"
        assert fields["oauth_timestamp"] == "1700000000"
        assert fields["oauth_version"] == "1.0"
        assert "oauth_signature" in fields

    def test_method_changes_signature(self):
        signer = fixed_signer()
        get_sig = parse_header(signer.sign("GET", URL)["Authorization"])["oauth_signature"]
        put_sig = parse_header(signer.sign("PUT", URL)["Authorization"])["oauth_signature"]
        assert get_sig != put_sig

    def test_each_call_gets_fresh_nonce(self):
        signer = OAuth1Signer("ck_test", "cs_test")
        first = parse_header(signer.sign("GET", URL)["Authorization"])
        second = parse_header(signer.sign("GET", URL)["Authorization"])
        assert first["oauth_nonce"] != second["oauth_nonce"]

    def test_json_headers(self):
        headers = fixed_signer().sign("GET", URL)
        assert headers["Content-Type"] == "application/json"
        assert headers["Accept"] == "application/json"
