"""
OAuth 1.0a request signing for the store REST API.

The client only depends on `sign(method, url) -> headers`, so the signer can
be replaced (e.g. by an OAuth library) without touching the sync phases.
"""

import base64
import hashlib
import hmac
import secrets
import time
from typing import Callable, Dict, List, Optional, Protocol, Tuple
from urllib.parse import parse_qsl, quote, urlsplit, urlunsplit

SIGNATURE_METHOD = "HMAC-SHA1"
OAUTH_VERSION = "1.0"


class RequestSigner(Protocol):
    """Anything that can produce auth headers for a request."""

    def sign(self, method: str, url: str) -> Dict[str, str]:
        ...


def percent_encode(value: str) -> str:
    """RFC 3986 encoding as required by OAuth (only unreserved chars kept)."""
    return quote(str(value), safe="-._~")


def normalize_url(url: str) -> Tuple[str, List[Tuple[str, str]]]:
    """
    Split a URL into its signature base URL (no query, no fragment,
    lowercase scheme and host) and its decoded query parameters.
    """
    parts = urlsplit(url)
    scheme = parts.scheme.lower()
    netloc = parts.netloc.lower()
    if (scheme == "http" and netloc.endswith(":80")) or (scheme == "https" and netloc.endswith(":443")):
        netloc = netloc.rsplit(":", 1)[0]
    base = urlunsplit((scheme, netloc, parts.path or "/", "", ""))
    return base, parse_qsl(parts.query, keep_blank_values=True)


def signature_base_string(method: str, url: str, oauth_params: Dict[str, str]) -> str:
    """Build `METHOD&enc(base_url)&enc(sorted params)`."""
    base_url, query_params = normalize_url(url)
    pairs = [(percent_encode(k), percent_encode(v)) for k, v in query_params]
    pairs += [(percent_encode(k), percent_encode(v)) for k, v in oauth_params.items()]
    param_string = "&".join(f"{k}={v}" for k, v in sorted(pairs))
    return "&".join([
        method.upper(),
        percent_encode(base_url),
        percent_encode(param_string),
    ])


def hmac_sha1_signature(base_string: str, consumer_secret: str) -> str:
    key = f"{percent_encode(consumer_secret)}&"
    digest = hmac.new(key.encode("utf-8"), base_string.encode("utf-8"), hashlib.sha1).digest()
    return base64.b64encode(digest).decode("ascii")


class OAuth1Signer:
    """
    Signs each request with a fresh nonce and timestamp.
    Stateless between calls: nothing is cached.
    """

    def __init__(
        self,
        consumer_key: str,
        consumer_secret: str,
        clock: Callable[[], float] = time.time,
        nonce_factory: Optional[Callable[[], str]] = None
    ):
        self.consumer_key = consumer_key
        self.consumer_secret = consumer_secret
        self._clock = clock
        self._nonce_factory = nonce_factory or (lambda: secrets.token_hex(16))

    def oauth_params(self) -> Dict[str, str]:
        return {
            "oauth_consumer_key": self.consumer_key,
            "oauth_nonce": self._nonce_factory(),
            "oauth_signature_method": SIGNATURE_METHOD,
            "oauth_timestamp": str(int(self._clock())),
            "oauth_version": OAUTH_VERSION,
        }

    def sign(self, method: str, url: str) -> Dict[str, str]:
        """Return the Authorization and content headers for one request."""
        params = self.oauth_params()
        base_string = signature_base_string(method, url, params)
        params["oauth_signature"] = hmac_sha1_signature(base_string, self.consumer_secret)

        header = "OAuth " + ", ".join(
            f'{key}="{percent_encode(value)}"' for key, value in params.items()
        )
        return {
            "Authorization": header,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
