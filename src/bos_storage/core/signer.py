"""Request signing and the shared corrected clock."""

import hashlib
import hmac
import logging
import time
from threading import Lock
from typing import Dict, Iterable, Mapping, Optional, Protocol
from urllib.parse import quote

logger = logging.getLogger(__name__)

BCE_DATE_HEADER = "x-bce-date"
BCE_DATE_FORMAT = "%Y-%m-%dT%H:%M:%SZ"
DEFAULT_HEADERS_TO_SIGN = frozenset({"host", "content-length", "content-type", "content-md5"})


def format_bce_date(timestamp: float) -> str:
    return time.strftime(BCE_DATE_FORMAT, time.gmtime(timestamp))


class ClockOffset:
    """Correction between the local clock and the service clock.

    One instance is shared by every request made through a client. Updates are
    last-write-wins; precision to the second is enough for signing.
    """

    def __init__(self, offset: float = 0.0) -> None:
        self._lock = Lock()
        self._offset = offset

    @property
    def offset(self) -> float:
        with self._lock:
            return self._offset

    def now(self) -> float:
        """Local time corrected to the service clock."""
        return time.time() + self.offset

    def sync(self, server_time: float) -> float:
        """Record the service's timestamp and return the new offset."""
        offset = server_time - time.time()
        with self._lock:
            self._offset = offset
        logger.info(f"Clock offset corrected to {offset:+.0f}s")
        return offset


class Signer(Protocol):
    """Computes the ``Authorization`` value of a request."""

    def sign(
        self,
        method: str,
        resource_path: str,
        params: Mapping[str, object],
        headers: Dict[str, str],
        clock_offset: float = 0.0,
    ) -> str:
        ...


def _encode(value: object) -> str:
    return quote(str(value), safe="~")


class BceSigner:
    """bce-auth-v1 canonical request signer."""

    def __init__(
        self,
        access_key_id: str,
        secret_access_key: str,
        expiration_in_seconds: int = 1800,
        headers_to_sign: Optional[Iterable[str]] = None,
    ) -> None:
        self.access_key_id = access_key_id
        self.secret_access_key = secret_access_key
        self.expiration_in_seconds = expiration_in_seconds
        self.headers_to_sign = (
            frozenset(h.lower() for h in headers_to_sign)
            if headers_to_sign
            else DEFAULT_HEADERS_TO_SIGN
        )

    def sign(
        self,
        method: str,
        resource_path: str,
        params: Mapping[str, object],
        headers: Dict[str, str],
        clock_offset: float = 0.0,
    ) -> str:
        """Stamp ``x-bce-date`` on ``headers`` and return the authorization."""
        timestamp = format_bce_date(time.time() + clock_offset)
        headers[BCE_DATE_HEADER] = timestamp

        auth_prefix = (
            f"bce-auth-v1/{self.access_key_id}/{timestamp}/{self.expiration_in_seconds}"
        )
        signing_key = hmac.new(
            self.secret_access_key.encode("utf-8"),
            auth_prefix.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        canonical_headers, signed_headers = self.canonical_headers(headers)
        canonical_request = "\n".join(
            [
                method.upper(),
                quote(resource_path, safe="/~"),
                self.canonical_query(params),
                canonical_headers,
            ]
        )
        signature = hmac.new(
            signing_key.encode("utf-8"),
            canonical_request.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return f"{auth_prefix}/{';'.join(signed_headers)}/{signature}"

    @staticmethod
    def canonical_query(params: Mapping[str, object]) -> str:
        pairs = [
            f"{_encode(key)}={_encode('' if value is None else value)}"
            for key, value in params.items()
            if key.lower() != "authorization"
        ]
        return "&".join(sorted(pairs))

    def canonical_headers(self, headers: Mapping[str, object]):
        entries = []
        for name, value in headers.items():
            lower = name.strip().lower()
            text = str(value).strip()
            if not text:
                continue
            if lower in self.headers_to_sign or lower.startswith("x-bce-"):
                entries.append((lower, f"{_encode(lower)}:{_encode(text)}"))
        entries.sort()
        return "\n".join(entry for _, entry in entries), [name for name, _ in entries]
