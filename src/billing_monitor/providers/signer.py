"""
AWS Signature Version 4 request signing.

Implements the canonical request / string-to-sign / signing-key chain used by
every AWS JSON API. The output must match AWS bit-for-bit, so header
canonicalization follows the published algorithm exactly: names are
lower-cased and sorted, values are trimmed with inner whitespace collapsed.
"""

import hashlib
import hmac
import logging
from datetime import datetime, timezone

from ..models.account import Credentials

logger = logging.getLogger(__name__)

ALGORITHM = "AWS4-HMAC-SHA256"
TERMINATOR = "aws4_request"
AMZ_DATE_FORMAT = "%Y%m%dT%H%M%SZ"
DATE_STAMP_FORMAT = "%Y%m%d"


def sha256_hex(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def hmac_sha256(key: bytes, message: str) -> bytes:
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).digest()


class RequestSigner:
    """Signs outbound requests for one AWS service in one region."""

    def __init__(self, region: str, service: str):
        """
        Initialize the signer.

        Args:
            region: AWS region the request is sent to (e.g. us-east-1)
            service: Signing name of the service (e.g. ce)
        """
        self.region = region
        self.service = service

    def credential_scope(self, date_stamp: str) -> str:
        return f"{date_stamp}/{self.region}/{self.service}/{TERMINATOR}"

    @staticmethod
    def canonical_headers(headers: dict[str, str]) -> tuple[str, str]:
        """
        Build the canonical header block and the signed-header list.

        Returns:
            Tuple of (canonical headers, semicolon-joined signed header names)
        """
        normalized = {name.lower().strip(): " ".join(str(value).split()) for name, value in headers.items()}
        names = sorted(normalized)
        canonical = "".join(f"{name}:{normalized[name]}\n" for name in names)
        return canonical, ";".join(names)

    @classmethod
    def canonical_request(
        cls, method: str, path: str, query: str, headers: dict[str, str], body: bytes
    ) -> tuple[str, str]:
        """
        Build the canonical request.

        Returns:
            Tuple of (canonical request, signed header list)
        """
        canonical_headers, signed_headers = cls.canonical_headers(headers)
        canonical = "\n".join(
            [
                method.upper(),
                path or "/",
                query,
                canonical_headers,
                signed_headers,
                sha256_hex(body),
            ]
        )
        return canonical, signed_headers

    def string_to_sign(self, amz_date: str, canonical_request: str) -> str:
        return "\n".join(
            [
                ALGORITHM,
                amz_date,
                self.credential_scope(amz_date[:8]),
                sha256_hex(canonical_request.encode("utf-8")),
            ]
        )

    def signing_key(self, secret_access_key: str, date_stamp: str) -> bytes:
        k_date = hmac_sha256(f"AWS4{secret_access_key}".encode("utf-8"), date_stamp)
        k_region = hmac_sha256(k_date, self.region)
        k_service = hmac_sha256(k_region, self.service)
        return hmac_sha256(k_service, TERMINATOR)

    def sign(
        self,
        method: str,
        path: str,
        query: str,
        headers: dict[str, str],
        body: bytes,
        credentials: Credentials,
        timestamp: datetime | None = None,
    ) -> dict[str, str]:
        """
        Sign a request and return its final header set.

        The returned headers contain everything passed in plus X-Amz-Date,
        X-Amz-Security-Token (for temporary credentials) and Authorization.
        The session token is part of the signed headers, as AWS requires.

        Args:
            method: HTTP method
            path: Canonical URI path, already URI-encoded
            query: Canonical query string (empty for JSON APIs)
            headers: Request headers; must include Host
            body: Raw request body
            credentials: Credentials to sign with
            timestamp: Signing time, defaults to now (UTC)

        Returns:
            Dictionary of headers to send

        Raises:
            ValueError: If no Host header is present
        """
        if not any(name.lower() == "host" for name in headers):
            raise ValueError("Host header is required for SigV4 signing")

        timestamp = timestamp or datetime.now(timezone.utc)
        if timestamp.tzinfo is not None:
            timestamp = timestamp.astimezone(timezone.utc)
        amz_date = timestamp.strftime(AMZ_DATE_FORMAT)
        date_stamp = timestamp.strftime(DATE_STAMP_FORMAT)

        reserved = {"authorization", "x-amz-date", "x-amz-security-token"}
        signed = {name: value for name, value in headers.items() if name.lower() not in reserved}
        signed["X-Amz-Date"] = amz_date
        if credentials.session_token:
            signed["X-Amz-Security-Token"] = credentials.session_token

        canonical_request, signed_headers = self.canonical_request(method, path, query, signed, body)
        string_to_sign = self.string_to_sign(amz_date, canonical_request)
        signature = hmac.new(
            self.signing_key(credentials.secret_access_key, date_stamp),
            string_to_sign.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()

        logger.debug(
            f"🔵 AWS: Signed {method.upper()} {path} for {self.service}/{self.region} "
            f"(signed headers: {signed_headers})"
        )

        signed["Authorization"] = (
            f"{ALGORITHM} Credential={credentials.access_key_id}/{self.credential_scope(date_stamp)}, "
            f"SignedHeaders={signed_headers}, Signature={signature}"
        )
        return signed
