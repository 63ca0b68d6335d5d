from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Iterable, Optional
from urllib.parse import quote, urlsplit

from botocore.auth import S3SigV4Auth, S3SigV4QueryAuth, SigV4Auth
from botocore.awsrequest import AWSRequest
from botocore.credentials import Credentials as BotocoreCredentials

from ami_orch.core.models import Credentials


@dataclass(frozen=True)
class SignedHeaders:
    content_sha256: str
    amz_date: str
    authorization: str


def _botocore_credentials(credentials: Credentials) -> BotocoreCredentials:
    return BotocoreCredentials(credentials.access_key_id, credentials.access_key_secret)


def sign(
    credentials: Credentials,
    service: str,
    region: str,
    method: str,
    host: str,
    path: str,
    body: bytes,
    headers: Optional[dict[str, str]] = None,
) -> SignedHeaders:
    """
    Compute SigV4 authentication headers for one request.

    ``headers`` are extra headers that will be sent and must be covered by
    the signature (e.g. Content-Type for SNS).
    """
    request = AWSRequest(method=method, url=f"https://{host}{path}", data=body, headers=dict(headers or {}))

    if service == "s3":
        # S3SigV4Auth computes and signs X-Amz-Content-SHA256 itself
        S3SigV4Auth(_botocore_credentials(credentials), service, region).add_auth(request)
    else:
        request.headers["X-Amz-Content-SHA256"] = hashlib.sha256(body).hexdigest()
        SigV4Auth(_botocore_credentials(credentials), service, region).add_auth(request)

    return SignedHeaders(
        content_sha256=request.headers["X-Amz-Content-SHA256"],
        amz_date=request.headers["X-Amz-Date"],
        authorization=request.headers["Authorization"],
    )


def presign(
    credentials: Credentials,
    region: str,
    method: str,
    host: str,
    path: str,
    expires: int,
) -> str:
    """Return the query string of a presigned S3 URL (no leading '?')."""
    request = AWSRequest(method=method, url=f"https://{host}{path}")
    S3SigV4QueryAuth(_botocore_credentials(credentials), "s3", region, expires=expires).add_auth(request)
    return urlsplit(request.url).query


def percent_encode(value: str) -> str:
    """RFC 3986 encoding: everything except unreserved characters is escaped."""
    return quote(value, safe="-_.~")


def form_encode(params: Iterable[tuple[str, str]]) -> str:
    """Encode ordered (name, value) pairs as a query API request body."""
    return "&".join(f"{percent_encode(k)}={percent_encode(v)}" for k, v in params)
