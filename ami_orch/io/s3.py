from __future__ import annotations

import logging
from typing import Optional

from ami_orch.config import MAX_ATTEMPTS, REQUEST_TIMEOUT_SECONDS
from ami_orch.core.models import Credentials
from ami_orch.core.retry import call_with_retry
from ami_orch.io.signing import presign, sign
from ami_orch.io.transport import HTTPS_PORT, Transport, build_request, send_request, timeout_for, validate_response
from ami_orch.progress import ProgressReporter

logger = logging.getLogger("ami.io.s3")


class S3Client:
    """Object PUTs and presigned URLs for one bucket, addressed virtual-host style."""

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        bucket: str,
        transport: Transport = send_request,
        ca_cert_path: Optional[str] = None,
        progress: Optional[ProgressReporter] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        """
        Initialize S3 client.

        Args:
            credentials: Access key pair
            region: Region used in the signing scope and to pick the endpoint
            bucket: Bucket every path is relative to
            transport: Sends raw request bytes, returns raw response bytes
            ca_cert_path: CA bundle for TLS validation (None: system store)
            timeout: Base request timeout; a PUT adds time for its body size
        """
        self.credentials = credentials
        self.region = region
        self.bucket = bucket
        self.transport = transport
        self.ca_cert_path = ca_cert_path
        self.progress = progress
        self.timeout = timeout

    @property
    def endpoint(self) -> str:
        """Host the TLS connection is made to."""
        if self.region == "us-east-1":
            return "s3.amazonaws.com"
        return f"s3.{self.region}.amazonaws.com"

    @property
    def virtual_host(self) -> str:
        """Host header and presigned URL host."""
        return f"{self.bucket}.s3.amazonaws.com"

    def url(self, path: str) -> str:
        return f"https://{self.virtual_host}{path}"

    def put_object(self, path: str, body: bytes) -> None:
        """
        Upload ``body`` at ``path`` (leading '/', relative to the bucket) in one request.

        Raises:
            ProtocolError: response status is not 200
            TransportError: connection failure
        """
        signed = sign(self.credentials, "s3", self.region, "PUT", self.virtual_host, path, body)
        request = build_request("PUT", path, self.virtual_host, signed, body)
        timeout = timeout_for(len(body), self.timeout)
        validate_response(self.transport(self.endpoint, HTTPS_PORT, self.ca_cert_path, request, timeout=timeout))
        logger.debug("PUT object", extra={"bucket": self.bucket, "path": path, "bytes": len(body)})

    def put_object_with_retry(self, path: str, body: bytes, max_attempts: int = MAX_ATTEMPTS) -> None:
        call_with_retry(
            lambda: self.put_object(path, body),
            description=f"S3 PUT {path}",
            max_attempts=max_attempts,
            progress=self.progress,
        )

    def presigned_url(self, method: str, path: str, expires: int) -> str:
        """Full https URL granting ``method`` on ``path`` for ``expires`` seconds."""
        query = presign(self.credentials, self.region, method, self.virtual_host, path, expires)
        return f"{self.url(path)}?{query}"
