"""
Raw HTTP exchange with AWS endpoints.

Requests are serialized by hand (the header order is part of the wire
format the services see) and sent over a fresh TLS connection with
``Connection: close``; the response is read to EOF and handed back as raw
bytes. validate_response() turns those bytes into a response body or a
ProtocolError.
"""

from __future__ import annotations

import logging
import socket
import ssl
from collections.abc import Callable
from typing import Optional

from ami_orch.config import REQUEST_TIMEOUT_SECONDS
from ami_orch.errors import ProtocolError, TransportError
from ami_orch.io.signing import SignedHeaders

logger = logging.getLogger("ami.io.transport")

# (host, port, ca_cert_path, request_bytes, timeout=seconds) -> response_bytes
Transport = Callable[..., bytes]

HTTPS_PORT = 443

# Slowest sustained upload rate a request body is allowed to take
MIN_UPLOAD_BYTES_PER_SECOND = 64 * 1024


def timeout_for(body_size: int, base: float = REQUEST_TIMEOUT_SECONDS) -> float:
    """Timeout for a request carrying ``body_size`` bytes: ``base`` plus its send time at the minimum rate."""
    return base + body_size / MIN_UPLOAD_BYTES_PER_SECOND


def build_request(
    method: str,
    path: str,
    host: str,
    signed: SignedHeaders,
    body: bytes,
    content_type: Optional[str] = None,
    http_version: str = "HTTP/1.1",
) -> bytes:
    """Serialize a signed request: request line, fixed header order, blank line, body."""
    lines = [
        f"{method} {path} {http_version}",
        f"Host: {host}",
        f"X-Amz-Date: {signed.amz_date}",
        f"X-Amz-Content-SHA256: {signed.content_sha256}",
        f"Authorization: {signed.authorization}",
        f"Content-Length: {len(body)}",
    ]
    if content_type:
        lines.append(f"Content-Type: {content_type}")
    lines.append("Connection: close")
    head = "\r\n".join(lines) + "\r\n\r\n"
    return head.encode("utf-8") + body


def send_request(
    host: str,
    port: int,
    ca_cert_path: Optional[str],
    request: bytes,
    timeout: float = REQUEST_TIMEOUT_SECONDS,
) -> bytes:
    """
    Send one request over TLS and return the raw response (status line, headers, body).

    Args:
        host: Endpoint host name (also used for SNI and certificate validation)
        port: TCP port, normally 443
        ca_cert_path: CA bundle to validate against; None uses the system trust store
        request: Complete serialized request
        timeout: Seconds allowed for connecting, for sending the whole request
            and for each read

    Raises:
        TransportError: on any connection, TLS or socket failure
    """
    chunks: list[bytes] = []
    try:
        context = ssl.create_default_context(cafile=ca_cert_path)
        with socket.create_connection((host, port), timeout=timeout) as sock:
            with context.wrap_socket(sock, server_hostname=host) as tls:
                tls.sendall(request)
                while True:
                    data = tls.recv(65536)
                    if not data:
                        break
                    chunks.append(data)
    except OSError as e:
        raise TransportError(f"SSL request to {host}:{port} failed: {e}") from e

    response = b"".join(chunks)
    logger.debug("Received response", extra={"host": host, "bytes": len(response)})
    return response


def validate_response(raw: bytes) -> str:
    """
    Check a raw response and return its body.

    The status check looks for " 200 " and requires it to fall within the
    first line; the body is everything after the first CRLFCRLF.

    Raises:
        ProtocolError: embedded NUL byte, non-200 status, or no header/body separator
    """
    if b"\0" in raw:
        raise ProtocolError("NUL byte in API response")

    text = raw.decode("utf-8", errors="replace")

    first_line_end = len(text)
    for eol in ("\r", "\n"):
        pos = text.find(eol)
        if pos != -1:
            first_line_end = min(first_line_end, pos)

    status_pos = text.find(" 200 ")
    if status_pos == -1 or status_pos > first_line_end:
        raise ProtocolError("API request failed", text)

    separator = text.find("\r\n\r\n")
    if separator == -1:
        raise ProtocolError("Bad API response received", text)

    return text[separator + 4:]
