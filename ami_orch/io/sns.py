from __future__ import annotations

import logging
from typing import Optional

from ami_orch.config import REQUEST_TIMEOUT_SECONDS
from ami_orch.core.models import Credentials
from ami_orch.core.xmltags import extract_one
from ami_orch.io.signing import form_encode, sign
from ami_orch.io.transport import HTTPS_PORT, Transport, build_request, send_request, validate_response

logger = logging.getLogger("ami.io.sns")

SNS_API_VERSION = "2010-03-31"
FORM_CONTENT_TYPE = "application/x-www-form-urlencoded"


class SNSClient:
    """SNS query API client for one region (publish only)."""

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        transport: Transport = send_request,
        ca_cert_path: Optional[str] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.region = region
        self.transport = transport
        self.ca_cert_path = ca_cert_path
        self.timeout = timeout

    @property
    def host(self) -> str:
        return f"sns.{self.region}.amazonaws.com"

    def publish(self, topic_arn: str, subject: str, message: str) -> str:
        """
        Publish one message; returns the SNS MessageId.

        Issued once, never retried: a re-sent publish is a duplicate notification.

        Raises:
            ProtocolError: non-200 or malformed response
            TransportError: connection failure
            ExtractionError: response has no <MessageId>
        """
        body = form_encode([
            ("Action", "Publish"),
            ("Message", message),
            ("Subject", subject),
            ("TopicArn", topic_arn),
            ("Version", SNS_API_VERSION),
        ]).encode("utf-8")
        headers = {"Content-Type": FORM_CONTENT_TYPE}
        signed = sign(self.credentials, "sns", self.region, "POST", self.host, "/", body, headers)
        request = build_request(
            "POST", "/", self.host, signed, body,
            content_type=FORM_CONTENT_TYPE, http_version="HTTP/1.0",
        )
        resp = validate_response(self.transport(self.host, HTTPS_PORT, self.ca_cert_path, request, timeout=self.timeout))
        message_id = extract_one(resp, "MessageId")
        logger.info("Published notification", extra={"topic_arn": topic_arn, "message_id": message_id})
        return message_id
