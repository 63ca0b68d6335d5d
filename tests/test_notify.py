"""Tests for the release notification: topic parsing, message body, best-effort publish."""

from __future__ import annotations

import json

import pytest

from ami_orch.core.models import RegionResult
from ami_orch.core.notify import Notifier, build_message, build_subject, topic_region
from ami_orch.errors import ExtractionError, ProtocolError, TransportError
from ami_orch.io.sns import SNSClient
from fakes import http_error, ok, publish_body

TOPIC = "arn:aws:sns:us-west-2:123456789012:freebsd-releases"
SNS_HOST = "sns.us-west-2.amazonaws.com"
IMAGES = [RegionResult("us-east-1", "ami-a"), RegionResult("eu-west-1", "ami-b")]


class TestTopicRegion:

    def test_region_field(self):
        assert topic_region(TOPIC) == "us-west-2"

    @pytest.mark.parametrize("arn", [
        "freebsd-releases",
        "arn:aws:sqs:us-west-2:123456789012:q",
        "arn:aws:sns::123456789012:t",
        "arn:aws:sns:us-west-2",
    ])
    def test_invalid(self, arn):
        with pytest.raises(ValueError):
            topic_region(arn)


class TestMessage:

    def test_subject(self):
        assert build_subject("14.0-RELEASE") == "New 14.0-RELEASE AMIs"

    def test_body(self):
        message = json.loads(build_message("14.0-RELEASE", "20231110", "FreeBSD 14.0", IMAGES))
        assert message == {
            "v1": {
                "ReleaseVersion": "14.0-RELEASE",
                "ImageVersion": "20231110",
                "Regions": {
                    "us-east-1": [{"Name": "FreeBSD 14.0", "ImageId": "ami-a"}],
                    "eu-west-1": [{"Name": "FreeBSD 14.0", "ImageId": "ami-b"}],
                },
            }
        }

    def test_regions_keep_order(self):
        message = build_message("r", "v", "n", IMAGES)
        assert message.index('"us-east-1"') < message.index('"eu-west-1"')


class TestSNSClient:

    def test_publish_request(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", ok(publish_body("msg-42")))
        sns = SNSClient(credentials, "us-west-2", transport=transport)
        assert sns.publish(TOPIC, "New 14.0 AMIs", '{"a": "b & c"}') == "msg-42"

        (request,) = transport.requests
        assert request.version == "HTTP/1.0"
        assert request.headers["Content-Type"] == "application/x-www-form-urlencoded"
        assert "content-type" in request.headers["Authorization"]
        assert request.params == {
            "Action": "Publish",
            "Message": '{"a": "b & c"}',
            "Subject": "New 14.0 AMIs",
            "TopicArn": TOPIC,
            "Version": "2010-03-31",
        }

    def test_missing_message_id(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", ok("<PublishResponse/>"))
        with pytest.raises(ExtractionError):
            SNSClient(credentials, "us-west-2", transport=transport).publish(TOPIC, "s", "m")

    def test_publish_not_retried(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", http_error(500))
        with pytest.raises(ProtocolError):
            SNSClient(credentials, "us-west-2", transport=transport).publish(TOPIC, "s", "m")
        assert len(transport.requests) == 1


class TestNotifier:

    def notifier(self, credentials, transport):
        return Notifier(lambda region: SNSClient(credentials, region, transport=transport))

    def test_success(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", ok(publish_body()))
        assert self.notifier(credentials, transport).publish(TOPIC, "14.0", "1", "n", IMAGES) is True
        assert transport.requests[0].host == SNS_HOST

    def test_http_failure_is_reported_not_raised(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", http_error(403))
        assert self.notifier(credentials, transport).publish(TOPIC, "14.0", "1", "n", IMAGES) is False

    def test_transport_failure_is_reported_not_raised(self, credentials, transport):
        transport.add(SNS_HOST, "Publish", TransportError("no route"))
        assert self.notifier(credentials, transport).publish(TOPIC, "14.0", "1", "n", IMAGES) is False

    def test_bad_topic_is_reported_not_raised(self, credentials, transport):
        assert self.notifier(credentials, transport).publish("not-an-arn", "14.0", "1", "n", IMAGES) is False
        assert transport.requests == []
