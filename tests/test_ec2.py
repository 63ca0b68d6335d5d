"""Tests for the EC2 query API client: parameters, retry policy per action, result checks."""

from __future__ import annotations

import pytest

from ami_orch.errors import ExtractionError, ProtocolError, ResourceStateError, RetryExhaustedError
from ami_orch.io.ec2 import EC2Client
from fakes import (
    ec2_host,
    http_error,
    image_id_body,
    import_volume_body,
    ok,
    regions_body,
    return_body,
    snapshot_created_body,
)

HOST = ec2_host("us-east-1")


@pytest.fixture
def ec2(credentials, transport):
    return EC2Client(credentials, "us-east-1", transport=transport, max_attempts=3)


class TestRequestShape:

    def test_post_over_http10(self, ec2, transport):
        transport.add(HOST, "DescribeRegions", ok(regions_body("us-east-1")))
        ec2.describe_regions()
        (request,) = transport.requests
        assert request.host == HOST
        assert (request.method, request.path, request.version) == ("POST", "/", "HTTP/1.0")
        assert request.headers["Host"] == HOST
        assert "/us-east-1/ec2/aws4_request" in request.headers["Authorization"]
        assert request.params == {"Action": "DescribeRegions", "Version": "2014-09-01"}

    def test_body_is_percent_encoded_in_order(self, ec2, transport):
        transport.add(HOST, "ImportVolume", ok(import_volume_body()))
        ec2.import_volume("https://b.s3.amazonaws.com/n/manifest.xml?X-Amz-Expires=604800&X-Amz-Signature=ab", 2500)
        body = transport.requests[0].body.decode()
        assert body.startswith("Action=ImportVolume&AvailabilityZone=us-east-1a&Image.Format=RAW&Image.Bytes=2500&")
        assert "Image.ImportManifestUrl=https%3A%2F%2Fb.s3.amazonaws.com%2Fn%2Fmanifest.xml%3FX-Amz-Expires%3D604800%26X-Amz-Signature%3Dab" in body
        assert body.endswith("Volume.Size=1&Version=2014-09-01")

    def test_request_timeout_passed_to_transport(self, credentials, transport):
        transport.add(HOST, "DescribeRegions", ok(regions_body("us-east-1")))
        EC2Client(credentials, "us-east-1", transport=transport, timeout=15).describe_regions()
        assert transport.requests[0].timeout == 15


class TestRegions:

    def test_region_names_in_order(self, ec2, transport):
        transport.add(HOST, "DescribeRegions", ok(regions_body("eu-north-1", "ap-south-1", "us-east-1")))
        assert ec2.describe_regions() == ["eu-north-1", "ap-south-1", "us-east-1"]

    def test_no_regions_is_fatal(self, ec2, transport):
        transport.add(HOST, "DescribeRegions", ok("<DescribeRegionsResponse><regionInfo></regionInfo></DescribeRegionsResponse>"))
        with pytest.raises(ExtractionError):
            ec2.describe_regions()

    def test_describe_is_retried(self, ec2, transport):
        transport.add(HOST, "DescribeRegions", http_error(503), ok(regions_body("us-east-1")))
        assert ec2.describe_regions() == ["us-east-1"]
        assert len(transport.requests) == 2

    def test_retry_limit(self, ec2, transport):
        transport.add(HOST, "DescribeRegions", http_error(500))
        with pytest.raises(RetryExhaustedError):
            ec2.describe_regions()
        assert len(transport.requests) == 3


class TestCreatingCallsAreNotRetried:

    @pytest.mark.parametrize("action,call", [
        ("ImportVolume", lambda c: c.import_volume("https://u", 10)),
        ("CreateSnapshot", lambda c: c.create_snapshot("vol-1")),
        ("DeleteVolume", lambda c: c.delete_volume("vol-1")),
        ("RegisterImage", lambda c: c.register_image("snap-1", "n", "d", "x86_64")),
        ("CopyImage", lambda c: c.copy_image("us-east-1", "ami-1")),
    ])
    def test_single_attempt(self, ec2, transport, action, call):
        transport.add(HOST, action, http_error(500))
        with pytest.raises(ProtocolError):
            call(ec2)
        assert len(transport.requests) == 1


class TestResults:

    def test_import_volume_task_id(self, ec2, transport):
        transport.add(HOST, "ImportVolume", ok(import_volume_body("import-vol-42")))
        assert ec2.import_volume("https://u", 1) == "import-vol-42"

    def test_create_snapshot_id(self, ec2, transport):
        transport.add(HOST, "CreateSnapshot", ok(snapshot_created_body("snap-42")))
        assert ec2.create_snapshot("vol-1") == "snap-42"
        assert transport.requests[0].params["VolumeId"] == "vol-1"

    def test_delete_volume_requires_true(self, ec2, transport):
        transport.add(HOST, "DeleteVolume", ok(return_body("false")))
        with pytest.raises(ResourceStateError):
            ec2.delete_volume("vol-1")

    def test_make_snapshot_public(self, ec2, transport):
        transport.add(HOST, "ModifySnapshotAttribute", ok(return_body("true")))
        ec2.make_snapshot_public("snap-1")
        assert transport.requests[0].params["CreateVolumePermission.Add.1.Group"] == "all"

    def test_make_image_public_false_is_fatal(self, ec2, transport):
        transport.add(HOST, "ModifyImageAttribute", ok(return_body("false")))
        with pytest.raises(ResourceStateError):
            ec2.make_image_public("ami-1")
        # a false <return> is a completed call, not a transient failure
        assert len(transport.requests) == 1

    def test_make_image_public_missing_return(self, ec2, transport):
        transport.add(HOST, "ModifyImageAttribute", ok("<Response/>"))
        with pytest.raises(ExtractionError):
            ec2.make_image_public("ami-1")


class TestRegisterImage:

    def test_parameters(self, ec2, transport):
        transport.add(HOST, "RegisterImage", ok(image_id_body("ami-42")))
        assert ec2.register_image("snap-1", "FreeBSD 14", "desc", "arm64", sriov=True, ena=True) == "ami-42"
        params = transport.requests[0].params
        assert params["Version"] == "2016-11-15"
        assert params["Architecture"] == "arm64"
        assert params["RootDeviceName"] == "/dev/sda1"
        assert params["VirtualizationType"] == "hvm"
        assert params["SriovNetSupport"] == "simple"
        assert params["EnaSupport"] == "true"
        assert params["BlockDeviceMapping.1.Ebs.SnapshotId"] == "snap-1"
        assert params["BlockDeviceMapping.1.Ebs.VolumeType"] == "gp2"
        assert params["BlockDeviceMapping.5.DeviceName"] == "/dev/sde"
        assert params["BlockDeviceMapping.5.VirtualName"] == "ephemeral3"

    def test_optional_flags_omitted(self, ec2, transport):
        transport.add(HOST, "RegisterImage", ok(image_id_body("ami-42")))
        ec2.register_image("snap-1", "n", "d", "x86_64")
        params = transport.requests[0].params
        assert "SriovNetSupport" not in params
        assert "EnaSupport" not in params


class TestCopyImage:

    def test_sent_to_destination_region(self, credentials, transport):
        dest = EC2Client(credentials, "eu-west-1", transport=transport)
        transport.add(ec2_host("eu-west-1"), "CopyImage", ok(image_id_body("ami-copy")))
        assert dest.copy_image("us-east-1", "ami-src") == "ami-copy"
        request = transport.requests[0]
        assert request.host == "ec2.eu-west-1.amazonaws.com"
        assert request.params["SourceRegion"] == "us-east-1"
        assert request.params["SourceImageId"] == "ami-src"
