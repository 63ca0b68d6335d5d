from __future__ import annotations

import logging
from typing import Optional

from ami_orch.config import MAX_ATTEMPTS, REQUEST_TIMEOUT_SECONDS
from ami_orch.core.manifest import volume_size_gib
from ami_orch.core.models import Credentials
from ami_orch.core.retry import call_with_retry
from ami_orch.core.xmltags import extract_all, extract_one
from ami_orch.errors import ExtractionError, ResourceStateError
from ami_orch.io.signing import form_encode, sign
from ami_orch.io.transport import HTTPS_PORT, Transport, build_request, send_request, validate_response
from ami_orch.progress import ProgressReporter

logger = logging.getLogger("ami.io.ec2")

EC2_API_VERSION = "2014-09-01"
REGISTER_IMAGE_API_VERSION = "2016-11-15"

Params = list[tuple[str, str]]

# Root volume from the snapshot plus four instance-store slots
ROOT_DEVICE_NAME = "/dev/sda1"
EPHEMERAL_DEVICES = ("/dev/sdb", "/dev/sdc", "/dev/sdd", "/dev/sde")


class EC2Client:
    """
    EC2 query API client for one region.

    Retry policy is fixed per action: describe/list calls and attribute
    modifications go through the bounded retry caller; calls that create or
    destroy resources (ImportVolume, CreateSnapshot, DeleteVolume,
    RegisterImage, CopyImage) are issued exactly once.
    """

    def __init__(
        self,
        credentials: Credentials,
        region: str,
        transport: Transport = send_request,
        ca_cert_path: Optional[str] = None,
        max_attempts: int = MAX_ATTEMPTS,
        progress: Optional[ProgressReporter] = None,
        timeout: float = REQUEST_TIMEOUT_SECONDS,
    ):
        self.credentials = credentials
        self.region = region
        self.transport = transport
        self.ca_cert_path = ca_cert_path
        self.max_attempts = max_attempts
        self.progress = progress
        self.timeout = timeout

    @property
    def host(self) -> str:
        return f"ec2.{self.region}.amazonaws.com"

    def call(self, params: Params) -> str:
        """
        Issue one signed POST and return the validated response body.

        HTTP/1.0 keeps the response un-chunked so the body is the raw XML.

        Raises:
            ProtocolError: non-200 or malformed response
            TransportError: connection failure
        """
        body = form_encode(params).encode("utf-8")
        signed = sign(self.credentials, "ec2", self.region, "POST", self.host, "/", body)
        request = build_request("POST", "/", self.host, signed, body, http_version="HTTP/1.0")
        return validate_response(self.transport(self.host, HTTPS_PORT, self.ca_cert_path, request, timeout=self.timeout))

    def call_with_retry(self, params: Params) -> str:
        return call_with_retry(
            lambda: self.call(params),
            description=f"EC2 API call {params[0][1]} in {self.region}",
            max_attempts=self.max_attempts,
            progress=self.progress,
        )

    # --- regions ---

    def describe_regions(self) -> list[str]:
        """
        Names of every region visible to the account.

        Raises:
            ExtractionError: no <regionInfo>, or no <regionName> inside it
        """
        resp = self.call_with_retry([("Action", "DescribeRegions"), ("Version", EC2_API_VERSION)])
        region_info = extract_one(resp, "regionInfo")
        regions = extract_all(region_info, "regionName")
        if not regions:
            raise ExtractionError("regionName", resp, f"Could not find any regions in DescribeRegions response:\n{resp}")
        return regions

    # --- volume import ---

    def import_volume(self, manifest_url: str, size: int) -> str:
        """Start importing the uploaded image; returns the conversion task id."""
        resp = self.call([
            ("Action", "ImportVolume"),
            ("AvailabilityZone", f"{self.region}a"),
            ("Image.Format", "RAW"),
            ("Image.Bytes", str(size)),
            ("Image.ImportManifestUrl", manifest_url),
            ("Volume.Size", str(volume_size_gib(size))),
            ("Version", EC2_API_VERSION),
        ])
        return extract_one(resp, "conversionTaskId")

    def describe_conversion_task(self, task_id: str) -> str:
        return self.call_with_retry([
            ("Action", "DescribeConversionTasks"),
            ("ConversionTaskId.1", task_id),
            ("Version", EC2_API_VERSION),
        ])

    # --- volumes and snapshots ---

    def create_snapshot(self, volume_id: str) -> str:
        resp = self.call([
            ("Action", "CreateSnapshot"),
            ("VolumeId", volume_id),
            ("Version", EC2_API_VERSION),
        ])
        return extract_one(resp, "snapshotId")

    def describe_snapshot(self, snapshot_id: str) -> str:
        return self.call_with_retry([
            ("Action", "DescribeSnapshots"),
            ("SnapshotId.1", snapshot_id),
            ("Version", EC2_API_VERSION),
        ])

    def delete_volume(self, volume_id: str) -> None:
        resp = self.call([
            ("Action", "DeleteVolume"),
            ("VolumeId", volume_id),
            ("Version", EC2_API_VERSION),
        ])
        _require_true(resp, "DeleteVolume")

    def make_snapshot_public(self, snapshot_id: str) -> None:
        resp = self.call_with_retry([
            ("Action", "ModifySnapshotAttribute"),
            ("SnapshotId", snapshot_id),
            ("CreateVolumePermission.Add.1.Group", "all"),
            ("Version", EC2_API_VERSION),
        ])
        _require_true(resp, "ModifySnapshotAttribute")

    # --- images ---

    def register_image(
        self,
        snapshot_id: str,
        name: str,
        description: str,
        architecture: str,
        sriov: bool = False,
        ena: bool = False,
    ) -> str:
        params: Params = [
            ("Action", "RegisterImage"),
            ("Name", name),
            ("Description", description),
            ("Architecture", architecture),
            ("RootDeviceName", ROOT_DEVICE_NAME),
            ("VirtualizationType", "hvm"),
        ]
        if sriov:
            params.append(("SriovNetSupport", "simple"))
        if ena:
            params.append(("EnaSupport", "true"))
        params += [
            ("BlockDeviceMapping.1.DeviceName", ROOT_DEVICE_NAME),
            ("BlockDeviceMapping.1.Ebs.SnapshotId", snapshot_id),
            ("BlockDeviceMapping.1.Ebs.VolumeType", "gp2"),
            ("BlockDeviceMapping.1.Ebs.VolumeSize", "10"),
        ]
        for slot, device in enumerate(EPHEMERAL_DEVICES):
            params += [
                (f"BlockDeviceMapping.{slot + 2}.DeviceName", device),
                (f"BlockDeviceMapping.{slot + 2}.VirtualName", f"ephemeral{slot}"),
            ]
        params.append(("Version", REGISTER_IMAGE_API_VERSION))

        resp = self.call(params)
        return extract_one(resp, "imageId")

    def describe_image(self, image_id: str) -> str:
        return self.call_with_retry([
            ("Action", "DescribeImages"),
            ("ImageId.1", image_id),
            ("Version", EC2_API_VERSION),
        ])

    def copy_image(self, source_region: str, source_image_id: str) -> str:
        """Copy an image into this client's region; returns the new image id."""
        resp = self.call([
            ("Action", "CopyImage"),
            ("SourceRegion", source_region),
            ("SourceImageId", source_image_id),
            ("Version", EC2_API_VERSION),
        ])
        return extract_one(resp, "imageId")

    def make_image_public(self, image_id: str) -> None:
        resp = self.call_with_retry([
            ("Action", "ModifyImageAttribute"),
            ("ImageId", image_id),
            ("LaunchPermission.Add.1.Group", "all"),
            ("Version", EC2_API_VERSION),
        ])
        _require_true(resp, "ModifyImageAttribute")


def _require_true(resp: str, action: str) -> None:
    """HTTP 200 is not enough: the action's <return> field must be true."""
    if extract_one(resp, "return") != "true":
        raise ResourceStateError(f"{action} failed: {resp}")
