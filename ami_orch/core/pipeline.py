from __future__ import annotations

import enum
import logging
import signal
import threading
import time
from collections.abc import Callable, Iterator
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from typing import Any, Optional

from ami_orch.config import BuildConfig
from ami_orch.core.cancel import CancellationToken
from ami_orch.core.models import BuildResult, Credentials, RegionResult, UploadResult
from ami_orch.core.notify import Notifier
from ami_orch.core.poller import AsyncPoller, image_spec, snapshot_spec, volume_import_spec
from ami_orch.core.upload import MultipartUploader
from ami_orch.errors import (
    BuildCancelledError,
    RetryableCallError,
    StageFailedError,
    TerminalBuildError,
)
from ami_orch.io.ec2 import EC2Client
from ami_orch.io.s3 import S3Client
from ami_orch.io.sns import SNSClient
from ami_orch.io.transport import Transport, send_request
from ami_orch.progress import NullProgress, ProgressReporter

logger = logging.getLogger("ami.core.pipeline")


class Stage(enum.Enum):
    # value: the operation named in the failure diagnostic
    LIST_REGIONS = "getting list of AWS regions"
    UPLOAD = "uploading disk image"
    IMPORT = "importing disk image"
    AWAIT_VOLUME = "waiting for EBS volume"
    SNAPSHOT = "creating snapshot"
    AWAIT_SNAPSHOT = "waiting for EBS snapshot"
    DELETE_VOLUME = "deleting EBS volume"
    PUBLICIZE_SNAPSHOT = "marking EBS snapshot as public"
    REGISTER_IMAGE = "registering AMI"
    AWAIT_IMAGE = "waiting for AMI"
    COPY_IMAGE = "copying AMI to regions"
    AWAIT_COPIES = "waiting for AMI copies"
    PUBLICIZE_IMAGES = "marking AMIs as public"
    NOTIFY = "sending SNS notification"


class BuildPipeline:
    """
    Drives one image build from disk image to published AMI(s).

    Flow:
    1. List regions (sanity check: at least one)
    2. Upload the disk image as parts + manifest
    3. Import the manifest as a volume, wait for the conversion task
    4. Snapshot the volume, wait for the snapshot, then delete the volume
    5. Optionally mark the snapshot public
    6. Register the image, wait for it to become available
    7. Optionally fan out: copy into every other region, wait for every
       copy, and only then mark every image public
    8. Print one result line per image; for a public build with a topic,
       publish a notification

    Any stage failure except the notification aborts the build with a
    StageFailedError. Nothing created so far is rolled back: an imported
    volume, uploaded parts or registered images stay where they are.
    """

    def __init__(
        self,
        cfg: BuildConfig,
        credentials: Credentials,
        transport: Transport = send_request,
        progress: Optional[ProgressReporter] = None,
        cancel_token: Optional[CancellationToken] = None,
        output: Callable[[str], None] = print,
    ):
        """
        Initialize build pipeline.

        Args:
            cfg: Build configuration (immutable, shared by every stage)
            credentials: Access key pair used for every call
            transport: Sends raw requests; replaced in tests
            progress: Operator progress output (default: silent)
            cancel_token: Root cancellation token (default: a fresh one)
            output: Receives the final "Created AMI ..." lines
        """
        self.cfg = cfg
        self.credentials = credentials
        self.transport = transport
        self.progress = progress or NullProgress()
        self.cancel_token = cancel_token or CancellationToken()
        self.output = output

        self.s3 = S3Client(
            credentials, cfg.region, cfg.bucket,
            transport=transport, ca_cert_path=cfg.ca_cert_path, progress=self.progress,
            timeout=cfg.request_timeout_seconds,
        )
        self.uploader = MultipartUploader(
            self.s3,
            part_size=cfg.part_size,
            expires=cfg.presign_expiry_seconds,
            max_attempts=cfg.max_attempts,
            progress=self.progress,
        )
        self.poller = AsyncPoller(cfg.poll_interval_seconds, self.cancel_token, self.progress)
        self.notifier = Notifier(self._sns, self.progress)

        self._ec2_clients: dict[str, EC2Client] = {}
        self._ec2_lock = threading.Lock()
        self._signals_received = 0

    # ---- clients ----

    def ec2(self, region: str) -> EC2Client:
        with self._ec2_lock:
            client = self._ec2_clients.get(region)
            if client is None:
                client = EC2Client(
                    self.credentials, region,
                    transport=self.transport,
                    ca_cert_path=self.cfg.ca_cert_path,
                    max_attempts=self.cfg.max_attempts,
                    progress=self.progress,
                    timeout=self.cfg.request_timeout_seconds,
                )
                self._ec2_clients[region] = client
            return client

    def _sns(self, region: str) -> SNSClient:
        return SNSClient(
            self.credentials, region,
            transport=self.transport,
            ca_cert_path=self.cfg.ca_cert_path,
            timeout=self.cfg.request_timeout_seconds,
        )

    # ---- main flow ----

    def run(self) -> BuildResult:
        """
        Run every stage in order.

        Raises:
            StageFailedError: a stage failed (carries the stage and the cause)
            BuildCancelledError: cancellation was requested
        """
        cfg = self.cfg
        logger.info("Starting build", extra={"image_name": cfg.name, "region": cfg.region, "bucket": cfg.bucket})

        regions = self.list_regions()
        upload = self.upload_image()
        task_id = self.import_volume(upload)
        volume_id = self.await_volume(task_id)
        snapshot_id = self.create_snapshot(volume_id)
        self.await_snapshot(snapshot_id)
        # Only now is the snapshot durable; the volume can go
        self.delete_volume(volume_id)

        if cfg.public_snapshot:
            self.publicize_snapshot(snapshot_id)

        image_id = self.register_image(snapshot_id)
        self.await_image(image_id)

        if cfg.public:
            images = self.fan_out(regions, image_id)
        else:
            images = [RegionResult(cfg.region, image_id)]

        for result in images:
            self.output(f"Created AMI in {result.region} region: {result.image_id}")

        # Only public releases are announced
        notified = None
        if cfg.public and cfg.notify:
            notified = self.notify(images)

        logger.info("Build complete", extra={"images": {r.region: r.image_id for r in images}})
        return BuildResult(images=images, snapshot_id=snapshot_id, notified=notified)

    # ---- stages ----

    def list_regions(self) -> list[str]:
        with self._stage(Stage.LIST_REGIONS):
            regions = self.ec2(self.cfg.region).describe_regions()
        logger.info(f"Found {len(regions)} regions", extra={"regions": regions})
        return regions

    def upload_image(self) -> UploadResult:
        with self._stage(Stage.UPLOAD, disk_image=self.cfg.disk_image):
            return self.uploader.upload(self.cfg.disk_image)

    def import_volume(self, upload: UploadResult) -> str:
        with self._stage(Stage.IMPORT):
            manifest_url = self.s3.presigned_url("GET", upload.manifest_path, self.cfg.presign_expiry_seconds)
            task_id = self.ec2(self.cfg.region).import_volume(manifest_url, upload.size)
        logger.info(f"Conversion task: {task_id}", extra={"conversion_task_id": task_id})
        return task_id

    def await_volume(self, task_id: str) -> str:
        ec2 = self.ec2(self.cfg.region)
        with self._stage(Stage.AWAIT_VOLUME, conversion_task_id=task_id):
            result = self.poller.wait(volume_import_spec(), lambda: ec2.describe_conversion_task(task_id))
        logger.info(f"Volume: {result.payload}", extra={"volume_id": result.payload})
        return result.payload

    def create_snapshot(self, volume_id: str) -> str:
        with self._stage(Stage.SNAPSHOT, volume_id=volume_id):
            snapshot_id = self.ec2(self.cfg.region).create_snapshot(volume_id)
        logger.info(f"Snapshot: {snapshot_id}", extra={"snapshot_id": snapshot_id})
        return snapshot_id

    def await_snapshot(self, snapshot_id: str) -> None:
        ec2 = self.ec2(self.cfg.region)
        with self._stage(Stage.AWAIT_SNAPSHOT, snapshot_id=snapshot_id):
            self.poller.wait(snapshot_spec(), lambda: ec2.describe_snapshot(snapshot_id))

    def delete_volume(self, volume_id: str) -> None:
        with self._stage(Stage.DELETE_VOLUME, volume_id=volume_id):
            self.ec2(self.cfg.region).delete_volume(volume_id)

    def publicize_snapshot(self, snapshot_id: str) -> None:
        with self._stage(Stage.PUBLICIZE_SNAPSHOT, snapshot_id=snapshot_id):
            self.progress.write(f"Marking {snapshot_id} in {self.cfg.region} as public...")
            self.ec2(self.cfg.region).make_snapshot_public(snapshot_id)
            self.progress.done()

    def register_image(self, snapshot_id: str) -> str:
        cfg = self.cfg
        with self._stage(Stage.REGISTER_IMAGE, snapshot_id=snapshot_id):
            # Images are usually available as soon as this returns, so the
            # wait that follows rarely prints anything of its own
            self.progress.line("Registering AMI...")
            image_id = self.ec2(cfg.region).register_image(
                snapshot_id, cfg.name, cfg.description, cfg.architecture,
                sriov=cfg.sriov, ena=cfg.ena,
            )
        logger.info(f"Registered image: {image_id}", extra={"image_id": image_id})
        return image_id

    def await_image(self, image_id: str) -> None:
        with self._stage(Stage.AWAIT_IMAGE, image_id=image_id):
            self._await_image(self.poller, self.cfg.region, image_id)

    def fan_out(self, regions: list[str], image_id: str) -> list[RegionResult]:
        """
        Copy the image into every other region, wait for all copies, then publicize all.

        No image is marked public until every copy is confirmed available.
        Copy calls create resources and are issued once each.

        Returns:
            One RegionResult per region, in discovered order (build region included)
        """
        source = self.cfg.region
        fanout_regions = regions if source in regions else [source] + regions
        targets = [r for r in fanout_regions if r != source]
        images: dict[str, str] = {source: image_id}

        with self._stage(Stage.COPY_IMAGE):
            self.progress.write("Copying AMI to regions:")
            try:
                for region in targets:
                    self.progress.write(f" {region}")
                    images[region] = self.ec2(region).copy_image(source, image_id)
                    logger.info(f"Copying to {region}: {images[region]}", extra={"region": region, "image_id": images[region]})
            finally:
                self.progress.line(".")

        with self._stage(Stage.AWAIT_COPIES):
            self._await_copies({r: images[r] for r in targets})

        with self._stage(Stage.PUBLICIZE_IMAGES):
            self.progress.write("Marking images as public...")
            for region in fanout_regions:
                self.ec2(region).make_image_public(images[region])
            self.progress.done()

        return [RegionResult(region, images[region]) for region in fanout_regions]

    def notify(self, images: list[RegionResult]) -> bool:
        cfg = self.cfg
        logger.info("Stage started: NOTIFY", extra={"stage": Stage.NOTIFY.name})
        ok = self.notifier.publish(cfg.topic_arn, cfg.release_version, cfg.image_version, cfg.name, images)
        logger.info(f"Stage finished: NOTIFY (sent={ok})", extra={"stage": Stage.NOTIFY.name, "sent": ok})
        return ok

    # ---- internals ----

    def _await_image(self, poller: AsyncPoller, region: str, image_id: str) -> None:
        ec2 = self.ec2(region)
        poller.wait(image_spec(region), lambda: ec2.describe_image(image_id))

    def _await_copies(self, copies: dict[str, str]) -> None:
        """
        Wait for every copy; up to cfg.fanout_workers regions at a time.

        The first failure cancels the remaining waits and is re-raised once
        all workers have stopped.
        """
        if not copies:
            return

        token = self.cancel_token.child()
        poller = self.poller.with_token(token)
        first_error: Optional[BaseException] = None

        with ThreadPoolExecutor(max_workers=min(self.cfg.fanout_workers, len(copies))) as pool:
            futures = {
                pool.submit(self._await_image, poller, region, image_id): region
                for region, image_id in copies.items()
            }
            for future in as_completed(futures):
                region = futures[future]
                try:
                    future.result()
                except Exception as e:
                    if first_error is None:
                        first_error = e
                        logger.error(f"Copy to {region} failed: {e}", extra={"region": region})
                        token.cancel(f"aborted: copy to {region} failed")

        if first_error is not None:
            raise first_error

    @contextmanager
    def _stage(self, stage: Stage, **extra: Any) -> Iterator[None]:
        self.cancel_token.raise_if_cancelled()
        logger.info(f"Stage started: {stage.name}", extra={"stage": stage.name, **extra})
        start = time.time()
        try:
            yield
        except BuildCancelledError:
            raise
        except (RetryableCallError, TerminalBuildError, OSError, ValueError) as e:
            logger.error(f"Failure {stage.value}: {e}", extra={"stage": stage.name})
            raise StageFailedError(stage.value, e) from e
        duration_ms = (time.time() - start) * 1000
        logger.info(f"Stage finished: {stage.name}", extra={"stage": stage.name, "duration_ms": duration_ms})

    def install_signal_handlers(self) -> None:
        """
        Install signal handlers for cancellation.

        Handles SIGTERM and SIGINT (Ctrl+C):
        - First signal cancels the root token; pollers stop before their
          next describe call or during their sleep, and the build aborts
        - Second signal forces an immediate KeyboardInterrupt
        """

        def signal_handler(signum: int, frame: Any) -> None:
            sig_name = signal.Signals(signum).name
            self._signals_received += 1
            if self._signals_received == 1:
                logger.warning(f"Received {sig_name} signal. Cancelling build after the current call.")
                self.cancel_token.cancel(f"cancelled by {sig_name}")
            else:
                logger.warning(f"Received second {sig_name} signal. Forcing immediate shutdown.")
                raise KeyboardInterrupt("Forced shutdown by second signal")

        signal.signal(signal.SIGTERM, signal_handler)
        signal.signal(signal.SIGINT, signal_handler)
        logger.debug("Signal handlers installed (SIGTERM, SIGINT)")
