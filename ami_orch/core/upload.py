from __future__ import annotations

import logging
import os
import secrets
from collections.abc import Callable
from typing import Optional

from ami_orch.config import MAX_ATTEMPTS, PART_SIZE, PRESIGN_EXPIRY_SECONDS
from ami_orch.core.manifest import ManifestBuilder, plan_parts
from ami_orch.core.models import Part, UploadResult
from ami_orch.errors import LocalIOError
from ami_orch.io.s3 import S3Client
from ami_orch.progress import NullProgress, ProgressReporter

logger = logging.getLogger("ami.core.upload")


def new_nonce() -> str:
    """16 random bytes, hex-encoded; the object prefix for one build."""
    return secrets.token_bytes(16).hex()


class MultipartUploader:
    """
    Upload a disk image as fixed-size part objects plus an import manifest.

    Layout in the bucket:
        <nonce>/part0 .. <nonce>/part<N-1>
        <nonce>/manifest.xml

    A failure at any step aborts the upload. Parts already uploaded are left
    in the bucket; their presigned DELETE URLs stay valid for the expiry period.
    """

    def __init__(
        self,
        s3: S3Client,
        part_size: int = PART_SIZE,
        expires: int = PRESIGN_EXPIRY_SECONDS,
        max_attempts: int = MAX_ATTEMPTS,
        progress: Optional[ProgressReporter] = None,
        nonce_factory: Callable[[], str] = new_nonce,
    ):
        self.s3 = s3
        self.part_size = part_size
        self.expires = expires
        self.max_attempts = max_attempts
        self.progress = progress or NullProgress()
        self.nonce_factory = nonce_factory

    def upload(self, file_path: str) -> UploadResult:
        """
        Upload ``file_path`` and its manifest.

        Returns:
            UploadResult with the manifest object path and image size

        Raises:
            LocalIOError: image cannot be opened or read in full
            RetryExhaustedError: an object PUT kept failing
        """
        nonce = self.nonce_factory()
        manifest_path = f"/{nonce}/manifest.xml"

        try:
            f = open(file_path, "rb")
        except OSError as e:
            raise LocalIOError(f"Cannot open disk image: {file_path}: {e}") from e

        with f:
            try:
                size = os.fstat(f.fileno()).st_size
            except OSError as e:
                raise LocalIOError(f"Cannot stat: {file_path}: {e}") from e

            plan = plan_parts(size, self.part_size)
            builder = ManifestBuilder(
                size=size,
                part_count=len(plan),
                self_destruct_url=self.s3.presigned_url("DELETE", manifest_path, self.expires),
            )

            logger.info(
                f"Uploading {file_path} in {len(plan)} part(s)",
                extra={"bucket": self.s3.bucket, "nonce": nonce, "size": size},
            )
            self.progress.write(
                f"Uploading {file_path} to\nhttp://{self.s3.virtual_host}/{nonce}/\nin {len(plan)} part(s)"
            )

            for index, start, length in plan:
                self.progress.dot()
                builder.add_part(self._upload_part(f, file_path, nonce, index, start, length))

            self.progress.done()

        document = builder.render()

        self.progress.write("Uploading volume manifest...")
        self.s3.put_object_with_retry(manifest_path, document.encode("utf-8"), self.max_attempts)
        self.progress.done()

        logger.info("Manifest uploaded", extra={"manifest_path": manifest_path})
        return UploadResult(manifest_path=manifest_path, size=size, nonce=nonce, parts=builder.parts)

    def _upload_part(self, f, file_path: str, nonce: str, index: int, start: int, length: int) -> Part:
        try:
            data = f.read(length)
        except OSError as e:
            raise LocalIOError(f"Error reading file: {file_path}: {e}") from e
        if len(data) != length:
            raise LocalIOError(f"Error reading file: {file_path}: short read at offset {start}")

        path = f"/{nonce}/part{index}"
        self.s3.put_object_with_retry(path, data, self.max_attempts)

        return Part(
            index=index,
            start=start,
            length=length,
            key=f"{nonce}/part{index}",
            head_url=self.s3.presigned_url("HEAD", path, self.expires),
            get_url=self.s3.presigned_url("GET", path, self.expires),
            delete_url=self.s3.presigned_url("DELETE", path, self.expires),
        )
