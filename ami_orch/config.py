from dataclasses import dataclass
from typing import Optional

PART_SIZE = 10 * 1024 * 1024
PRESIGN_EXPIRY_SECONDS = 604800  # 7 days
POLL_INTERVAL_SECONDS = 10.0
MAX_ATTEMPTS = 10
REQUEST_TIMEOUT_SECONDS = 60.0

ARCHITECTURES = ("x86_64", "arm64")

@dataclass(frozen=True)
class BuildConfig:
    disk_image: str
    name: str
    description: str
    region: str           # build region; every other region is a fan-out target
    bucket: str

    public: bool = False           # copy to every region and mark each image public
    public_snapshot: bool = False
    sriov: bool = False
    ena: bool = False
    architecture: str = "x86_64"

    # Notification: all three or none
    topic_arn: Optional[str] = None
    release_version: Optional[str] = None
    image_version: Optional[str] = None

    part_size: int = PART_SIZE
    poll_interval_seconds: float = POLL_INTERVAL_SECONDS
    max_attempts: int = MAX_ATTEMPTS
    presign_expiry_seconds: int = PRESIGN_EXPIRY_SECONDS
    ca_cert_path: Optional[str] = None    # None: system trust store
    # Per request; S3 part uploads add time for their body size
    request_timeout_seconds: float = REQUEST_TIMEOUT_SECONDS

    # Concurrent copy-waits during fan-out; 1 awaits regions one at a time
    fanout_workers: int = 1

    def __post_init__(self) -> None:
        if self.architecture not in ARCHITECTURES:
            raise ValueError(f"Unsupported architecture: {self.architecture}")
        if self.fanout_workers < 1:
            raise ValueError("fanout_workers must be at least 1")
        if self.request_timeout_seconds <= 0:
            raise ValueError("request_timeout_seconds must be positive")
        supplied = [v is not None for v in (self.topic_arn, self.release_version, self.image_version)]
        if any(supplied) and not all(supplied):
            raise ValueError("topic_arn, release_version and image_version must be given together")

    @property
    def notify(self) -> bool:
        return self.topic_arn is not None
