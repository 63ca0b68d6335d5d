from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

@dataclass(frozen=True)
class Credentials:
    access_key_id: str
    access_key_secret: str

    def __repr__(self) -> str:
        return f"Credentials(access_key_id={self.access_key_id!r}, access_key_secret='***')"

@dataclass(frozen=True)
class Part:
    index: int
    start: int                 # first byte offset, inclusive
    length: int
    key: str                   # "<nonce>/part<index>", no leading '/'
    head_url: str = ""
    get_url: str = ""
    delete_url: str = ""

    @property
    def end(self) -> int:
        # inclusive, as written to <byte-range end=...>
        return self.start + self.length - 1

@dataclass(frozen=True)
class UploadResult:
    manifest_path: str         # "/<nonce>/manifest.xml"
    size: int                  # disk image size in bytes
    nonce: str
    parts: List[Part] = field(default_factory=list)

@dataclass(frozen=True)
class RegionResult:
    region: str
    image_id: str

@dataclass(frozen=True)
class BuildResult:
    images: List[RegionResult]
    snapshot_id: str
    notified: Optional[bool] = None   # None when not attempted (private build or no topic)

    def as_region_map(self) -> dict[str, str]:
        return {r.region: r.image_id for r in self.images}
