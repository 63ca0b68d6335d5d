"""
EC2 volume-import manifest.

The manifest is a single-line XML document the import service fetches
through a presigned URL. It is produced with string templates rather than
an XML library: element order and the exact text are what the service
parses, and presigned URLs go in as element text with only '&' escaped.
"""

from __future__ import annotations

from ami_orch.core.models import Part

MANIFEST_VERSION = "2010-11-15"
FILE_FORMAT = "RAW"
IMPORTER_NAME = "bsdec2-image-upload"
IMPORTER_VERSION = "1.2.2"
IMPORTER_RELEASE = "2019-03-20"

GIB = 1 << 30


def escape_amp(text: str) -> str:
    """
    Replace every '&' with '&amp;'.

    Not idempotent: already-escaped text is escaped again.
    """
    return text.replace("&", "&amp;")


def volume_size_gib(size: int) -> int:
    """Volume size for ``size`` bytes, in GiB, rounded up."""
    return (size + GIB - 1) // GIB


def plan_parts(size: int, part_size: int) -> list[tuple[int, int, int]]:
    """
    Split ``size`` bytes into (index, start, length) chunks of ``part_size``.

    Every chunk is full-size except the last. An empty image still gets one
    zero-length part so the manifest is never without parts.
    """
    if part_size <= 0:
        raise ValueError("part_size must be positive")
    if size == 0:
        return [(0, 0, 0)]
    return [
        (index, start, min(part_size, size - start))
        for index, start in enumerate(range(0, size, part_size))
    ]


class ManifestBuilder:
    """Accumulates the manifest while parts are uploaded, in file order."""

    def __init__(self, size: int, part_count: int, self_destruct_url: str):
        self.size = size
        self.part_count = part_count
        self._parts: list[Part] = []
        self._chunks: list[str] = [
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            "<manifest>"
            f"<version>{MANIFEST_VERSION}</version>"
            f"<file-format>{FILE_FORMAT}</file-format>"
            "<importer>"
            f"<name>{IMPORTER_NAME}</name>"
            f"<version>{IMPORTER_VERSION}</version>"
            f"<release>{IMPORTER_RELEASE}</release>"
            "</importer>"
            f"<self-destruct-url>{escape_amp(self_destruct_url)}</self-destruct-url>"
            "<import>"
            f"<size>{size}</size>"
            f"<volume-size>{volume_size_gib(size)}</volume-size>"
            f'<parts count="{part_count}">'
        ]

    @property
    def parts(self) -> list[Part]:
        return list(self._parts)

    def add_part(self, part: Part) -> None:
        if part.index != len(self._parts):
            raise ValueError(f"Part {part.index} added out of order (expected {len(self._parts)})")
        self._parts.append(part)
        self._chunks.append(
            f'<part index="{part.index}">'
            f'<byte-range start="{part.start}" end="{part.end}"/>'
            f"<key>{part.key}</key>"
            f"<head-url>{escape_amp(part.head_url)}</head-url>"
            f"<get-url>{escape_amp(part.get_url)}</get-url>"
            f"<delete-url>{escape_amp(part.delete_url)}</delete-url>"
            "</part>"
        )

    def render(self) -> str:
        if len(self._parts) != self.part_count:
            raise ValueError(f"Manifest declares {self.part_count} parts but has {len(self._parts)}")
        return "".join(self._chunks) + "</parts></import></manifest>"
