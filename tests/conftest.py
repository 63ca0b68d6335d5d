"""Shared pytest fixtures for AMI build tests.

Provides dummy credentials, a scripted fake transport, a small disk image
on disk and a build config wired for fast polling.
"""

from __future__ import annotations

from pathlib import Path

import pytest

from ami_orch.config import BuildConfig
from ami_orch.core.models import Credentials
from fakes import FakeTransport


@pytest.fixture
def credentials() -> Credentials:
    return Credentials(access_key_id="AKIDEXAMPLE", access_key_secret="wJalrXUtnFEMI/K7MDENG+bPxRfiCYEXAMPLEKEY")


@pytest.fixture
def transport() -> FakeTransport:
    return FakeTransport()


@pytest.fixture
def disk_image(tmp_path: Path) -> Path:
    """A 2500-byte image: three parts at a 1000-byte part size."""
    path = tmp_path / "disk.img"
    path.write_bytes(bytes(range(250)) * 10)
    return path


@pytest.fixture
def make_config(disk_image: Path):
    """Factory for BuildConfig with test-friendly tunables; keyword args override."""

    def _make(**overrides) -> BuildConfig:
        fields = dict(
            disk_image=str(disk_image),
            name="FreeBSD-14.0-RELEASE-amd64",
            description="FreeBSD/amd64 releng/14.0@abcdef",
            region="us-east-1",
            bucket="release-images",
            part_size=1000,
            poll_interval_seconds=0,
        )
        fields.update(overrides)
        return BuildConfig(**fields)

    return _make
