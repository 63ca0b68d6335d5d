"""Tests for part planning, ampersand escaping and manifest rendering."""

from __future__ import annotations

import pytest

from ami_orch.core.manifest import ManifestBuilder, escape_amp, plan_parts, volume_size_gib
from ami_orch.core.models import Part

MIB = 1024 * 1024


class TestEscapeAmp:

    def test_every_ampersand(self):
        assert escape_amp("a&b&&c") == "a&amp;b&amp;&amp;c"

    def test_no_ampersand(self):
        assert escape_amp("https://b.s3.amazonaws.com/n/part0") == "https://b.s3.amazonaws.com/n/part0"

    def test_not_idempotent(self):
        assert escape_amp("&amp;") == "&amp;amp;"


class TestPlanParts:

    def test_25_mib_in_10_mib_parts(self):
        assert plan_parts(25 * MIB, 10 * MIB) == [
            (0, 0, 10 * MIB),
            (1, 10 * MIB, 10 * MIB),
            (2, 20 * MIB, 5 * MIB),
        ]

    def test_exact_multiple(self):
        assert plan_parts(20, 10) == [(0, 0, 10), (1, 10, 10)]

    def test_smaller_than_one_part(self):
        assert plan_parts(7, 10) == [(0, 0, 7)]

    def test_empty_image_has_one_empty_part(self):
        assert plan_parts(0, 10 * MIB) == [(0, 0, 0)]

    def test_invalid_part_size(self):
        with pytest.raises(ValueError):
            plan_parts(10, 0)


class TestVolumeSize:

    @pytest.mark.parametrize("size,expected", [
        (0, 0),
        (1, 1),
        (1 << 30, 1),
        ((1 << 30) + 1, 2),
        (10 * (1 << 30), 10),
    ])
    def test_rounds_up_to_gib(self, size, expected):
        assert volume_size_gib(size) == expected


def make_part(index, start, length, nonce="n0"):
    return Part(
        index=index,
        start=start,
        length=length,
        key=f"{nonce}/part{index}",
        head_url=f"https://b/{nonce}/part{index}?X-Amz-Algorithm=AWS4-HMAC-SHA256&m=HEAD",
        get_url=f"https://b/{nonce}/part{index}?X-Amz-Algorithm=AWS4-HMAC-SHA256&m=GET",
        delete_url=f"https://b/{nonce}/part{index}?X-Amz-Algorithm=AWS4-HMAC-SHA256&m=DELETE",
    )


class TestManifestBuilder:

    def test_render_single_part(self):
        builder = ManifestBuilder(size=2500, part_count=1, self_destruct_url="https://b/n0/manifest.xml?a=1&b=2")
        builder.add_part(make_part(0, 0, 2500))
        assert builder.render() == (
            '<?xml version="1.0" encoding="UTF-8" standalone="yes"?>'
            "<manifest><version>2010-11-15</version><file-format>RAW</file-format>"
            "<importer><name>bsdec2-image-upload</name><version>1.2.2</version><release>2019-03-20</release></importer>"
            "<self-destruct-url>https://b/n0/manifest.xml?a=1&amp;b=2</self-destruct-url>"
            "<import><size>2500</size><volume-size>1</volume-size>"
            '<parts count="1">'
            '<part index="0"><byte-range start="0" end="2499"/><key>n0/part0</key>'
            "<head-url>https://b/n0/part0?X-Amz-Algorithm=AWS4-HMAC-SHA256&amp;m=HEAD</head-url>"
            "<get-url>https://b/n0/part0?X-Amz-Algorithm=AWS4-HMAC-SHA256&amp;m=GET</get-url>"
            "<delete-url>https://b/n0/part0?X-Amz-Algorithm=AWS4-HMAC-SHA256&amp;m=DELETE</delete-url>"
            "</part></parts></import></manifest>"
        )

    def test_byte_ranges_are_inclusive_and_contiguous(self):
        builder = ManifestBuilder(size=25, part_count=3, self_destruct_url="u")
        for index, start, length in plan_parts(25, 10):
            builder.add_part(make_part(index, start, length))
        document = builder.render()
        assert '<byte-range start="0" end="9"/>' in document
        assert '<byte-range start="10" end="19"/>' in document
        assert '<byte-range start="20" end="24"/>' in document
        assert document.count("<part index=") == 3

    def test_empty_part_range(self):
        builder = ManifestBuilder(size=0, part_count=1, self_destruct_url="u")
        builder.add_part(make_part(0, 0, 0))
        assert '<byte-range start="0" end="-1"/>' in builder.render()

    def test_out_of_order_part_rejected(self):
        builder = ManifestBuilder(size=20, part_count=2, self_destruct_url="u")
        with pytest.raises(ValueError):
            builder.add_part(make_part(1, 10, 10))

    def test_missing_parts_rejected(self):
        builder = ManifestBuilder(size=20, part_count=2, self_destruct_url="u")
        builder.add_part(make_part(0, 0, 10))
        with pytest.raises(ValueError):
            builder.render()
