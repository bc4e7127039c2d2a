"""Classify data clusters by their content."""

from __future__ import annotations

import math
import re
from collections import Counter

from sdcarve.types import ClusterFeature, ClusterFlag, ContentType, DiskImage

_FF00 = b"\xff\x00"
_FTYP = b"ftyp"
_RST_RE = re.compile(rb"\xff[\xd0-\xd7]")
_MARKER_FLAGS = (
    (b"\xff\xd8", ClusterFlag.HAS_SOI),
    (b"\xff\xd9", ClusterFlag.HAS_EOI),
    (b"\xff\xda", ClusterFlag.HAS_SOS),
    (b"\xff\xdb", ClusterFlag.HAS_DQT),
)


def shannon_entropy(data: bytes) -> float:
    """Byte entropy in bits per byte (0.0 for empty input)."""
    if not data:
        return 0.0
    total = len(data)
    entropy = 0.0
    for count in Counter(data).values():
        p = count / total
        entropy -= p * math.log2(p)
    return entropy


def count_ff00(data: bytes) -> int:
    """Number of stuffed ``FF 00`` byte pairs."""
    return bytes(data).count(_FF00)


def _has_mp4_box(data: bytes) -> bool:
    pos = data.find(_FTYP, 4)
    while pos >= 0:
        if pos % 4 == 0:
            return True
        pos = data.find(_FTYP, pos + 1)
    return False


def _scan_markers(data: bytes) -> ClusterFlag:
    flags = ClusterFlag.NONE
    for marker, flag in _MARKER_FLAGS:
        if marker in data:
            flags |= flag
    if _RST_RE.search(data):
        flags |= ClusterFlag.HAS_RST
    return flags


def _classify(feature: ClusterFeature) -> ContentType:
    if feature.flags & ClusterFlag.IS_ZERO:
        return ContentType.EMPTY
    if feature.flags & ClusterFlag.HAS_SOI:
        return ContentType.JPEG_HEADER
    if feature.entropy > 7.0 and feature.ff00_count > 3:
        return ContentType.JPEG_SCAN
    if feature.entropy > 7.5 and feature.ff00_count <= 1:
        return ContentType.UNKNOWN
    if feature.entropy > 1.0:
        return ContentType.NON_JPEG
    return ContentType.UNKNOWN


def _analyse(data: bytes) -> ClusterFeature:
    feature = ClusterFeature(
        entropy=shannon_entropy(data),
        ff00_count=count_ff00(data),
        flags=_scan_markers(data),
    )
    if not any(data):
        feature.flags |= ClusterFlag.IS_ZERO
    if len(data) >= 8 and _has_mp4_box(data):
        feature.content_type = ContentType.MP4_HEADER
    else:
        feature.content_type = _classify(feature)
    return feature


def build_cluster_map(disk: DiskImage) -> list[ClusterFeature]:
    """One feature record per data cluster; entry ``i`` describes cluster ``i + 2``."""
    features = []
    for index in range(disk.geo.total_clusters):
        data = disk.cluster_data(index + 2)
        if data is None:
            features.append(ClusterFeature(content_type=ContentType.BAD_SECTOR))
        else:
            features.append(_analyse(data))
    return features