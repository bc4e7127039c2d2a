"""Reconstruct FAT32 geometry when the boot sector is unusable."""

from __future__ import annotations

import math
import re
import struct
from bisect import bisect_left
from dataclasses import dataclass, field

from sdcarve.types import Fat32Geometry, ImageData

CLUSTER_SIZES = (512, 1024, 2048, 4096, 8192, 16384, 32768, 65536)

_MASK = 0x0FFFFFFF
_EOF_MIN = 0x0FFFFFF8
_MEDIA_ENTRIES = (0x0FFFFFF8, 0x0FFFFFF0, 0x0FFFFFFC)
_FAT2_MEDIA_ENTRIES = (0x0FFFFFF8, 0x0FFFFFF0)
_MB = 1024 * 1024
_FAT_SCAN_SPAN = 100 * _MB
_FAT2_PROBE_SPAN = 10 * _MB
_MAX_COUNTED_ENTRIES = 500_000
_MAX_BAD_RUN = 50
_DIR_ENTRY_SIZE = 32
_DIR_ENTRIES_CHECKED = 16

_U32 = struct.Struct("<I")
_HEADER_RE = re.compile(rb"\xff\xd8\xff|\x89PNG|%PDF|PK\x03\x04")


@dataclass
class AutodetectResult:
    """Best-guess geometry, how sure we are, and whether it is usable."""

    geo: Fat32Geometry = field(default_factory=Fat32Geometry)
    confidence: float = 0.0
    valid: bool = False


@dataclass
class _FatCandidate:
    offset: int
    valid_entries: int
    estimated_size: int
    quality: float


@dataclass
class _DirCandidate:
    offset: int
    valid_entries: int
    quality: float


@dataclass
class _Alignment:
    cluster_size: int = 0
    data_offset: int = 0
    aligned_count: int = 0
    score: float = 0.0


def _read32(data: ImageData, offset: int) -> int:
    return _U32.unpack_from(data, offset)[0]


def _is_fat_start(data: ImageData, offset: int) -> bool:
    e0 = _read32(data, offset) & _MASK
    e1 = _read32(data, offset + 4) & _MASK
    return e0 in _MEDIA_ENTRIES and e1 >= _EOF_MIN


def _plausible_entry(entry: int) -> bool:
    return entry == 0 or 2 <= entry <= 0x0FFFFFEF or entry >= 0x0FFFFFF7


def _count_until_garbage(data: ImageData, size: int, pos: int) -> tuple[int, int]:
    valid = total = 0
    while pos + 4 <= size and total < _MAX_COUNTED_ENTRIES:
        total += 1
        if _plausible_entry(_read32(data, pos) & _MASK):
            valid += 1
        else:
            bad_run = 0
            while pos + 4 <= size and bad_run < _MAX_BAD_RUN:
                if _plausible_entry(_read32(data, pos) & _MASK):
                    break
                bad_run += 1
                pos += 4
                total += 1
            if bad_run >= _MAX_BAD_RUN:
                break
        pos += 4
    return valid, total


def _scan_fat_signatures(data: ImageData, size: int, part_offset: int) -> list[_FatCandidate]:
    if size < 8:
        return []
    candidates = []
    scan_end = min(part_offset + _FAT_SCAN_SPAN, size - 8)

    for off in range(part_offset, scan_end, 512):
        if not _is_fat_start(data, off):
            continue

        probe_end = min(off + _FAT2_PROBE_SPAN, size - 8)
        fat_end = next(
            (probe for probe in range(off + 512, probe_end, 512) if _is_fat_start(data, probe)),
            0,
        )

        if fat_end == 0:
            valid, total = _count_until_garbage(data, size, off + 8)
            fat_end = off + total * 4
        else:
            total = (fat_end - off) // 4
            valid = sum(
                1
                for pos in range(off + 8, fat_end - 3, 4)
                if _plausible_entry(_read32(data, pos) & _MASK)
            )

        quality = valid / (total - 2) if total > 2 else 0.0
        fat_size = (fat_end - off) & 0xFFFFFFFF
        if quality > 0.5 and fat_size >= 512:
            candidates.append(_FatCandidate(off, valid, fat_size, quality))

    return candidates


def _dir_entry_ok(data: ImageData, offset: int) -> bool:
    first = data[offset]
    attr = data[offset + 11]
    if first in (0x00, 0xE5):
        return True
    if attr == 0x0F:
        return 0x01 <= first <= 0x7F
    if first < 0x20 or first == 0x7F:
        return False
    return attr <= 0x3F


def is_valid_dir_entry(entry: ImageData) -> bool:
    """Whether a 32-byte record looks like a FAT directory entry."""
    if len(entry) < 12:
        raise ValueError("a directory entry needs at least 12 bytes")
    return _dir_entry_ok(entry, 0)


def _scan_directory_structures(
    data: ImageData, size: int, part_offset: int
) -> list[_DirCandidate]:
    candidates = []
    off = part_offset
    while off + 512 <= size:
        valid = sum(
            1
            for i in range(_DIR_ENTRIES_CHECKED)
            if _dir_entry_ok(data, off + i * _DIR_ENTRY_SIZE)
        )
        quality = valid / _DIR_ENTRIES_CHECKED
        if quality >= 0.8 and valid >= 10:
            candidates.append(_DirCandidate(off, valid, quality))
            off += 4096 - 512
        off += 512
    return candidates


def _find_file_headers(data: ImageData, size: int, start: int) -> list[int]:
    return [m.start() for m in _HEADER_RE.finditer(data, start) if m.start() + 4 < size]


def _find_best_alignment(
    headers: list[int],
    dir_candidates: list[_DirCandidate],
    part_offset: int,
    image_size: int,
) -> _Alignment:
    offsets = {dc.offset for dc in dir_candidates}
    for reserved in range(16, 129, 4):
        base = part_offset + reserved * 512
        for fat_kb in range(64, 2049, 64):
            offsets.add(base + 2 * fat_kb * 1024)
    ordered = sorted(offsets)
    sorted_headers = sorted(headers)

    best = _Alignment()
    for cs in CLUSTER_SIZES:
        weight = math.log2(cs)
        for data_off in ordered:
            if data_off >= image_size or data_off < part_offset:
                continue
            first = bisect_left(sorted_headers, data_off)
            aligned = sum(1 for h in sorted_headers[first:] if (h - data_off) % cs == 0)
            weighted = aligned * weight
            if weighted > best.score:
                best = _Alignment(cs, data_off, aligned, weighted)
    return best


def autodetect_geometry(image: ImageData, partition_offset: int = 0) -> AutodetectResult:
    """Infer FAT32 geometry from FAT signatures, directories and header alignment."""
    size = len(image)
    fat_candidates = _scan_fat_signatures(image, size, partition_offset)
    dir_candidates = _scan_directory_structures(image, size, partition_offset)
    headers = _find_file_headers(image, size, partition_offset)
    alignment = _find_best_alignment(headers, dir_candidates, partition_offset, size)

    geo = Fat32Geometry(bytes_per_sector=512, partition_offset=partition_offset, root_cluster=2)
    confidence = 0.0

    if alignment.aligned_count >= 3:
        geo.bytes_per_cluster = alignment.cluster_size
        geo.sectors_per_cluster = alignment.cluster_size // 512
        geo.data_offset = alignment.data_offset
        geo.total_clusters = max(size - geo.data_offset, 0) // geo.bytes_per_cluster
        confidence += 0.4

    if fat_candidates:
        fat_candidates.sort(key=lambda c: c.offset)
        if len(fat_candidates) >= 2:
            fat_candidates[0].estimated_size = (
                fat_candidates[1].offset - fat_candidates[0].offset
            ) & 0xFFFFFFFF
        best_fat = fat_candidates[0]
        geo.fat1_offset = best_fat.offset
        geo.sectors_per_fat = best_fat.estimated_size // 512
        geo.num_fats = 1

        expected_fat2 = geo.fat1_offset + geo.sectors_per_fat * 512
        if expected_fat2 + 8 < size:
            f2e0 = _read32(image, expected_fat2) & _MASK
            f2e1 = _read32(image, expected_fat2 + 4) & _MASK
            if f2e0 in _FAT2_MEDIA_ENTRIES and f2e1 >= _EOF_MIN:
                geo.fat2_offset = expected_fat2
                geo.num_fats = 2

        geo.data_offset = geo.fat1_offset + geo.num_fats * geo.sectors_per_fat * 512

        fat_entries = best_fat.estimated_size // 4
        if fat_entries > 2 and geo.data_offset > 0:
            data_bytes = max(size - geo.data_offset, 0)
            estimated_cs = data_bytes // (fat_entries - 2)
            for cs in reversed(CLUSTER_SIZES):
                if estimated_cs >= cs * 0.95:
                    geo.bytes_per_cluster = cs
                    geo.sectors_per_cluster = cs // 512
                    geo.total_clusters = data_bytes // cs
                    break

        geo.reserved_sectors = (geo.fat1_offset - partition_offset) // 512
        confidence += 0.3 * best_fat.quality
    else:
        geo.fat1_offset = 0
        geo.fat2_offset = 0
        geo.num_fats = 0
        geo.sectors_per_fat = 0
        if geo.data_offset > partition_offset:
            geo.reserved_sectors = (geo.data_offset - partition_offset) // 512
        else:
            geo.reserved_sectors = 32

    if dir_candidates:
        if geo.data_offset == 0 and geo.bytes_per_cluster > 0:
            geo.data_offset = dir_candidates[0].offset
            geo.total_clusters = max(size - geo.data_offset, 0) // geo.bytes_per_cluster
        confidence += 0.2

    if geo.bytes_per_cluster == 0 or geo.data_offset == 0:
        return AutodetectResult(geo=geo, confidence=0.0, valid=False)

    geo.total_sectors = max(size - partition_offset, 0) // 512
    if geo.total_clusters == 0:
        geo.total_clusters = max(size - geo.data_offset, 0) // geo.bytes_per_cluster

    root_off = geo.data_offset
    if root_off + 32 < size and _dir_entry_ok(image, root_off):
        confidence += 0.1

    return AutodetectResult(
        geo=geo,
        confidence=min(confidence, 1.0),
        valid=confidence >= 0.3,
    )