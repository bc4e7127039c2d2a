"""MBR partition table parsing."""

from __future__ import annotations

import struct

from sdcarve.types import SECTOR_SIZE, ImageData, PartitionEntry

MBR_SIGNATURE = 0xAA55
PARTITION_TABLE_OFFSET = 0x1BE
FAT32_PARTITION_TYPES = (0x0B, 0x0C)

_ENTRY = struct.Struct("<B3xB3xII")


class PartitionError(ValueError):
    """The requested partition does not exist or cannot be used."""


def detect_partitions(image: ImageData) -> list[PartitionEntry]:
    """Return the four primary MBR entries, or an empty list when there is no MBR."""
    if len(image) < 512:
        return []
    signature = image[510] | (image[511] << 8)
    if signature != MBR_SIGNATURE:
        return []

    entries = []
    for index in range(4):
        status, ptype, start_lba, size_sectors = _ENTRY.unpack_from(
            image, PARTITION_TABLE_OFFSET + index * _ENTRY.size
        )
        entries.append(
            PartitionEntry(
                status=status,
                type=ptype,
                start_lba=start_lba,
                size_sectors=size_sectors,
            )
        )
    return entries


def partition_offset(image: ImageData, partition_num: int = 0) -> int:
    """Byte offset of the partition to recover.

    ``partition_num`` 1-4 selects an MBR entry; 0 picks the first FAT32
    partition, then the first non-empty one. An image without an MBR is
    treated as a bare partition at offset 0.
    """
    entries = detect_partitions(image)
    if not entries:
        return 0

    if partition_num > 0:
        if partition_num > 4:
            raise PartitionError(f"partition number must be 1-4, got {partition_num}")
        entry = entries[partition_num - 1]
        if entry.type == 0:
            raise PartitionError(f"partition {partition_num} is empty")
        return entry.start_lba * SECTOR_SIZE

    for entry in entries:
        if entry.type in FAT32_PARTITION_TYPES:
            return entry.start_lba * SECTOR_SIZE

    for entry in entries:
        if entry.type != 0:
            return entry.start_lba * SECTOR_SIZE

    return 0