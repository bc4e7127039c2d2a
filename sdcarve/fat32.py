"""FAT32 boot sector parsing and FAT table reading."""

from __future__ import annotations

import struct

from sdcarve.autodetect import autodetect_geometry
from sdcarve.types import SECTOR_SIZE, Fat32Geometry, FatTables, ImageData

BACKUP_BOOT_SECTOR = 6
MIN_FAT32_CLUSTERS = 65525
FAT32_MASK = 0x0FFFFFFF

_U32_MASK = 0xFFFFFFFF
_JUMP_OPCODES = (0xEB, 0xE9)


class Fat32Error(ValueError):
    """No usable FAT32 geometry could be found."""


def parse_boot_sector(data: ImageData, offset: int) -> Fat32Geometry:
    """Read FAT32 geometry from the boot sector at ``offset``."""
    if offset < 0 or offset + 512 > len(data):
        raise Fat32Error(f"no boot sector fits at offset {offset}")
    bs = bytes(data[offset:offset + 512])

    if bs[0] not in _JUMP_OPCODES:
        raise Fat32Error("boot sector has no jump instruction")

    bps = struct.unpack_from("<H", bs, 11)[0]
    if bps == 0 or bps > 4096:
        raise Fat32Error(f"implausible bytes per sector: {bps}")
    spc = bs[13]
    if spc == 0:
        raise Fat32Error("sectors per cluster is zero")
    nfats = bs[16]
    if nfats == 0 or nfats > 2:
        raise Fat32Error(f"implausible number of FATs: {nfats}")
    spf = struct.unpack_from("<I", bs, 36)[0]
    if spf == 0:
        raise Fat32Error("sectors per FAT is zero")

    reserved = struct.unpack_from("<H", bs, 14)[0]
    root_cluster = struct.unpack_from("<I", bs, 44)[0]
    total = struct.unpack_from("<I", bs, 32)[0]
    if total == 0:
        total = struct.unpack_from("<H", bs, 19)[0]

    data_start = (reserved + nfats * spf) & _U32_MASK
    data_secs = (total - data_start) & _U32_MASK
    clusters = data_secs // spc
    if clusters < MIN_FAT32_CLUSTERS:
        raise Fat32Error(f"only {clusters} clusters: not a FAT32 volume")

    fat1_offset = offset + reserved * bps
    return Fat32Geometry(
        bytes_per_sector=bps,
        sectors_per_cluster=spc,
        bytes_per_cluster=bps * spc,
        reserved_sectors=reserved,
        num_fats=nfats,
        sectors_per_fat=spf,
        root_cluster=root_cluster,
        total_sectors=total,
        total_clusters=clusters,
        partition_offset=offset,
        fat1_offset=fat1_offset,
        fat2_offset=fat1_offset + spf * bps,
        data_offset=offset + data_start * bps,
    )


def parse_fat32(image: ImageData, partition_offset: int = 0) -> Fat32Geometry:
    """Geometry from the boot sector, its backup at sector 6, or autodetection."""
    try:
        return parse_boot_sector(image, partition_offset)
    except Fat32Error:
        pass

    try:
        geo = parse_boot_sector(image, partition_offset + BACKUP_BOOT_SECTOR * SECTOR_SIZE)
    except Fat32Error:
        pass
    else:
        # Offsets must refer to the real partition, not the backup's location.
        geo.partition_offset = partition_offset
        geo.fat1_offset = partition_offset + geo.reserved_sectors * geo.bytes_per_sector
        geo.fat2_offset = geo.fat1_offset + geo.sectors_per_fat * geo.bytes_per_sector
        data_start = (geo.reserved_sectors + geo.num_fats * geo.sectors_per_fat) & _U32_MASK
        geo.data_offset = partition_offset + data_start * geo.bytes_per_sector
        return geo

    detected = autodetect_geometry(image, partition_offset)
    if detected.valid:
        return detected.geo
    raise Fat32Error("cannot parse FAT32 (tried boot sector, backup, and autodetection)")


def _read_table(image: ImageData, offset: int, count: int) -> list[int] | None:
    if offset <= 0 or offset + count * 4 > len(image):
        return None
    return [entry & FAT32_MASK for entry in struct.unpack_from(f"<{count}I", image, offset)]


def read_fat_tables(image: ImageData, geometry: Fat32Geometry) -> FatTables:
    """Load both FAT copies; a copy outside the image is left as all zeros."""
    count = geometry.total_clusters + 2
    fat = FatTables()
    fat.resize(count)
    fat1 = _read_table(image, geometry.fat1_offset, count)
    if fat1 is not None:
        fat.fat1 = fat1
    fat2 = _read_table(image, geometry.fat2_offset, count)
    if fat2 is not None:
        fat.fat2 = fat2
    return fat