import struct

import pytest

from sdcarve.autodetect import (
    CLUSTER_SIZES,
    AutodetectResult,
    autodetect_geometry,
    is_valid_dir_entry,
)

FAT1 = 16384
FAT2 = 20480
FAT_SIZE = FAT2 - FAT1
DATA_CLUSTERS = FAT_SIZE // 4 - 2
SMALL_CLUSTER = 512


def fat_image():
    data_offset = FAT2 + FAT_SIZE
    image = bytearray(data_offset + DATA_CLUSTERS * SMALL_CLUSTER)
    for base in (FAT1, FAT2):
        struct.pack_into("<IIIII", image, base, 0x0FFFFFF8, 0x0FFFFFFF, 0x0FFFFFFF, 4, 0x0FFFFFFF)
    return bytes(image)


SPACING = 32768
FIRST_HEADER = 139264
HEADER_COUNT = 5


def aligned_header_image():
    image = bytearray(409600)
    for k in range(HEADER_COUNT):
        pos = FIRST_HEADER + k * SPACING
        image[pos:pos + 4] = b"\xff\xd8\xff\xe0"
    return bytes(image)


def entry(first, attr):
    raw = bytearray(32)
    raw[0] = first
    raw[11] = attr
    return bytes(raw)


@pytest.mark.parametrize(
    "raw, expected",
    [
        (bytes(32), True),
        (entry(0xE5, 0x20), True),
        (entry(0x41, 0x0F), True),
        (entry(0x80, 0x0F), False),
        (entry(0x10, 0x20), False),
        (entry(0x7F, 0x20), False),
        (b"FILE    JPG" + bytes([0x20]) + bytes(20), True),
        (entry(ord("A"), 0x40), False),
    ],
)
def test_is_valid_dir_entry(raw, expected):
    assert is_valid_dir_entry(raw) is expected


def test_is_valid_dir_entry_rejects_short_input():
    with pytest.raises(ValueError):
        is_valid_dir_entry(b"\x00" * 5)


def test_detects_geometry_from_fat_tables():
    image = fat_image()
    result = autodetect_geometry(image, 0)
    geo = result.geo
    assert result.valid
    assert 0.3 <= result.confidence <= 1.0
    assert geo.fat1_offset == FAT1
    assert geo.fat2_offset == FAT2
    assert geo.num_fats == 2
    assert geo.sectors_per_fat * 512 == FAT_SIZE
    assert geo.data_offset == geo.fat1_offset + geo.num_fats * geo.sectors_per_fat * 512
    assert geo.reserved_sectors * 512 == FAT1
    assert geo.bytes_per_cluster == SMALL_CLUSTER
    assert geo.total_clusters == DATA_CLUSTERS
    assert geo.root_cluster == 2
    assert geo.total_sectors * 512 == len(image)


def test_detects_cluster_size_from_header_alignment():
    image = aligned_header_image()
    result = autodetect_geometry(image, 0)
    geo = result.geo
    assert result.valid
    assert geo.num_fats == 0
    assert geo.fat1_offset == 0 and geo.fat2_offset == 0
    assert geo.bytes_per_cluster == SPACING
    assert geo.bytes_per_cluster in CLUSTER_SIZES
    assert geo.sectors_per_cluster * 512 == geo.bytes_per_cluster
    for k in range(HEADER_COUNT):
        assert (FIRST_HEADER + k * SPACING - geo.data_offset) % geo.bytes_per_cluster == 0
    assert geo.reserved_sectors * 512 == geo.data_offset
    assert geo.total_clusters * geo.bytes_per_cluster <= len(image) - geo.data_offset
    assert (geo.total_clusters + 1) * geo.bytes_per_cluster > len(image) - geo.data_offset


def test_blank_image_is_not_detected():
    result = autodetect_geometry(bytes(8192), 0)
    assert isinstance(result, AutodetectResult)
    assert result.valid is False
    assert result.confidence == 0.0


def test_garbage_image_is_not_detected():
    result = autodetect_geometry(b"\x01" * 8192, 0)
    assert result.valid is False
    assert result.geo.bytes_per_cluster == 0


def test_partition_offset_is_respected():
    inner = fat_image()
    offset = 4096
    result = autodetect_geometry(bytes(offset) + inner, offset)
    assert result.valid
    assert result.geo.partition_offset == offset
    assert result.geo.fat1_offset == offset + FAT1
    assert result.geo.reserved_sectors * 512 == FAT1