import struct

import pytest

from sdcarve.partition import (
    MBR_SIGNATURE,
    PartitionError,
    detect_partitions,
    partition_offset,
)
from sdcarve.types import SECTOR_SIZE


def make_mbr(entries, size=1024):
    image = bytearray(size)
    for index, (status, ptype, start, count) in enumerate(entries):
        struct.pack_into("<B3xB3xII", image, 0x1BE + 16 * index, status, ptype, start, count)
    struct.pack_into("<H", image, 510, MBR_SIGNATURE)
    return bytes(image)


def test_detect_reads_all_four_entries():
    image = make_mbr([(0x80, 0x0C, 2048, 100000), (0, 0x83, 200000, 5000)])
    entries = detect_partitions(image)
    assert len(entries) == 4
    assert entries[0].status == 0x80
    assert entries[0].type == 0x0C
    assert entries[0].start_lba == 2048
    assert entries[0].size_sectors == 100000
    assert entries[1].type == 0x83
    assert entries[1].start_lba == 200000
    assert entries[2].type == 0 and entries[3].type == 0


def test_detect_without_signature_is_empty():
    assert detect_partitions(bytes(1024)) == []


def test_detect_short_image_is_empty():
    assert detect_partitions(b"\x55\xaa" * 10) == []


def test_signature_bytes_are_little_endian():
    image = bytearray(512)
    image[510] = 0xAA
    image[511] = 0x55
    assert detect_partitions(bytes(image)) == []


def test_auto_prefers_fat32_partition():
    image = make_mbr([(0, 0x83, 63, 10), (0, 0x0B, 4096, 10)])
    assert partition_offset(image) == 4096 * SECTOR_SIZE


def test_auto_falls_back_to_first_non_empty():
    image = make_mbr([(0, 0, 0, 0), (0, 0x83, 777, 10), (0, 0x07, 9999, 10)])
    assert partition_offset(image) == 777 * SECTOR_SIZE


def test_empty_table_gives_zero():
    image = make_mbr([])
    assert partition_offset(image) == 0


def test_no_mbr_is_bare_partition_even_with_number():
    assert partition_offset(bytes(2048), 3) == 0


def test_explicit_partition_number():
    image = make_mbr([(0, 0x0C, 2048, 10), (0, 0x83, 8192, 10)])
    assert partition_offset(image, 2) == 8192 * SECTOR_SIZE
    assert partition_offset(image, 1) == 2048 * SECTOR_SIZE


def test_explicit_empty_partition_raises():
    image = make_mbr([(0, 0x0C, 2048, 10)])
    with pytest.raises(PartitionError):
        partition_offset(image, 2)


def test_partition_number_out_of_range_raises():
    image = make_mbr([(0, 0x0C, 2048, 10)])
    with pytest.raises(PartitionError):
        partition_offset(image, 5)