import struct

import pytest

from sdcarve.fat32 import Fat32Error, parse_boot_sector, parse_fat32, read_fat_tables
from sdcarve.types import Fat32Geometry

BPS = 512
SPC = 8
RESERVED = 32
NFATS = 2
SPF = 1024
TOTAL = 700000


def boot_sector(bps=BPS, spc=SPC, reserved=RESERVED, nfats=NFATS, spf=SPF,
                total=TOTAL, jump=0xEB):
    bs = bytearray(512)
    bs[0] = jump
    struct.pack_into("<H", bs, 11, bps)
    bs[13] = spc
    struct.pack_into("<H", bs, 14, reserved)
    bs[16] = nfats
    struct.pack_into("<I", bs, 32, total)
    struct.pack_into("<I", bs, 36, spf)
    struct.pack_into("<I", bs, 44, 2)
    bs[510] = 0x55
    bs[511] = 0xAA
    return bytes(bs)


def test_parse_boot_sector_fields():
    geo = parse_boot_sector(boot_sector(), 0)
    assert geo.bytes_per_sector == BPS
    assert geo.sectors_per_cluster == SPC
    assert geo.bytes_per_cluster == BPS * SPC
    assert geo.num_fats == NFATS
    assert geo.sectors_per_fat == SPF
    assert geo.root_cluster == 2
    assert geo.total_sectors == TOTAL
    assert geo.fat1_offset == RESERVED * BPS
    assert geo.fat2_offset == geo.fat1_offset + SPF * BPS
    assert geo.data_offset == geo.fat2_offset + SPF * BPS
    assert geo.total_clusters >= 65525


def test_parse_boot_sector_at_offset():
    image = bytes(2048) + boot_sector()
    geo = parse_boot_sector(image, 2048)
    assert geo.partition_offset == 2048
    assert geo.fat1_offset == 2048 + RESERVED * BPS


@pytest.mark.parametrize(
    "kwargs",
    [
        {"jump": 0x00},
        {"bps": 0},
        {"bps": 8192},
        {"spc": 0},
        {"nfats": 0},
        {"nfats": 3},
        {"spf": 0},
        {"total": 10000},
    ],
)
def test_parse_boot_sector_rejects(kwargs):
    with pytest.raises(Fat32Error):
        parse_boot_sector(boot_sector(**kwargs), 0)


def test_parse_boot_sector_out_of_range():
    with pytest.raises(Fat32Error):
        parse_boot_sector(boot_sector(), 100)


def test_parse_fat32_primary():
    geo = parse_fat32(boot_sector(), 0)
    assert geo == parse_boot_sector(boot_sector(), 0)


def test_parse_fat32_backup_sector_relocated():
    part = 1024
    image = bytes(part) + bytes(6 * 512) + boot_sector()
    geo = parse_fat32(image, part)
    assert geo.partition_offset == part
    assert geo.fat1_offset == part + RESERVED * BPS
    assert geo.fat2_offset == geo.fat1_offset + SPF * BPS
    assert geo.data_offset == part + (RESERVED + NFATS * SPF) * BPS


def test_parse_fat32_fails_on_blank_image():
    with pytest.raises(Fat32Error):
        parse_fat32(bytes(4096), 0)


def test_read_fat_tables_masks_entries():
    image = bytearray(2048)
    entries = [0x0FFFFFF8, 0xFFFFFFFF, 3, 0xF0000004, 0x0FFFFFFF, 0]
    struct.pack_into("<6I", image, 512, *entries)
    struct.pack_into("<6I", image, 1024, *reversed(entries))
    geo = Fat32Geometry(total_clusters=4, fat1_offset=512, fat2_offset=1024)
    fat = read_fat_tables(bytes(image), geo)
    assert fat.fat1 == [0x0FFFFFF8, 0x0FFFFFFF, 3, 4, 0x0FFFFFFF, 0]
    assert fat.fat2 == list(reversed(fat.fat1))
    assert fat.merged == [0] * 6
    assert fat.count == 6


def test_read_fat_tables_missing_copies_stay_zero():
    image = bytearray(1024)
    struct.pack_into("<6I", image, 512, *range(1, 7))
    geo = Fat32Geometry(total_clusters=4, fat1_offset=0, fat2_offset=1000)
    fat = read_fat_tables(bytes(image), geo)
    assert fat.fat1 == [0] * 6
    assert fat.fat2 == [0] * 6