import pytest

from sdcarve.fat_merge import (
    FAT32_BAD,
    FAT32_EOF_MIN,
    bitflip_candidates,
    build_refcount,
    classify_entry,
    merge_fats,
)
from sdcarve.types import FatStatus, FatTables

TOTAL = 10
CORRUPT_VALUE = 0x0AAAAAAA


def make_fat(pairs):
    fat = FatTables()
    fat.resize(len(pairs))
    for index, (e1, e2) in enumerate(pairs):
        fat.fat1[index] = e1
        fat.fat2[index] = e2
    return fat


@pytest.mark.parametrize(
    "entry, expected",
    [
        (0, FatStatus.FREE),
        (FAT32_EOF_MIN, FatStatus.EOF),
        (0x0FFFFFFF, FatStatus.EOF),
        (FAT32_BAD, FatStatus.BAD),
        (2, FatStatus.VALID),
        (TOTAL + 1, FatStatus.VALID),
        (TOTAL + 2, FatStatus.CORRUPT),
        (1, FatStatus.CORRUPT),
    ],
)
def test_classify_entry(entry, expected):
    assert classify_entry(entry, TOTAL) is expected


@pytest.mark.parametrize(
    "e1, e2, merged, status",
    [
        (5, 5, 5, FatStatus.VALID),
        (0, 0, 0, FatStatus.FREE),
        (5, CORRUPT_VALUE, 5, FatStatus.VALID),
        (CORRUPT_VALUE, FAT32_EOF_MIN, FAT32_EOF_MIN, FatStatus.EOF),
        (0, 7, 7, FatStatus.VALID),
        (7, 0, 7, FatStatus.VALID),
        (5, 6, 5, FatStatus.VALID),
        (FAT32_BAD, 5, FAT32_BAD, FatStatus.CORRUPT),
        (CORRUPT_VALUE, CORRUPT_VALUE + 1, CORRUPT_VALUE, FatStatus.CORRUPT),
    ],
)
def test_merge_rules(e1, e2, merged, status):
    fat = make_fat([(0, 0), (0, 0), (e1, e2)])
    merge_fats(fat, TOTAL)
    assert fat.merged[2] == merged
    assert fat.status[2] is status


def test_merge_keeps_lengths():
    fat = make_fat([(i, i) for i in range(6)])
    merge_fats(fat, TOTAL)
    assert len(fat.merged) == fat.count == len(fat.status)
    assert fat.merged == fat.fat1


def test_merge_rejects_mismatched_copies():
    fat = make_fat([(0, 0), (0, 0)])
    fat.fat2.append(0)
    with pytest.raises(ValueError):
        merge_fats(fat, TOTAL)


def test_refcount_saturates():
    fat = make_fat([(0, 0), (0, 0)] + [(3, 3)] * 300)
    merge_fats(fat, 400)
    refcount = build_refcount(fat, 400)
    assert refcount[3] == 255


def test_bitflip_candidates_are_single_flips_in_range():
    entry = 0x1234
    max_cluster = 0x2000
    result = bitflip_candidates(entry, max_cluster, 28)
    assert result
    for candidate in result:
        diff = candidate ^ entry
        assert diff & (diff - 1) == 0
        assert 2 <= candidate <= max_cluster + 1
    assert result == sorted(result, key=lambda c: (c ^ entry).bit_length())


def test_bitflip_small_example():
    assert bitflip_candidates(2, TOTAL, 8) == [3, 6, 10]


def test_bitflip_respects_max_out():
    full = bitflip_candidates(0x1234, 0x2000, 28)
    assert bitflip_candidates(0x1234, 0x2000, 2) == full[:2]
    assert bitflip_candidates(0x1234, 0x2000, 0) == []