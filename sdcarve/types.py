"""Core data structures shared by the recovery pipeline."""

from __future__ import annotations

import mmap
import os
from dataclasses import dataclass, field, fields
from enum import IntEnum, IntFlag
from typing import Optional, Union

VERSION = "0.1.0"

SECTOR_SIZE = 512
MAX_COMPONENTS = 4
MAX_HUFF_TABLES = 4
MAX_BLOCKS_PER_MCU = 10
MAX_TEMPLATES = 32
MAX_SCANS = 32


class FatStatus(IntEnum):
    """Classification of a FAT32 entry."""

    FREE = 0
    VALID = 1
    EOF = 2
    BAD = 3
    CORRUPT = 4
    RESERVED = 5


class ContentType(IntEnum):
    """What a cluster appears to hold."""

    UNKNOWN = 0
    EMPTY = 1
    JPEG_HEADER = 2
    JPEG_SCAN = 3
    NON_JPEG = 4
    BAD_SECTOR = 5
    MP4_HEADER = 6


class ClusterFlag(IntFlag):
    """Markers and properties found while scanning a cluster."""

    NONE = 0
    HAS_SOI = 0x01
    HAS_EOI = 0x02
    HAS_SOS = 0x04
    HAS_DQT = 0x08
    HAS_RST = 0x10
    IS_ZERO = 0x20


class JpegMode(IntEnum):
    """JPEG coding process."""

    BASELINE = 0
    PROGRESSIVE = 1
    UNKNOWN = 2


@dataclass
class PartitionEntry:
    """One primary MBR partition table entry."""

    status: int = 0
    type: int = 0
    start_lba: int = 0
    size_sectors: int = 0


@dataclass
class Fat32Geometry:
    """Layout of a FAT32 volume; all offsets are absolute byte offsets."""

    bytes_per_sector: int = 0
    sectors_per_cluster: int = 0
    bytes_per_cluster: int = 0
    reserved_sectors: int = 0
    num_fats: int = 0
    sectors_per_fat: int = 0
    root_cluster: int = 0
    total_sectors: int = 0
    total_clusters: int = 0
    partition_offset: int = 0
    fat1_offset: int = 0
    fat2_offset: int = 0
    data_offset: int = 0


@dataclass
class FatTables:
    """Both raw FAT copies plus the merged view and per-entry status."""

    fat1: list[int] = field(default_factory=list)
    fat2: list[int] = field(default_factory=list)
    merged: list[int] = field(default_factory=list)
    status: list[FatStatus] = field(default_factory=list)

    def resize(self, count: int) -> None:
        """Grow or shrink all tables to ``count`` entries, keeping existing ones."""
        if count < 0:
            raise ValueError("count must not be negative")

        def fit(values: list, filler) -> None:
            del values[count:]
            values.extend([filler] * (count - len(values)))

        fit(self.fat1, 0)
        fit(self.fat2, 0)
        fit(self.merged, 0)
        fit(self.status, FatStatus.FREE)

    @property
    def count(self) -> int:
        return len(self.fat1)


@dataclass
class ClusterFeature:
    """Content features computed for one data cluster."""

    entropy: float = 0.0
    ff00_count: int = 0
    flags: ClusterFlag = ClusterFlag.NONE
    content_type: ContentType = ContentType.UNKNOWN


@dataclass
class HuffTable:
    """Huffman decode table with an 8-bit lookahead."""

    maxcode: list[int] = field(default_factory=lambda: [0] * 18)
    valoffset: list[int] = field(default_factory=lambda: [0] * 18)
    huffval: list[int] = field(default_factory=lambda: [0] * 256)
    look_nbits: list[int] = field(default_factory=lambda: [0] * 256)
    look_sym: list[int] = field(default_factory=lambda: [0] * 256)
    max_code_length: int = 0
    num_symbols: int = 0


@dataclass
class ScanConfig:
    """Parameters of one scan (one SOS marker)."""

    num_components: int = 0
    comp_index: list[int] = field(default_factory=lambda: [0] * MAX_COMPONENTS)
    dc_tbl: list[int] = field(default_factory=lambda: [0] * MAX_COMPONENTS)
    ac_tbl: list[int] = field(default_factory=lambda: [0] * MAX_COMPONENTS)
    ss: int = 0
    se: int = 63
    ah: int = 0
    al: int = 0


@dataclass
class McuConfig:
    """MCU layout and table selection derived from SOF/SOS/DRI."""

    blocks_per_mcu: int = 0
    block_comp: list[int] = field(default_factory=lambda: [0] * MAX_BLOCKS_PER_MCU)
    block_dc_tbl: list[int] = field(default_factory=lambda: [0] * MAX_BLOCKS_PER_MCU)
    block_ac_tbl: list[int] = field(default_factory=lambda: [0] * MAX_BLOCKS_PER_MCU)
    total_mcus: int = 0
    mcu_width: int = 0
    mcu_height: int = 0
    restart_interval: int = 0
    image_width: int = 0
    image_height: int = 0
    num_components: int = 0
    jpeg_mode: JpegMode = JpegMode.UNKNOWN
    scans: list[ScanConfig] = field(default_factory=list)

    @property
    def num_scans(self) -> int:
        return len(self.scans)


@dataclass
class JpegTemplate:
    """Parsed JPEG header usable to validate or rebuild entropy data."""

    header_bytes: bytes = b""
    dqt_luma: bytes = bytes(64)
    dqt_chroma: bytes = bytes(64)
    width: int = 0
    height: int = 0
    subsampling: int = 0
    restart_interval: int = 0
    camera: str = ""
    dc_tables: list[HuffTable] = field(
        default_factory=lambda: [HuffTable() for _ in range(MAX_HUFF_TABLES)]
    )
    ac_tables: list[HuffTable] = field(
        default_factory=lambda: [HuffTable() for _ in range(MAX_HUFF_TABLES)]
    )
    mcu_config: McuConfig = field(default_factory=McuConfig)


@dataclass
class FeatureFlags:
    """Switches for the individual recovery heuristics; all on by default."""

    # Chain building
    fast_path: bool = True
    chain_repair: bool = True
    sequential_scan: bool = True
    seam_detection: bool = True
    chain_adequacy: bool = True
    size_estimation: bool = True
    oversize_terminate: bool = True
    # Candidate filtering
    boundary_check: bool = True
    mcu_rate_filter: bool = True
    mcu_progress_score: bool = True
    ff00_prefilter: bool = True
    entropy_filter: bool = True
    dc_bounds: bool = True
    rst_expectancy: bool = True
    # Header repair
    dht_fallback: bool = True
    header_graft: bool = True
    annex_k_retry: bool = True
    # Validation
    lenient_ff: bool = True
    tolerant_validate: bool = True
    rst_recovery: bool = True
    # Post-processing
    thumbnail_validate: bool = True
    template_tables: bool = True
    # Seed discovery
    mid_cluster_soi: bool = True

    @classmethod
    def names(cls) -> list[str]:
        """Command-line style names of every feature, in declaration order."""
        return [f.name.replace("_", "-") for f in fields(cls)]

    def _set_all(self, value: bool) -> None:
        for f in fields(self):
            setattr(self, f.name, value)

    def enable_all(self) -> None:
        self._set_all(True)

    def disable_all(self) -> None:
        self._set_all(False)

    def set_flag(self, name: str, value: bool) -> None:
        """Set a feature by its hyphenated name; unknown names raise KeyError."""
        attr = name.replace("-", "_")
        if "_" in name or attr not in {f.name for f in fields(self)}:
            raise KeyError(f"Unknown feature: {name}")
        setattr(self, attr, bool(value))


ImageData = Union[bytes, bytearray, memoryview, mmap.mmap]


@dataclass
class DiskImage:
    """A raw disk image, an optional second read of it, and its geometry."""

    data: ImageData = b""
    geo: Fat32Geometry = field(default_factory=Fat32Geometry)
    secondary: Optional[ImageData] = None

    @classmethod
    def open(cls, path: Union[str, os.PathLike]) -> "DiskImage":
        """Map an image file read-only; OSError is raised if it cannot be opened."""
        with open(path, "rb") as fh:
            size = os.fstat(fh.fileno()).st_size
            if size == 0:
                return cls(data=b"")
            mapped = mmap.mmap(fh.fileno(), 0, access=mmap.ACCESS_READ)
        return cls(data=mapped)

    def close(self) -> None:
        for buf in (self.data, self.secondary):
            if isinstance(buf, mmap.mmap) and not buf.closed:
                buf.close()

    def __enter__(self) -> "DiskImage":
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    @property
    def size(self) -> int:
        return len(self.data)

    def cluster_data(self, cluster: int) -> Optional[bytes]:
        """Bytes of a data cluster (numbered from 2), or None when unreadable."""
        bpc = self.geo.bytes_per_cluster
        if bpc <= 0 or cluster < 2:
            return None
        start = self.geo.data_offset + (cluster - 2) * bpc
        end = start + bpc
        if end > len(self.data):
            return None
        return bytes(self.data[start:end])