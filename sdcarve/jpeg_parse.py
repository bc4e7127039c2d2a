"""JPEG marker parsing: Huffman tables, MCU layout, DQT and thumbnails."""

from __future__ import annotations

import copy
from functools import lru_cache
from typing import NamedTuple, Optional, Sequence

from sdcarve.types import (
    MAX_BLOCKS_PER_MCU,
    MAX_COMPONENTS,
    MAX_HUFF_TABLES,
    MAX_SCANS,
    HuffTable,
    JpegMode,
    JpegTemplate,
    McuConfig,
    ScanConfig,
)

SOI = b"\xff\xd8"
_SOS_MARKER = b"\xff\xda"
_THUMB_START = b"\xff\xd8\xff"
_EOI = b"\xff\xd9"


class JpegParseError(ValueError):
    """A JPEG header or Huffman table cannot be used."""


class StandardTables(NamedTuple):
    """ITU-T T.81 Annex K tables: index 0 is luminance, 1 is chrominance."""

    dc: tuple[HuffTable, HuffTable]
    ac: tuple[HuffTable, HuffTable]


# Table K.3: DC luminance
_DC_LUMA_BITS = (0, 1, 5, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0, 0, 0)
_DC_LUMA_VALS = tuple(range(12))
# Table K.4: DC chrominance
_DC_CHROMA_BITS = (0, 3, 1, 1, 1, 1, 1, 1, 1, 1, 1, 0, 0, 0, 0, 0)
_DC_CHROMA_VALS = tuple(range(12))
# Table K.5: AC luminance
_AC_LUMA_BITS = (0, 2, 1, 3, 3, 2, 4, 3, 5, 5, 4, 4, 0, 0, 1, 0x7D)
_AC_LUMA_VALS = bytes((
    0x01, 0x02, 0x03, 0x00, 0x04, 0x11, 0x05, 0x12, 0x21, 0x31, 0x41, 0x06, 0x13, 0x51, 0x61,
    0x07, 0x22, 0x71, 0x14, 0x32, 0x81, 0x91, 0xA1, 0x08, 0x23, 0x42, 0xB1, 0xC1, 0x15, 0x52,
    0xD1, 0xF0, 0x24, 0x33, 0x62, 0x72, 0x82, 0x09, 0x0A, 0x16, 0x17, 0x18, 0x19, 0x1A, 0x25,
    0x26, 0x27, 0x28, 0x29, 0x2A, 0x34, 0x35, 0x36, 0x37, 0x38, 0x39, 0x3A, 0x43, 0x44, 0x45,
    0x46, 0x47, 0x48, 0x49, 0x4A, 0x53, 0x54, 0x55, 0x56, 0x57, 0x58, 0x59, 0x5A, 0x63, 0x64,
    0x65, 0x66, 0x67, 0x68, 0x69, 0x6A, 0x73, 0x74, 0x75, 0x76, 0x77, 0x78, 0x79, 0x7A, 0x83,
    0x84, 0x85, 0x86, 0x87, 0x88, 0x89, 0x8A, 0x92, 0x93, 0x94, 0x95, 0x96, 0x97, 0x98, 0x99,
    0x9A, 0xA2, 0xA3, 0xA4, 0xA5, 0xA6, 0xA7, 0xA8, 0xA9, 0xAA, 0xB2, 0xB3, 0xB4, 0xB5, 0xB6,
    0xB7, 0xB8, 0xB9, 0xBA, 0xC2, 0xC3, 0xC4, 0xC5, 0xC6, 0xC7, 0xC8, 0xC9, 0xCA, 0xD2, 0xD3,
    0xD4, 0xD5, 0xD6, 0xD7, 0xD8, 0xD9, 0xDA, 0xE1, 0xE2, 0xE3, 0xE4, 0xE5, 0xE6, 0xE7, 0xE8,
    0xE9, 0xEA, 0xF1, 0xF2, 0xF3, 0xF4, 0xF5, 0xF6, 0xF7, 0xF8, 0xF9, 0xFA,
))
# Table K.6: AC chrominance
_AC_CHROMA_BITS = (0, 2, 1, 2, 4, 4, 3, 4, 7, 5, 4, 4, 0, 1, 2, 0x77)
_AC_CHROMA_VALS = bytes((
    0x00, 0x01, 0x02, 0x03, 0x11, 0x04, 0x05, 0x21, 0x31, 0x06, 0x12, 0x41, 0x51, 0x07, 0x61,
    0x71, 0x13, 0x22, 0x32, 0x81, 0x08, 0x14, 0x42, 0x91, 0xA1, 0xB1, 0xC1, 0x09, 0x23, 0x33,
    0x52, 0xF0, 0x15, 0x62, 0x72, 0xD1, 0x0A, 0x16, 0x24, 0x34, 0xE1, 0x25, 0xF1, 0x17, 0x18,
    0x19, 0x1A, 0x26, 0x27, 0x28, 0x29, 0x2A, 0x35, 0x36, 0x37, 0x38, 0x39, 0x3A, 0x43, 0x44,
    0x45, 0x46, 0x47, 0x48, 0x49, 0x4A, 0x53, 0x54, 0x55, 0x56, 0x57, 0x58, 0x59, 0x5A, 0x63,
    0x64, 0x65, 0x66, 0x67, 0x68, 0x69, 0x6A, 0x73, 0x74, 0x75, 0x76, 0x77, 0x78, 0x79, 0x7A,
    0x82, 0x83, 0x84, 0x85, 0x86, 0x87, 0x88, 0x89, 0x8A, 0x92, 0x93, 0x94, 0x95, 0x96, 0x97,
    0x98, 0x99, 0x9A, 0xA2, 0xA3, 0xA4, 0xA5, 0xA6, 0xA7, 0xA8, 0xA9, 0xAA, 0xB2, 0xB3, 0xB4,
    0xB5, 0xB6, 0xB7, 0xB8, 0xB9, 0xBA, 0xC2, 0xC3, 0xC4, 0xC5, 0xC6, 0xC7, 0xC8, 0xC9, 0xCA,
    0xD2, 0xD3, 0xD4, 0xD5, 0xD6, 0xD7, 0xD8, 0xD9, 0xDA, 0xE2, 0xE3, 0xE4, 0xE5, 0xE6, 0xE7,
    0xE8, 0xE9, 0xEA, 0xF2, 0xF3, 0xF4, 0xF5, 0xF6, 0xF7, 0xF8, 0xF9, 0xFA,
))


def _rd16(data: bytes, offset: int) -> int:
    return (data[offset] << 8) | data[offset + 1]


def build_huff_table(bits: Sequence[int], huffval: Sequence[int]) -> HuffTable:
    """Build decode tables from BITS and HUFFVAL (T.81 Annex C) plus an 8-bit lookahead."""
    bits = list(bits)
    if len(bits) != 16:
        raise ValueError("BITS must hold exactly 16 counts")
    num_symbols = sum(bits)
    if num_symbols > 256:
        raise JpegParseError(f"Huffman table declares {num_symbols} symbols")
    if len(huffval) < num_symbols:
        raise ValueError("HUFFVAL is shorter than the counts in BITS")
    values = list(huffval[:num_symbols])

    # Canonical code assignment: (length, code) for each symbol in order.
    codes: list[tuple[int, int]] = []
    code = 0
    for length, count in enumerate(bits, start=1):
        for _ in range(count):
            codes.append((length, code))
            code += 1
        code <<= 1

    table = HuffTable(num_symbols=num_symbols)
    table.huffval[:num_symbols] = values
    table.maxcode = [-1] * 18
    table.valoffset = [0] * 18

    p = 0
    for length, count in enumerate(bits, start=1):
        if count:
            table.valoffset[length] = p - codes[p][1]
            p += count
            table.maxcode[length] = codes[p - 1][1]
    table.max_code_length = max(
        (length for length, count in enumerate(bits, start=1) if count), default=0
    )

    for (length, code), symbol in zip(codes, values):
        if length > 8:
            break
        shift = 8 - length
        prefix = code << shift
        fill = 1 << shift
        if prefix + fill > 256:
            raise JpegParseError("Huffman code overflows the lookahead table")
        table.look_nbits[prefix:prefix + fill] = [length] * fill
        table.look_sym[prefix:prefix + fill] = [symbol] * fill

    return table


@lru_cache(maxsize=1)
def standard_tables() -> StandardTables:
    """The Annex K Huffman tables used by most cameras; built once and shared."""
    return StandardTables(
        dc=(
            build_huff_table(_DC_LUMA_BITS, _DC_LUMA_VALS),
            build_huff_table(_DC_CHROMA_BITS, _DC_CHROMA_VALS),
        ),
        ac=(
            build_huff_table(_AC_LUMA_BITS, _AC_LUMA_VALS),
            build_huff_table(_AC_CHROMA_BITS, _AC_CHROMA_VALS),
        ),
    )


def _standard_substitute(table_class: int, table_id: int) -> HuffTable:
    std = standard_tables()
    index = table_id if table_id <= 1 else 0
    source = std.dc[index] if table_class == 0 else std.ac[index]
    return copy.deepcopy(source)


def _parse_dht(body: bytes, tmpl: JpegTemplate, dht_fallback: bool) -> None:
    length = len(body)
    pos = 0
    while pos < length:
        if pos + 17 > length:
            break
        tc_th = body[pos]
        pos += 1
        table_class = (tc_th >> 4) & 0x0F
        table_id = tc_th & 0x0F
        if table_id >= MAX_HUFF_TABLES:
            break

        bits = body[pos:pos + 16]
        pos += 16
        num_symbols = sum(bits)
        target = tmpl.dc_tables if table_class == 0 else tmpl.ac_tables

        if pos + num_symbols > length or num_symbols > 256:
            if not dht_fallback:
                raise JpegParseError("DHT segment overflows its length")
            target[table_id] = _standard_substitute(table_class, table_id)
            break

        huffval = body[pos:pos + num_symbols]
        pos += num_symbols
        try:
            target[table_id] = build_huff_table(bits, huffval)
        except JpegParseError:
            if not dht_fallback:
                raise
            target[table_id] = _standard_substitute(table_class, table_id)


def _parse_sof(body: bytes, tmpl: JpegTemplate, cfg: McuConfig) -> None:
    if len(body) < 6:
        raise JpegParseError("SOF segment too short")
    cfg.image_height = _rd16(body, 1)
    cfg.image_width = _rd16(body, 3)
    cfg.num_components = body[5]
    tmpl.height = cfg.image_height
    tmpl.width = cfg.image_width

    if not 1 <= cfg.num_components <= MAX_COMPONENTS:
        raise JpegParseError(f"SOF declares {cfg.num_components} components")
    if len(body) < 6 + cfg.num_components * 3:
        raise JpegParseError("SOF segment too short for its components")

    specs = [body[6 + i * 3 + 1] for i in range(cfg.num_components)]
    h_samp = [(s >> 4) & 0x0F for s in specs]
    v_samp = [s & 0x0F for s in specs]
    hmax = max(1, *h_samp)
    vmax = max(1, *v_samp)
    tmpl.subsampling = ((hmax << 4) | vmax) & 0xFF

    mcu_w_px = 8 * hmax
    mcu_h_px = 8 * vmax
    cfg.mcu_width = (cfg.image_width + mcu_w_px - 1) // mcu_w_px
    cfg.mcu_height = (cfg.image_height + mcu_h_px - 1) // mcu_h_px
    cfg.total_mcus = cfg.mcu_width * cfg.mcu_height

    cfg.blocks_per_mcu = 0
    for comp, (h, v) in enumerate(zip(h_samp, v_samp)):
        for _ in range(h * v):
            if cfg.blocks_per_mcu >= MAX_BLOCKS_PER_MCU:
                raise JpegParseError("too many blocks per MCU")
            cfg.block_comp[cfg.blocks_per_mcu] = comp
            cfg.blocks_per_mcu += 1


def _parse_sos(body: bytes, cfg: McuConfig) -> None:
    if len(body) < 1:
        raise JpegParseError("SOS segment is empty")
    ns = body[0]
    if len(body) < 1 + ns * 2 + 3:
        raise JpegParseError("SOS segment too short")

    block_idx = 0
    for j in range(ns):
        td_ta = body[1 + j * 2 + 1]
        td = (td_ta >> 4) & 0x0F
        ta = td_ta & 0x0F
        if td >= MAX_HUFF_TABLES or ta >= MAX_HUFF_TABLES:
            raise JpegParseError("SOS selects a Huffman table that cannot exist")

        comp_blocks = 0
        for b in range(block_idx, cfg.blocks_per_mcu):
            if cfg.block_comp[b] == j:
                comp_blocks += 1
            elif comp_blocks > 0:
                break

        for _ in range(comp_blocks):
            if block_idx >= cfg.blocks_per_mcu:
                break
            cfg.block_dc_tbl[block_idx] = td
            cfg.block_ac_tbl[block_idx] = ta
            block_idx += 1

    ss_offset = 1 + ns * 2
    ss = body[ss_offset]
    se = body[ss_offset + 1]
    ah = (body[ss_offset + 2] >> 4) & 0x0F
    al = body[ss_offset + 2] & 0x0F

    if cfg.jpeg_mode is JpegMode.UNKNOWN:
        if ss == 0 and se == 63 and ah == 0 and al == 0:
            cfg.jpeg_mode = JpegMode.BASELINE
        else:
            cfg.jpeg_mode = JpegMode.PROGRESSIVE

    if len(cfg.scans) < MAX_SCANS:
        scan = ScanConfig(num_components=ns, ss=ss, se=se, ah=ah, al=al)
        for j in range(min(ns, MAX_COMPONENTS)):
            scan.comp_index[j] = j
            scan.dc_tbl[j] = cfg.block_dc_tbl[j]
            scan.ac_tbl[j] = cfg.block_ac_tbl[j]
        cfg.scans.append(scan)


def _parse_dqt(body: bytes, tmpl: JpegTemplate) -> None:
    pos = 0
    while pos < len(body):
        pq_tq = body[pos]
        pos += 1
        precision = (pq_tq >> 4) & 0x0F
        table_id = pq_tq & 0x0F
        table_size = 64 if precision == 0 else 128
        if pos + table_size > len(body):
            return
        if table_id == 0:
            tmpl.dqt_luma = bytes(body[pos:pos + 64])
        elif table_id == 1:
            tmpl.dqt_chroma = bytes(body[pos:pos + 64])
        pos += table_size


def parse_jpeg_header(data: bytes, dht_fallback: bool = True) -> JpegTemplate:
    """Parse SOI through the first SOS into a template.

    With ``dht_fallback`` a damaged DHT table is replaced by the matching
    Annex K table instead of failing the parse.
    """
    data = bytes(data)
    if len(data) < 2 or not data.startswith(SOI):
        raise JpegParseError("data does not start with SOI")

    tmpl = JpegTemplate()
    cfg = tmpl.mcu_config
    length = len(data)
    pos = 2
    got_sof = False

    while pos + 1 < length:
        if data[pos] != 0xFF:
            pos += 1
            continue
        while pos + 1 < length and data[pos + 1] == 0xFF:
            pos += 1
        if pos + 1 >= length:
            break

        marker = data[pos + 1]
        pos += 2
        if marker == 0xD8:
            continue
        if marker == 0xD9:
            break
        if pos + 2 > length:
            break
        seg_len = _rd16(data, pos)
        if pos + seg_len > length:
            break
        body = data[pos + 2:pos + seg_len]

        if marker in (0xC0, 0xC2):
            _parse_sof(body, tmpl, cfg)
            cfg.jpeg_mode = JpegMode.BASELINE if marker == 0xC0 else JpegMode.PROGRESSIVE
            got_sof = True
        elif marker == 0xC4:
            _parse_dht(body, tmpl, dht_fallback)
        elif marker == 0xDB:
            _parse_dqt(body, tmpl)
        elif marker == 0xDD:
            if len(body) >= 2:
                cfg.restart_interval = _rd16(body, 0)
                tmpl.restart_interval = cfg.restart_interval
        elif marker == 0xDA:
            if not got_sof:
                raise JpegParseError("SOS appears before any SOF")
            _parse_sos(body, cfg)
            tmpl.header_bytes = data[:pos + seg_len]
            return tmpl

        pos += seg_len

    if not got_sof:
        raise JpegParseError("no SOF marker found")
    raise JpegParseError("no SOS marker found")


def extract_thumbnail(data: bytes) -> Optional[tuple[int, int]]:
    """Locate an embedded JPEG in the APP1 segment: (offset, size), or None."""
    data = bytes(data)
    length = len(data)
    if length < 4 or not data.startswith(SOI):
        return None

    pos = 2
    while pos + 3 < length:
        if data[pos] != 0xFF:
            pos += 1
            continue
        while pos + 1 < length and data[pos + 1] == 0xFF:
            pos += 1
        if pos + 1 >= length:
            break

        marker = data[pos + 1]
        pos += 2
        if marker in (0xD9, 0xDA):
            break
        if pos + 2 > length:
            break
        seg_len = _rd16(data, pos)
        if pos + seg_len > length:
            break

        if marker == 0xE1:
            segment = data[pos + 2:pos + seg_len]
            start = segment.find(_THUMB_START)
            if start >= 0:
                offset = pos + 2 + start
                end = segment.find(_EOI, start + 3)
                if end >= 0:
                    return offset, (pos + 2 + end + 2) - offset
                return offset, (pos + seg_len) - offset

        pos += seg_len
    return None


def dqt_distance(a: Sequence[int], b: Sequence[int]) -> int:
    """Sum of absolute differences of two 64-entry quantisation tables."""
    if len(a) < 64 or len(b) < 64:
        raise ValueError("quantisation tables need 64 entries")
    return sum(abs(x - y) for x, y in zip(a[:64], b[:64]))


def inject_dri(header_bytes: bytes, restart_interval: int) -> bytes:
    """Insert a DRI segment in front of the SOS marker of a header."""
    if not 0 <= restart_interval <= 0xFFFF:
        raise ValueError("restart interval must fit in 16 bits")
    header = bytes(header_bytes)
    sos_pos = header.find(_SOS_MARKER)
    if sos_pos <= 0:
        return header
    dri = b"\xff\xdd\x00\x04" + restart_interval.to_bytes(2, "big")
    return header[:sos_pos] + dri + header[sos_pos:]