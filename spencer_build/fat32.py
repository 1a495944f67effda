"""FAT32 volume formatting and file access.

This module implements just enough of FAT32 to build and inspect boot
images, operating on any seekable binary stream holding a bare volume
(no partition table):

- Formatting: boot sector with the FAT32 BPB, FSInfo, backup boot sector
  and FSInfo at sectors 6/7, two FAT copies, and an empty root cluster.
  Cluster size follows the Microsoft default table for FAT32.
- Mounting: BPB validation, FAT cached in memory, written back to every
  FAT copy together with FSInfo on unmount.
- Directories: VFAT long names with unique 8.3 aliases, case-insensitive
  lookup, directories growing by chaining clusters.
- Files: streamed writes, whole-file reads, removal freeing the chain.

Lookups raise the builtin OSError subclasses (FileNotFoundError,
FileExistsError, NotADirectoryError, IsADirectoryError) like pathlib does;
structural problems raise FormatError and a full volume raises WriteError.
"""

from __future__ import annotations

import logging
import struct
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import BinaryIO

from spencer_build.errors import FormatError, WriteError

logger = logging.getLogger(__name__)

SECTOR_SIZE = 512
RESERVED_SECTORS = 32
NUM_FATS = 2
ROOT_CLUSTER = 2
FSINFO_SECTOR = 1
BACKUP_BOOT_SECTOR = 6
MEDIA_DESCRIPTOR = 0xF8

# FAT32 is defined by cluster count alone
MIN_CLUSTERS = 65525
MAX_CLUSTERS = 0x0FFFFFF5 - 2

FAT_ENTRY_MASK = 0x0FFFFFFF
FREE_CLUSTER = 0x00000000
BAD_CLUSTER = 0x0FFFFFF7
END_OF_CHAIN = 0x0FFFFFFF

ATTR_READ_ONLY = 0x01
ATTR_HIDDEN = 0x02
ATTR_SYSTEM = 0x04
ATTR_VOLUME_ID = 0x08
ATTR_DIRECTORY = 0x10
ATTR_ARCHIVE = 0x20
ATTR_LONG_NAME = ATTR_READ_ONLY | ATTR_HIDDEN | ATTR_SYSTEM | ATTR_VOLUME_ID

DIR_ENTRY_SIZE = 32
DELETED_MARKER = 0xE5
LAST_LONG_ENTRY = 0x40
LFN_CHARS_PER_ENTRY = 13
MAX_LONG_NAME = 255

FSINFO_LEAD_SIG = 0x41615252
FSINFO_STRUCT_SIG = 0x61417272
FSINFO_TRAIL_SIG = 0xAA550000
FSINFO_UNKNOWN = 0xFFFFFFFF

# Microsoft default cluster sizes for FAT32 with 512-byte sectors:
# (max total sectors, sectors per cluster)
CLUSTER_SIZE_TABLE = (
    (532480, 1),  # up to 260 MiB
    (16777216, 8),  # up to 8 GiB
    (33554432, 16),  # up to 16 GiB
    (67108864, 32),  # up to 32 GiB
    (0xFFFFFFFF, 64),
)
MIN_VOLUME_SECTORS = 66600

# Short entry: name, attr, NTRes, CrtTimeTenth, CrtTime, CrtDate, LstAccDate,
# FstClusHI, WrtTime, WrtDate, FstClusLO, FileSize
_SHORT_ENTRY = struct.Struct("<11sBBBHHHHHHHI")

_SHORT_NAME_SPECIALS = set("!#$%&'()-@^_`{}~")
_LONG_NAME_FORBIDDEN = set('"*/:<>?\\|')
_ZERO_CHUNK = bytes(1024 * 1024)


@dataclass
class DirEntry:
    """A directory entry as found on disk.

    Attributes:
        name: Long name if present, otherwise the short name (``BASE.EXT``).
        short_name: Raw 11-byte 8.3 name.
        attributes: Attribute byte.
        first_cluster: First cluster of the data chain (0 for empty files).
        size: File size in bytes (0 for directories).
        slots: Slot indices occupied in the parent (LFN entries then short).
    """

    name: str
    short_name: bytes
    attributes: int
    first_cluster: int
    size: int
    slots: list[int] = field(default_factory=list)

    @property
    def is_dir(self) -> bool:
        return bool(self.attributes & ATTR_DIRECTORY)


def sectors_per_cluster_for(total_sectors: int) -> int:
    """Pick the default cluster size for a FAT32 volume.

    Raises:
        FormatError: Volume is too small for FAT32.
    """
    if total_sectors < MIN_VOLUME_SECTORS:
        raise FormatError(
            f"volume too small for FAT32: {total_sectors} sectors "
            f"(minimum {MIN_VOLUME_SECTORS})"
        )
    for max_sectors, sectors_per_cluster in CLUSTER_SIZE_TABLE:
        if total_sectors <= max_sectors:
            return sectors_per_cluster
    raise FormatError(f"volume too large for FAT32: {total_sectors} sectors")


def fat_size_sectors(total_sectors: int, sectors_per_cluster: int) -> int:
    """Sectors per FAT, using Microsoft's FAT32 sizing formula."""
    tmp1 = total_sectors - RESERVED_SECTORS
    tmp2 = ((256 * sectors_per_cluster) + NUM_FATS) // 2
    return (tmp1 + tmp2 - 1) // tmp2


def encode_fat_datetime(moment: datetime) -> tuple[int, int]:
    """Encode a datetime as FAT (date, time) words."""
    year = min(max(moment.year, 1980), 2107)
    fat_date = ((year - 1980) << 9) | (moment.month << 5) | moment.day
    fat_time = (moment.hour << 11) | (moment.minute << 5) | (moment.second // 2)
    return fat_date, fat_time


def lfn_checksum(short_name: bytes) -> int:
    """Checksum of an 11-byte short name, stored in each LFN entry."""
    total = 0
    for byte in short_name:
        total = (((total & 1) << 7) + (total >> 1) + byte) & 0xFF
    return total


def _pad_label(label: str) -> bytes:
    encoded = label.upper().encode("ascii", errors="replace")[:11]
    return encoded.ljust(11, b" ")


def _short_char_ok(char: str) -> bool:
    return (char.isascii() and char.isalnum()) or char in _SHORT_NAME_SPECIALS


def _split_short(name: str) -> tuple[str, str] | None:
    """Split ``name`` into 8.3 parts if it is a valid short name as-is."""
    if name in (".", ".."):
        return None
    base, dot, ext = name.partition(".")
    if dot and "." in ext:
        return None
    if not 1 <= len(base) <= 8 or len(ext) > 3:
        return None
    if not all(_short_char_ok(c) for c in base + ext):
        return None
    return base, ext


def _pack_short(base: str, ext: str) -> bytes:
    return (base.ljust(8) + ext.ljust(3)).encode("ascii")


def format_short_name(short_name: bytes) -> str:
    """Render a raw 11-byte short name as ``BASE.EXT``."""
    base = short_name[:8].decode("ascii", errors="replace").rstrip()
    ext = short_name[8:].decode("ascii", errors="replace").rstrip()
    if short_name[0] == 0x05:
        base = "\xe5" + base[1:]
    return f"{base}.{ext}" if ext else base


def validate_long_name(name: str) -> None:
    """Check a name can be stored in a FAT directory.

    Raises:
        WriteError: The name is empty, too long or contains forbidden chars.
    """
    if not name or name in (".", ".."):
        raise WriteError(f"invalid FAT file name: {name!r}")
    if len(name) > MAX_LONG_NAME:
        raise WriteError(f"FAT file name too long ({len(name)} > {MAX_LONG_NAME})")
    if name != name.rstrip(" ."):
        raise WriteError(f"FAT file name ends with space or dot: {name!r}")
    for char in name:
        if char in _LONG_NAME_FORBIDDEN or ord(char) < 0x20 or ord(char) > 0xFFFF:
            raise WriteError(f"invalid character {char!r} in FAT file name {name!r}")


def _short_basis(name: str) -> tuple[str, str]:
    """Derive the uppercase basis (base, ext) for an alias of a long name."""

    def clean(part: str) -> str:
        out = []
        for char in part.upper():
            if char in " .":
                continue
            out.append(char if _short_char_ok(char) else "_")
        return "".join(out)

    stripped = name.lstrip(".")
    if "." in stripped:
        base, ext = stripped.rsplit(".", 1)
    else:
        base, ext = stripped, ""
    base = clean(base)[:8] or "_"
    return base, clean(ext)[:3]


def make_lfn_entries(name: str, short_name: bytes) -> list[bytes]:
    """Build the LFN entries for ``name`` in on-disk order (last part first)."""
    checksum = lfn_checksum(short_name)
    units = list(name.encode("utf-16-le"))
    chars = [units[i] | (units[i + 1] << 8) for i in range(0, len(units), 2)]
    count = (len(chars) + LFN_CHARS_PER_ENTRY - 1) // LFN_CHARS_PER_ENTRY

    entries: list[bytes] = []
    for seq in range(1, count + 1):
        part = chars[(seq - 1) * LFN_CHARS_PER_ENTRY : seq * LFN_CHARS_PER_ENTRY]
        if len(part) < LFN_CHARS_PER_ENTRY:
            part = part + [0x0000]
            part = part + [0xFFFF] * (LFN_CHARS_PER_ENTRY - len(part))

        entry = bytearray(DIR_ENTRY_SIZE)
        entry[0] = seq | (LAST_LONG_ENTRY if seq == count else 0)
        entry[11] = ATTR_LONG_NAME
        entry[13] = checksum
        struct.pack_into("<5H", entry, 1, *part[0:5])
        struct.pack_into("<6H", entry, 14, *part[5:11])
        struct.pack_into("<2H", entry, 28, *part[11:13])
        entries.append(bytes(entry))

    entries.reverse()
    return entries


def _lfn_part(entry: bytes) -> list[int]:
    return (
        list(struct.unpack_from("<5H", entry, 1))
        + list(struct.unpack_from("<6H", entry, 14))
        + list(struct.unpack_from("<2H", entry, 28))
    )


def _make_short_entry(
    short_name: bytes,
    attributes: int,
    first_cluster: int,
    size: int,
    moment: datetime,
) -> bytes:
    fat_date, fat_time = encode_fat_datetime(moment)
    return _SHORT_ENTRY.pack(
        short_name,
        attributes,
        0,
        0,
        fat_time,
        fat_date,
        fat_date,
        (first_cluster >> 16) & 0xFFFF,
        fat_time,
        fat_date,
        first_cluster & 0xFFFF,
        size,
    )


def _write_zeros(stream: BinaryIO, offset: int, length: int) -> None:
    stream.seek(offset)
    while length > 0:
        chunk = min(length, len(_ZERO_CHUNK))
        stream.write(_ZERO_CHUNK[:chunk])
        length -= chunk


def format_volume(
    stream: BinaryIO,
    size_bytes: int,
    *,
    label: str = "NO NAME",
    volume_id: int | None = None,
    oem_name: str = "SPENCER",
) -> int:
    """Format ``size_bytes`` of ``stream`` as a single FAT32 volume.

    The stream must already be at least ``size_bytes`` long.

    Args:
        stream: Seekable, writable binary stream.
        size_bytes: Volume size; trailing bytes past the last full sector
            are left unused.
        label: Volume label (up to 11 characters).
        volume_id: Volume serial number (defaults to a time-based value).
        oem_name: OEM name stored in the boot sector.

    Returns:
        Number of data clusters in the new volume.

    Raises:
        FormatError: The size cannot hold a FAT32 volume.
    """
    total_sectors = size_bytes // SECTOR_SIZE
    sectors_per_cluster = sectors_per_cluster_for(total_sectors)
    fat_size = fat_size_sectors(total_sectors, sectors_per_cluster)
    data_sectors = total_sectors - RESERVED_SECTORS - NUM_FATS * fat_size
    cluster_count = data_sectors // sectors_per_cluster

    if cluster_count < MIN_CLUSTERS or cluster_count > MAX_CLUSTERS:
        raise FormatError(
            f"cluster count {cluster_count} out of FAT32 range for "
            f"{total_sectors} sectors"
        )
    if volume_id is None:
        volume_id = int(time.time()) & 0xFFFFFFFF

    logger.debug(
        "FAT32: %d sectors, %d sec/cluster, FAT size %d sectors, %d clusters",
        total_sectors,
        sectors_per_cluster,
        fat_size,
        cluster_count,
    )

    boot = bytearray(SECTOR_SIZE)
    boot[0:3] = b"\xeb\x58\x90"
    boot[3:11] = oem_name.encode("ascii")[:8].ljust(8, b" ")
    struct.pack_into("<H", boot, 11, SECTOR_SIZE)
    boot[13] = sectors_per_cluster
    struct.pack_into("<H", boot, 14, RESERVED_SECTORS)
    boot[16] = NUM_FATS
    struct.pack_into("<H", boot, 17, 0)  # root entry count (FAT12/16 only)
    struct.pack_into("<H", boot, 19, 0)  # total sectors 16
    boot[21] = MEDIA_DESCRIPTOR
    struct.pack_into("<H", boot, 22, 0)  # FAT size 16
    struct.pack_into("<H", boot, 24, 63)  # sectors per track
    struct.pack_into("<H", boot, 26, 255)  # heads
    struct.pack_into("<I", boot, 28, 0)  # hidden sectors
    struct.pack_into("<I", boot, 32, total_sectors)
    struct.pack_into("<I", boot, 36, fat_size)
    struct.pack_into("<H", boot, 40, 0)  # ext flags: FAT mirroring on
    struct.pack_into("<H", boot, 42, 0)  # version 0.0
    struct.pack_into("<I", boot, 44, ROOT_CLUSTER)
    struct.pack_into("<H", boot, 48, FSINFO_SECTOR)
    struct.pack_into("<H", boot, 50, BACKUP_BOOT_SECTOR)
    boot[64] = 0x80  # drive number
    boot[66] = 0x29  # extended boot signature
    struct.pack_into("<I", boot, 67, volume_id)
    boot[71:82] = _pad_label(label)
    boot[82:90] = b"FAT32   "
    boot[510:512] = b"\x55\xaa"

    fsinfo = _build_fsinfo(cluster_count - 1, ROOT_CLUSTER + 1)

    # Zero reserved region and both FATs, then the root cluster
    _write_zeros(stream, 0, (RESERVED_SECTORS + NUM_FATS * fat_size) * SECTOR_SIZE)
    first_data_sector = RESERVED_SECTORS + NUM_FATS * fat_size
    _write_zeros(
        stream,
        first_data_sector * SECTOR_SIZE,
        sectors_per_cluster * SECTOR_SIZE,
    )

    for base in (0, BACKUP_BOOT_SECTOR):
        stream.seek(base * SECTOR_SIZE)
        stream.write(boot)
        stream.seek((base + FSINFO_SECTOR) * SECTOR_SIZE)
        stream.write(fsinfo)

    fat_head = struct.pack(
        "<3I",
        (FAT_ENTRY_MASK & 0x0FFFFF00) | MEDIA_DESCRIPTOR,
        END_OF_CHAIN,
        END_OF_CHAIN,  # root directory
    )
    for index in range(NUM_FATS):
        stream.seek((RESERVED_SECTORS + index * fat_size) * SECTOR_SIZE)
        stream.write(fat_head)

    stream.flush()
    return cluster_count


def _build_fsinfo(free_count: int, next_free: int) -> bytes:
    fsinfo = bytearray(SECTOR_SIZE)
    struct.pack_into("<I", fsinfo, 0, FSINFO_LEAD_SIG)
    struct.pack_into("<I", fsinfo, 484, FSINFO_STRUCT_SIG)
    struct.pack_into("<I", fsinfo, 488, free_count)
    struct.pack_into("<I", fsinfo, 492, next_free)
    struct.pack_into("<I", fsinfo, 508, FSINFO_TRAIL_SIG)
    return bytes(fsinfo)


class FileSystem:
    """A mounted FAT32 volume.

    Use as a context manager; a clean exit unmounts (writes FATs and FSInfo
    and flushes the stream).
    """

    def __init__(self, stream: BinaryIO, *, timestamp: datetime | None = None) -> None:
        self._stream = stream
        self._timestamp = timestamp or datetime.now()
        self._mounted = True
        self._dirty = False

        boot = self._read_at(0, SECTOR_SIZE)
        if boot[510:512] != b"\x55\xaa":
            raise FormatError("missing boot sector signature")

        self.bytes_per_sector = struct.unpack_from("<H", boot, 11)[0]
        self.sectors_per_cluster = boot[13]
        self.reserved_sectors = struct.unpack_from("<H", boot, 14)[0]
        self.num_fats = boot[16]
        root_entry_count = struct.unpack_from("<H", boot, 17)[0]
        fat_size16 = struct.unpack_from("<H", boot, 22)[0]
        self.total_sectors = struct.unpack_from("<I", boot, 32)[0]
        self.fat_size = struct.unpack_from("<I", boot, 36)[0]
        self.root_cluster = struct.unpack_from("<I", boot, 44)[0]
        self.fsinfo_sector = struct.unpack_from("<H", boot, 48)[0]
        self.volume_id = struct.unpack_from("<I", boot, 67)[0]
        self.label = boot[71:82].decode("ascii", errors="replace").rstrip()

        if self.bytes_per_sector not in (512, 1024, 2048, 4096):
            raise FormatError(f"unsupported sector size {self.bytes_per_sector}")
        spc = self.sectors_per_cluster
        if spc == 0 or spc & (spc - 1):
            raise FormatError(f"invalid sectors per cluster {spc}")
        if root_entry_count != 0 or fat_size16 != 0 or self.fat_size == 0:
            raise FormatError("not a FAT32 volume")
        if self.num_fats == 0:
            raise FormatError("volume has no FAT")

        self.cluster_size = self.bytes_per_sector * spc
        self.first_data_sector = self.reserved_sectors + self.num_fats * self.fat_size
        data_sectors = self.total_sectors - self.first_data_sector
        self.cluster_count = data_sectors // spc
        if self.cluster_count < MIN_CLUSTERS:
            raise FormatError(
                f"not a FAT32 volume ({self.cluster_count} clusters)"
            )

        fat_bytes = self._read_at(
            self.reserved_sectors * self.bytes_per_sector,
            self.fat_size * self.bytes_per_sector,
        )
        entries = min(len(fat_bytes) // 4, self.cluster_count + 2)
        self._fat = list(struct.unpack_from(f"<{entries}I", fat_bytes))
        self._next_free = ROOT_CLUSTER + 1

        fsinfo = self._read_at(self.fsinfo_sector * self.bytes_per_sector, SECTOR_SIZE)
        if struct.unpack_from("<I", fsinfo, 0)[0] == FSINFO_LEAD_SIG:
            hint = struct.unpack_from("<I", fsinfo, 492)[0]
            if 2 <= hint < len(self._fat):
                self._next_free = hint

    def __enter__(self) -> FileSystem:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is None:
            self.unmount()

    # Raw I/O

    def _read_at(self, offset: int, length: int) -> bytes:
        self._stream.seek(offset)
        data = self._stream.read(length)
        if len(data) != length:
            raise FormatError(
                f"short read at offset {offset}: wanted {length}, got {len(data)}"
            )
        return data

    def _write_at(self, offset: int, data: bytes) -> None:
        self._stream.seek(offset)
        self._stream.write(data)

    def _cluster_offset(self, cluster: int) -> int:
        sector = self.first_data_sector + (cluster - 2) * self.sectors_per_cluster
        return sector * self.bytes_per_sector

    def read_cluster(self, cluster: int) -> bytes:
        return self._read_at(self._cluster_offset(cluster), self.cluster_size)

    def write_cluster(self, cluster: int, data: bytes) -> None:
        if len(data) < self.cluster_size:
            data = data + bytes(self.cluster_size - len(data))
        self._write_at(self._cluster_offset(cluster), data)

    # FAT

    def _get_fat(self, cluster: int) -> int:
        return self._fat[cluster] & FAT_ENTRY_MASK

    def _set_fat(self, cluster: int, value: int) -> None:
        self._fat[cluster] = (self._fat[cluster] & ~FAT_ENTRY_MASK & 0xFFFFFFFF) | (
            value & FAT_ENTRY_MASK
        )
        self._dirty = True

    def chain(self, first_cluster: int) -> list[int]:
        """Return the cluster chain starting at ``first_cluster``.

        Raises:
            FormatError: The chain is broken or loops.
        """
        clusters: list[int] = []
        cluster = first_cluster
        while True:
            if not 2 <= cluster < len(self._fat):
                raise FormatError(f"cluster {cluster} out of range in chain")
            clusters.append(cluster)
            if len(clusters) > self.cluster_count:
                raise FormatError(f"cluster chain from {first_cluster} loops")
            value = self._get_fat(cluster)
            if value >= 0x0FFFFFF8:
                return clusters
            if value in (FREE_CLUSTER, BAD_CLUSTER):
                raise FormatError(f"broken cluster chain at {cluster}")
            cluster = value

    def allocate_cluster(self, previous: int | None = None) -> int:
        """Allocate one free cluster, optionally appending it to a chain.

        Raises:
            WriteError: No free cluster is left.
        """
        limit = len(self._fat)
        for offset in range(limit - 2):
            cluster = 2 + (self._next_free - 2 + offset) % (limit - 2)
            if self._get_fat(cluster) == FREE_CLUSTER:
                self._set_fat(cluster, END_OF_CHAIN)
                if previous is not None:
                    self._set_fat(previous, cluster)
                self._next_free = cluster + 1 if cluster + 1 < limit else 2
                return cluster
        raise WriteError("FAT32 volume is full")

    def free_chain(self, first_cluster: int) -> None:
        for cluster in self.chain(first_cluster):
            self._set_fat(cluster, FREE_CLUSTER)

    def free_cluster_count(self) -> int:
        return sum(1 for value in self._fat[2:] if value & FAT_ENTRY_MASK == 0)

    # Volume

    @property
    def timestamp(self) -> datetime:
        return self._timestamp

    def root_dir(self) -> Directory:
        return Directory(self, self.root_cluster, "/")

    def flush(self) -> None:
        """Write every FAT copy and FSInfo back, then flush the stream."""
        if self._dirty:
            fat_bytes = struct.pack(f"<{len(self._fat)}I", *self._fat)
            for index in range(self.num_fats):
                offset = (self.reserved_sectors + index * self.fat_size) * (
                    self.bytes_per_sector
                )
                self._write_at(offset, fat_bytes)
            fsinfo = _build_fsinfo(self.free_cluster_count(), self._next_free)
            self._write_at(self.fsinfo_sector * self.bytes_per_sector, fsinfo)
            self._dirty = False
        self._stream.flush()

    def unmount(self) -> None:
        if self._mounted:
            self.flush()
            self._mounted = False


class Directory:
    """A directory inside a mounted volume."""

    def __init__(self, fs: FileSystem, first_cluster: int, path: str) -> None:
        self._fs = fs
        self.first_cluster = first_cluster
        self.path = path

    def __repr__(self) -> str:
        return f"Directory({self.path!r})"

    @property
    def _is_root(self) -> bool:
        return self.first_cluster == self._fs.root_cluster

    def _child_path(self, name: str) -> str:
        return f"{self.path.rstrip('/')}/{name}"

    def _read_raw(self) -> tuple[list[int], bytes]:
        clusters = self._fs.chain(self.first_cluster)
        data = b"".join(self._fs.read_cluster(c) for c in clusters)
        return clusters, data

    def _write_slot(self, clusters: list[int], index: int, entry: bytes) -> None:
        byte_offset = index * DIR_ENTRY_SIZE
        cluster = clusters[byte_offset // self._fs.cluster_size]
        within = byte_offset % self._fs.cluster_size
        self._fs._write_at(self._fs._cluster_offset(cluster) + within, entry)

    def _entries(self) -> list[DirEntry]:
        _, data = self._read_raw()
        entries: list[DirEntry] = []
        lfn_parts: dict[int, list[int]] = {}
        lfn_slots: list[int] = []
        lfn_checksum_value: int | None = None

        for index in range(len(data) // DIR_ENTRY_SIZE):
            raw = data[index * DIR_ENTRY_SIZE : (index + 1) * DIR_ENTRY_SIZE]
            first = raw[0]
            if first == 0x00:
                break
            if first == DELETED_MARKER:
                lfn_parts, lfn_slots, lfn_checksum_value = {}, [], None
                continue

            attributes = raw[11]
            if attributes & ATTR_LONG_NAME == ATTR_LONG_NAME:
                if first & LAST_LONG_ENTRY:
                    lfn_parts, lfn_slots = {}, []
                    lfn_checksum_value = raw[13]
                lfn_parts[first & 0x1F] = _lfn_part(raw)
                lfn_slots.append(index)
                continue

            short_name = raw[0:11]
            if attributes & ATTR_VOLUME_ID or short_name in (
                b".          ",
                b"..         ",
            ):
                lfn_parts, lfn_slots, lfn_checksum_value = {}, [], None
                continue

            fields = _SHORT_ENTRY.unpack(raw)
            first_cluster = (fields[7] << 16) | fields[10]
            name = format_short_name(short_name)
            slots = [index]
            if lfn_parts and lfn_checksum_value == lfn_checksum(short_name):
                chars: list[int] = []
                for seq in sorted(lfn_parts):
                    chars.extend(lfn_parts[seq])
                if 0x0000 in chars:
                    chars = chars[: chars.index(0x0000)]
                units = b"".join(struct.pack("<H", c) for c in chars)
                name = units.decode("utf-16-le", errors="replace")
                slots = lfn_slots + [index]

            entries.append(
                DirEntry(
                    name=name,
                    short_name=bytes(short_name),
                    attributes=attributes,
                    first_cluster=first_cluster,
                    size=fields[11],
                    slots=slots,
                )
            )
            lfn_parts, lfn_slots, lfn_checksum_value = {}, [], None

        return entries

    def iterdir(self) -> list[DirEntry]:
        """List entries, excluding ``.``, ``..`` and the volume label."""
        return self._entries()

    def find(self, name: str) -> DirEntry | None:
        """Case-insensitive lookup by long or short name."""
        wanted = name.casefold()
        for entry in self._entries():
            if entry.name.casefold() == wanted:
                return entry
            if format_short_name(entry.short_name).casefold() == wanted:
                return entry
        return None

    def exists(self, name: str) -> bool:
        return self.find(name) is not None

    def _lookup(self, name: str) -> DirEntry:
        entry = self.find(name)
        if entry is None:
            raise FileNotFoundError(self._child_path(name))
        return entry

    def open_dir(self, name: str) -> Directory:
        entry = self._lookup(name)
        if not entry.is_dir:
            raise NotADirectoryError(self._child_path(name))
        return Directory(self._fs, entry.first_cluster, self._child_path(entry.name))

    def _alias_for(self, name: str) -> tuple[bytes, bool]:
        """Choose the 8.3 alias for ``name`` and whether LFN entries are needed."""
        existing = {entry.short_name for entry in self._entries()}
        parts = _split_short(name)
        if parts is not None and name == name.upper():
            return _pack_short(*parts), False

        base, ext = _short_basis(name)
        upper_parts = _split_short(name.upper())
        if upper_parts is not None:
            candidate = _pack_short(*upper_parts)
            if candidate not in existing:
                return candidate, True

        for number in range(1, 1000000):
            tail = f"~{number}"
            candidate = _pack_short(base[: 8 - len(tail)] + tail, ext)
            if candidate not in existing:
                return candidate, True
        raise WriteError(f"no free short name for {name!r} in {self.path}")

    def _find_free_slots(self, count: int) -> tuple[list[int], int]:
        """Find ``count`` consecutive free slots, growing the directory if needed."""
        clusters, data = self._read_raw()
        total = len(data) // DIR_ENTRY_SIZE
        run_start, run_length = 0, 0
        for index in range(total):
            if data[index * DIR_ENTRY_SIZE] in (0x00, DELETED_MARKER):
                if run_length == 0:
                    run_start = index
                run_length += 1
                if run_length == count:
                    return clusters, run_start
            else:
                run_length = 0

        slots_per_cluster = self._fs.cluster_size // DIR_ENTRY_SIZE
        while run_length < count:
            new_cluster = self._fs.allocate_cluster(previous=clusters[-1])
            self._fs.write_cluster(new_cluster, b"")
            clusters.append(new_cluster)
            if run_length == 0:
                run_start = total
            run_length += slots_per_cluster
            total += slots_per_cluster
        return clusters, run_start

    def _add_entry(
        self, name: str, attributes: int, first_cluster: int, size: int
    ) -> DirEntry:
        validate_long_name(name)
        if self.find(name) is not None:
            raise FileExistsError(self._child_path(name))

        short_name, needs_lfn = self._alias_for(name)
        raw_entries = make_lfn_entries(name, short_name) if needs_lfn else []
        raw_entries.append(
            _make_short_entry(
                short_name, attributes, first_cluster, size, self._fs.timestamp
            )
        )

        clusters, start = self._find_free_slots(len(raw_entries))
        for offset, raw in enumerate(raw_entries):
            self._write_slot(clusters, start + offset, raw)

        return DirEntry(
            name=name,
            short_name=short_name,
            attributes=attributes,
            first_cluster=first_cluster,
            size=size,
            slots=list(range(start, start + len(raw_entries))),
        )

    def create_dir(self, name: str) -> Directory:
        """Create a subdirectory.

        Raises:
            FileExistsError: An entry with this name already exists.
        """
        validate_long_name(name)
        if self.find(name) is not None:
            raise FileExistsError(self._child_path(name))

        cluster = self._fs.allocate_cluster()
        parent_cluster = 0 if self._is_root else self.first_cluster
        moment = self._fs.timestamp
        body = _make_short_entry(
            b".          ", ATTR_DIRECTORY, cluster, 0, moment
        ) + _make_short_entry(b"..         ", ATTR_DIRECTORY, parent_cluster, 0, moment)
        self._fs.write_cluster(cluster, body)

        self._add_entry(name, ATTR_DIRECTORY, cluster, 0)
        return Directory(self._fs, cluster, self._child_path(name))

    def ensure_dir(self, name: str) -> Directory:
        """Open ``name`` if it exists, otherwise create it.

        Raises:
            NotADirectoryError: ``name`` exists and is a file.
        """
        try:
            return self.open_dir(name)
        except FileNotFoundError:
            logger.debug("Creating directory %s", self._child_path(name))
            return self.create_dir(name)

    def create_file(self, name: str, source: BinaryIO) -> DirEntry:
        """Create a file with the remaining contents of ``source``.

        Args:
            name: File name.
            source: Binary stream read to EOF.

        Returns:
            The new directory entry.

        Raises:
            FileExistsError: An entry with this name already exists.
            WriteError: The volume is full or the file exceeds 4 GiB.
        """
        validate_long_name(name)
        if self.find(name) is not None:
            raise FileExistsError(self._child_path(name))

        first_cluster = 0
        previous: int | None = None
        size = 0
        while chunk := source.read(self._fs.cluster_size):
            cluster = self._fs.allocate_cluster(previous=previous)
            if previous is None:
                first_cluster = cluster
            self._fs.write_cluster(cluster, chunk)
            previous = cluster
            size += len(chunk)
            if size > 0xFFFFFFFF:
                raise WriteError(f"file too large for FAT32: {self._child_path(name)}")

        return self._add_entry(name, ATTR_ARCHIVE, first_cluster, size)

    def read_file(self, name: str) -> bytes:
        """Return the full contents of a file.

        Raises:
            FileNotFoundError: No such entry.
            IsADirectoryError: The entry is a directory.
        """
        entry = self._lookup(name)
        if entry.is_dir:
            raise IsADirectoryError(self._child_path(name))
        if entry.size == 0:
            return b""
        clusters = self._fs.chain(entry.first_cluster)
        data = b"".join(self._fs.read_cluster(c) for c in clusters)
        if len(data) < entry.size:
            raise FormatError(f"cluster chain shorter than file size: {name}")
        return data[: entry.size]

    def remove(self, name: str) -> None:
        """Remove a file or an empty directory.

        Raises:
            FileNotFoundError: No such entry.
            WriteError: The directory is not empty.
        """
        entry = self._lookup(name)
        if entry.is_dir:
            child = Directory(self._fs, entry.first_cluster, self._child_path(name))
            if child.iterdir():
                raise WriteError(f"directory not empty: {child.path}")

        clusters, data = self._read_raw()
        for slot in entry.slots:
            raw = bytearray(data[slot * DIR_ENTRY_SIZE : (slot + 1) * DIR_ENTRY_SIZE])
            raw[0] = DELETED_MARKER
            self._write_slot(clusters, slot, bytes(raw))
        if entry.first_cluster >= 2:
            self._fs.free_chain(entry.first_cluster)


__all__ = [
    "DirEntry",
    "Directory",
    "FileSystem",
    "format_short_name",
    "format_volume",
    "lfn_checksum",
    "make_lfn_entries",
]
