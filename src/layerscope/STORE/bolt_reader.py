# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Read-only reader for bbolt database files (containerd's meta.db).

Supported structures:
- Meta pages (double-buffered, checksummed)
- Branch and leaf pages, including overflow pages
- Nested buckets, both page-backed and inline

The reader works on any buffer supporting the buffer protocol; the
metadata store hands it a read-only mmap of the database file.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Callable, Iterator, List, Optional, Tuple

from ..errors import StoreClosed, StoreCorrupt, StoreUnavailable

logger = logging.getLogger(__name__)

# Bolt constants (little-endian on every platform containerd ships for)
MAGIC = 0xED0CDAED
VERSION = 2
DEFAULT_PAGE_SIZE = 4096
MAX_TREE_DEPTH = 64

BRANCH_PAGE = 0x01
LEAF_PAGE = 0x02
META_PAGE = 0x04
FREELIST_PAGE = 0x10

BUCKET_LEAF_FLAG = 0x01

# id, flags, count, overflow
PAGE_HEADER = struct.Struct("<QHHI")
# pos, ksize, pgid
BRANCH_ELEMENT = struct.Struct("<IIQ")
# flags, pos, ksize, vsize
LEAF_ELEMENT = struct.Struct("<IIII")
# root pgid, sequence
BUCKET_HEADER = struct.Struct("<QQ")
# magic, version, page size, flags, root pgid, root sequence, freelist, high-water pgid, txid
META_BODY = struct.Struct("<IIIIQQQQQ")
CHECKSUM = struct.Struct("<Q")

FNV64_OFFSET = 0xCBF29CE484222325
FNV64_PRIME = 0x100000001B3


def fnv1a_64(data: bytes) -> int:
    """FNV-1a 64-bit hash, used by bolt for meta page checksums."""
    value = FNV64_OFFSET
    for byte in data:
        value ^= byte
        value = (value * FNV64_PRIME) & 0xFFFFFFFFFFFFFFFF
    return value


@dataclass(frozen=True)
class Meta:
    page_size: int
    flags: int
    root: int
    sequence: int
    freelist: int
    pgid: int
    txid: int


def _read_leaf(buf, offset: int, end: int, count: int) -> Iterator[Tuple[bytes, bytes, int]]:
    """Yields (key, value, flags) for every element of a leaf page."""
    for i in range(count):
        element = offset + PAGE_HEADER.size + i * LEAF_ELEMENT.size
        if element + LEAF_ELEMENT.size > end:
            raise StoreCorrupt(f"leaf element {i} outside page bounds")
        flags, pos, ksize, vsize = LEAF_ELEMENT.unpack_from(buf, element)
        start = element + pos
        if start + ksize + vsize > end:
            raise StoreCorrupt(f"leaf element {i} data outside page bounds")
        key = bytes(buf[start:start + ksize])
        value = bytes(buf[start + ksize:start + ksize + vsize])
        yield key, value, flags


class BoltFile:
    """
    Page-level access to a bolt database image.
    """

    def __init__(self, buf, path: Optional[str] = None):
        """
        Args:
            buf: Database contents (mmap, bytes, or memoryview).
            path: Source path, used in error messages.

        Raises:
            StoreUnavailable: If neither meta page is valid.
        """
        self._buf = buf
        self.path = path
        self.meta = self._load_meta()
        self.page_size = self.meta.page_size

    def _read_meta(self, offset: int) -> Optional[Meta]:
        size = PAGE_HEADER.size + META_BODY.size + CHECKSUM.size
        if offset + size > len(self._buf):
            return None

        _, flags, _, _ = PAGE_HEADER.unpack_from(self._buf, offset)
        if flags != META_PAGE:
            return None

        body_offset = offset + PAGE_HEADER.size
        (magic, version, page_size, meta_flags, root, sequence,
         freelist, pgid, txid) = META_BODY.unpack_from(self._buf, body_offset)
        if magic != MAGIC or version != VERSION:
            return None
        if page_size < size or page_size & (page_size - 1):
            return None

        (checksum,) = CHECKSUM.unpack_from(self._buf, body_offset + META_BODY.size)
        body = bytes(self._buf[body_offset:body_offset + META_BODY.size])
        if fnv1a_64(body) != checksum:
            logger.debug("bolt meta page at offset %d fails checksum", offset)
            return None

        return Meta(page_size=page_size, flags=meta_flags, root=root, sequence=sequence,
                    freelist=freelist, pgid=pgid, txid=txid)

    def _load_meta(self) -> Meta:
        first = self._read_meta(0)
        page_size = first.page_size if first else DEFAULT_PAGE_SIZE
        second = self._read_meta(page_size)

        candidates = [m for m in (first, second) if m is not None]
        if not candidates:
            raise StoreUnavailable("not a bolt database: no valid meta page", path=self.path)
        # Bolt commits alternate between the two meta pages
        return max(candidates, key=lambda m: m.txid)

    def _page(self, pgid: int) -> Tuple[int, int, int, int]:
        """
        Locates a page.

        Returns:
            (offset, end, flags, count) for the page.
        """
        if pgid < 2 or pgid >= self.meta.pgid:
            raise StoreCorrupt(f"page id {pgid} out of range", path=self.path)
        offset = pgid * self.page_size
        if offset + PAGE_HEADER.size > len(self._buf):
            raise StoreCorrupt(f"page {pgid} beyond end of file", path=self.path)

        page_id, flags, count, overflow = PAGE_HEADER.unpack_from(self._buf, offset)
        if page_id != pgid:
            raise StoreCorrupt(f"page {pgid} has header id {page_id}", path=self.path)
        end = min(offset + (overflow + 1) * self.page_size, len(self._buf))
        return offset, end, flags, count

    def walk(self, pgid: int, depth: int = 0) -> Iterator[Tuple[bytes, bytes, int]]:
        """
        Yields every leaf element below a page in key order.
        """
        if depth > MAX_TREE_DEPTH:
            raise StoreCorrupt(f"page tree deeper than {MAX_TREE_DEPTH} at page {pgid}", path=self.path)

        offset, end, flags, count = self._page(pgid)
        if flags & LEAF_PAGE:
            yield from _read_leaf(self._buf, offset, end, count)
        elif flags & BRANCH_PAGE:
            for i in range(count):
                element = offset + PAGE_HEADER.size + i * BRANCH_ELEMENT.size
                if element + BRANCH_ELEMENT.size > end:
                    raise StoreCorrupt(f"branch element {i} outside page {pgid}", path=self.path)
                _, _, child = BRANCH_ELEMENT.unpack_from(self._buf, element)
                yield from self.walk(child, depth + 1)
        else:
            raise StoreCorrupt(f"page {pgid} has unexpected flags 0x{flags:02x}", path=self.path)


class Bucket:
    """
    A bucket within a read transaction. Values of nested buckets are
    reported as None, mirroring bolt's cursor.
    """

    def __init__(self, tx: "ReadTransaction", root: int, inline: Optional[bytes] = None, name: bytes = b""):
        self._tx = tx
        self._root = root
        self._inline = inline
        self.name = name

    def _elements(self) -> Iterator[Tuple[bytes, bytes, int]]:
        self._tx.check_open()
        if self._inline is None:
            yield from self._tx.db.walk(self._root)
            return

        if len(self._inline) < PAGE_HEADER.size:
            raise StoreCorrupt(f"inline bucket {self.name!r} truncated", path=self._tx.db.path)
        _, flags, count, _ = PAGE_HEADER.unpack_from(self._inline, 0)
        if not flags & LEAF_PAGE:
            raise StoreCorrupt(f"inline bucket {self.name!r} is not a leaf", path=self._tx.db.path)
        yield from _read_leaf(self._inline, 0, len(self._inline), count)

    def items(self) -> Iterator[Tuple[bytes, Optional[bytes]]]:
        for key, value, flags in self._elements():
            yield key, None if flags & BUCKET_LEAF_FLAG else value

    def get(self, key: bytes) -> Optional[bytes]:
        for k, value, flags in self._elements():
            if k == key and not flags & BUCKET_LEAF_FLAG:
                return value
        return None

    def bucket(self, name: bytes) -> Optional["Bucket"]:
        for key, value, flags in self._elements():
            if key == name and flags & BUCKET_LEAF_FLAG:
                return self._open(key, value)
        return None

    def bucket_names(self) -> List[bytes]:
        return [key for key, value in self.items() if value is None]

    def _open(self, name: bytes, value: bytes) -> "Bucket":
        if len(value) < BUCKET_HEADER.size:
            raise StoreCorrupt(f"bucket {name!r} header truncated", path=self._tx.db.path)
        root, _ = BUCKET_HEADER.unpack_from(value, 0)
        if root == 0:
            return Bucket(self._tx, 0, inline=value[BUCKET_HEADER.size:], name=name)
        return Bucket(self._tx, root, name=name)


class ReadTransaction:
    """
    A read-only view pinned to the meta page current at begin time.
    """

    def __init__(self, db: BoltFile, on_release: Optional[Callable[["ReadTransaction"], None]] = None):
        self.db = db
        self.meta = db.meta
        self._on_release = on_release
        self._open = True

    @property
    def closed(self) -> bool:
        return not self._open

    def check_open(self) -> None:
        if not self._open:
            raise StoreClosed("transaction has been released", path=self.db.path)

    def root(self) -> Bucket:
        self.check_open()
        return Bucket(self, self.meta.root)

    def bucket(self, name: bytes) -> Optional[Bucket]:
        return self.root().bucket(name)

    def release(self) -> None:
        if not self._open:
            return
        self._open = False
        if self._on_release is not None:
            self._on_release(self)
