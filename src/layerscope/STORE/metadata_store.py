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
Read-only access to containerd's metadata database.
"""

import logging
import mmap
import os
from contextlib import contextmanager
from typing import Iterator, List, Optional

from .bolt_reader import BoltFile, ReadTransaction
from ..UTILS.cancellation import Context, ensure_context
from ..errors import StoreClosed, StoreUnavailable

logger = logging.getLogger(__name__)

# Top-level schema bucket of containerd's metadata plugin
BUCKET_KEY_VERSION = b"v1"


class MetadataStore:
    """
    Owns the memory-mapped database file.

    The file is opened 'rb' and mapped with ACCESS_READ, so no code path
    can write to it. Every read runs inside view(), which releases its
    transaction on all exit paths.
    """

    def __init__(self, path: str, handle, buf, db: BoltFile):
        self.path = path
        self._handle = handle
        self._buf = buf
        self._db: Optional[BoltFile] = db
        self._open_transactions = 0

    @classmethod
    def open(cls, path: str) -> "MetadataStore":
        """
        Opens a metadata database read-only.

        Args:
            path: Path to meta.db.

        Raises:
            StoreUnavailable: If the file is missing, empty or not a bolt database.
        """
        logger.debug("opening metadata store %s", path)
        try:
            handle = open(path, "rb")
        except OSError as e:
            raise StoreUnavailable(f"opening metadata file: {e.strerror}", path=path)

        try:
            if os.fstat(handle.fileno()).st_size == 0:
                raise StoreUnavailable("metadata file is empty", path=path)
            buf = mmap.mmap(handle.fileno(), 0, access=mmap.ACCESS_READ)
        except (OSError, ValueError) as e:
            handle.close()
            raise StoreUnavailable(f"mapping metadata file: {e}", path=path)
        except StoreUnavailable:
            handle.close()
            raise

        try:
            db = BoltFile(buf, path=path)
        except StoreUnavailable:
            buf.close()
            handle.close()
            raise

        logger.debug("metadata store txid=%d page_size=%d", db.meta.txid, db.page_size)
        return cls(path, handle, buf, db)

    @property
    def closed(self) -> bool:
        return self._db is None

    @property
    def open_transactions(self) -> int:
        return self._open_transactions

    @contextmanager
    def view(self) -> Iterator[ReadTransaction]:
        """
        Runs a block inside one read transaction.

        Raises:
            StoreClosed: If the store was closed.
        """
        if self._db is None:
            raise StoreClosed("metadata store is closed", path=self.path)

        tx = ReadTransaction(self._db, on_release=self._released)
        self._open_transactions += 1
        try:
            yield tx
        finally:
            tx.release()

    def _released(self, tx: ReadTransaction) -> None:
        self._open_transactions -= 1

    def list_namespaces(self, ctx: Optional[Context] = None) -> List[str]:
        """
        Lists namespace names, i.e. the sub-buckets of the v1 bucket.

        Raises:
            StoreClosed: If the store was closed.
            StoreCorrupt: If the bucket tree is damaged.
            OperationCancelled: If ctx is cancelled.
        """
        ctx = ensure_context(ctx)
        namespaces = []
        with self.view() as tx:
            version = tx.bucket(BUCKET_KEY_VERSION)
            if version is None:
                logger.debug("no %s bucket in %s", BUCKET_KEY_VERSION, self.path)
                return []
            for key, value in version.items():
                ctx.check()
                if value is None:
                    namespaces.append(key.decode("utf-8", errors="replace"))
        return namespaces

    def close(self) -> None:
        """
        Releases the mapping and file handle. Safe to call repeatedly.
        """
        if self._db is None:
            return
        self._db = None
        try:
            self._buf.close()
        finally:
            self._handle.close()
        logger.debug("closed metadata store %s", self.path)

    def __enter__(self) -> "MetadataStore":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
