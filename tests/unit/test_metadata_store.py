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
Unit tests for the metadata store.
"""
import pytest
from layerscope.STORE.metadata_store import MetadataStore
from layerscope.UTILS.cancellation import Context
from layerscope.errors import OperationCancelled, StoreClosed, StoreCorrupt, StoreUnavailable


@pytest.fixture
def store(meta_db):
    store = MetadataStore.open(meta_db)
    yield store
    store.close()


class TestOpen:
    """Tests for opening database files."""

    def test_open_valid(self, store, meta_db):
        assert store.path == meta_db
        assert not store.closed

    def test_missing_file(self, tmp_path):
        with pytest.raises(StoreUnavailable) as excinfo:
            MetadataStore.open(str(tmp_path / "absent.db"))
        assert excinfo.value.path.endswith("absent.db")

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.db"
        path.write_bytes(b"")
        with pytest.raises(StoreUnavailable):
            MetadataStore.open(str(path))

    def test_not_a_database(self, tmp_path):
        """Test that arbitrary bytes are rejected at open time."""
        path = tmp_path / "notes.txt"
        path.write_bytes(b"this is not a bolt database\n" * 400)
        with pytest.raises(StoreUnavailable):
            MetadataStore.open(str(path))

    def test_file_is_not_modified(self, meta_db):
        with open(meta_db, "rb") as f:
            before = f.read()
        with MetadataStore.open(meta_db) as store:
            store.list_namespaces()
        with open(meta_db, "rb") as f:
            assert f.read() == before


class TestListNamespaces:
    """Tests for namespace enumeration."""

    def test_lists_sub_buckets(self, store):
        assert store.list_namespaces() == ["default", "moby"]

    def test_skips_plain_keys(self, store):
        assert "version" not in store.list_namespaces()

    def test_no_v1_bucket(self, tmp_path, bolt_builder):
        b = bolt_builder
        b.add_page(3, b.leaf(3, [(b"other", b.inline_bucket(), b.BUCKET)]))
        path = b.write(tmp_path / "meta.db", root=3)
        with MetadataStore.open(path) as store:
            assert store.list_namespaces() == []

    def test_empty_v1_bucket(self, tmp_path, bolt_builder):
        b = bolt_builder
        b.add_page(3, b.leaf(3, [(b"v1", b.inline_bucket(), b.BUCKET)]))
        path = b.write(tmp_path / "meta.db", root=3)
        with MetadataStore.open(path) as store:
            assert store.list_namespaces() == []

    def test_repeatable(self, store):
        assert store.list_namespaces() == store.list_namespaces()


class TestTransactions:
    """Tests for transaction lifetime."""

    def test_released_after_success(self, store):
        store.list_namespaces()
        assert store.open_transactions == 0

    def test_released_after_corruption(self, tmp_path, bolt_builder):
        b = bolt_builder
        b.add_page(3, b.leaf(3, [(b"v1", b.bucket_ref(40), b.BUCKET)]))
        path = b.write(tmp_path / "meta.db", root=3)
        with MetadataStore.open(path) as store:
            with pytest.raises(StoreCorrupt):
                store.list_namespaces()
            assert store.open_transactions == 0

    def test_released_after_cancellation(self, store):
        ctx = Context()
        ctx.cancel()
        with pytest.raises(OperationCancelled):
            store.list_namespaces(ctx)
        assert store.open_transactions == 0

    def test_expired_deadline(self, store):
        with pytest.raises(OperationCancelled):
            store.list_namespaces(Context(timeout=0))

    def test_view_counts_open_transactions(self, store):
        with store.view() as tx:
            assert store.open_transactions == 1
            assert not tx.closed
        assert tx.closed
        assert store.open_transactions == 0


class TestClose:
    """Tests for closing the store."""

    def test_use_after_close(self, store):
        store.close()
        assert store.closed
        with pytest.raises(StoreClosed):
            store.list_namespaces()

    def test_close_is_idempotent(self, store):
        store.close()
        store.close()
        assert store.closed

    def test_context_manager_closes(self, meta_db):
        with MetadataStore.open(meta_db) as store:
            pass
        assert store.closed
