"""
Shared fixtures: synthetic bolt databases, Docker root layouts and a
recording mount facility.
"""
import json
import os
import struct
from typing import Dict, List, Optional, Sequence, Tuple, Union

import pytest

from layerscope.ISOLATION.mount_engine import MountFacility
from layerscope.STORE.bolt_reader import (
    BRANCH_PAGE, BUCKET_LEAF_FLAG, FREELIST_PAGE, LEAF_PAGE, MAGIC, META_PAGE, VERSION, fnv1a_64,
)


class BoltBuilder:
    """
    Assembles bolt database files page by page.
    """
    PAGE_SIZE = 4096
    BUCKET = BUCKET_LEAF_FLAG

    def __init__(self):
        self.pages: Dict[int, bytes] = {
            2: struct.pack("<QHHI", 2, FREELIST_PAGE, 0, 0),
        }

    @staticmethod
    def leaf(pgid: int, items: Sequence[Tuple[bytes, bytes, int]]) -> bytes:
        header = struct.pack("<QHHI", pgid, LEAF_PAGE, len(items), 0)
        elements, data = b"", b""
        data_start = 16 + 16 * len(items)
        for i, (key, value, flags) in enumerate(items):
            pos = data_start + len(data) - (16 + 16 * i)
            elements += struct.pack("<IIII", flags, pos, len(key), len(value))
            data += key + value
        return header + elements + data

    @staticmethod
    def branch(pgid: int, children: Sequence[Tuple[bytes, int]]) -> bytes:
        header = struct.pack("<QHHI", pgid, BRANCH_PAGE, len(children), 0)
        elements, data = b"", b""
        data_start = 16 + 16 * len(children)
        for i, (key, child) in enumerate(children):
            pos = data_start + len(data) - (16 + 16 * i)
            elements += struct.pack("<IIQ", pos, len(key), child)
            data += key
        return header + elements + data

    @classmethod
    def inline_bucket(cls, items: Sequence[Tuple[bytes, bytes, int]] = ()) -> bytes:
        return struct.pack("<QQ", 0, 0) + cls.leaf(0, items)

    @staticmethod
    def bucket_ref(root: int) -> bytes:
        return struct.pack("<QQ", root, 0)

    @classmethod
    def meta(cls, pgid: int, root: int, txid: int, high_water: int) -> bytes:
        body = struct.pack("<IIIIQQQQQ", MAGIC, VERSION, cls.PAGE_SIZE, 0, root, 0, 2, high_water, txid)
        return struct.pack("<QHHI", pgid, META_PAGE, 0, 0) + body + struct.pack("<Q", fnv1a_64(body))

    def add_page(self, pgid: int, data: bytes) -> None:
        assert len(data) <= self.PAGE_SIZE
        self.pages[pgid] = data

    def write(self, path, root: int, txid: int = 2) -> str:
        high_water = max(self.pages) + 1
        pages = dict(self.pages)
        pages[0] = self.meta(0, root, txid - 1, high_water)
        pages[1] = self.meta(1, root, txid, high_water)

        blob = bytearray(self.PAGE_SIZE * high_water)
        for pgid, data in pages.items():
            offset = pgid * self.PAGE_SIZE
            blob[offset:offset + len(data)] = data
        with open(path, "wb") as f:
            f.write(bytes(blob))
        return str(path)


def namespace_items(names: Sequence[str]) -> List[Tuple[bytes, bytes, int]]:
    return [(name.encode(), BoltBuilder.inline_bucket(), BoltBuilder.BUCKET) for name in sorted(names)]


@pytest.fixture
def bolt_builder():
    return BoltBuilder()


@pytest.fixture
def meta_db(tmp_path):
    """
    A containerd-style meta.db with namespaces 'default' and 'moby'
    plus the schema version key in the v1 bucket.
    """
    builder = BoltBuilder()
    v1_items = namespace_items(["moby", "default"]) + [(b"version", b"\x03", 0)]
    builder.add_page(3, builder.leaf(3, [(b"v1", builder.inline_bucket(v1_items), builder.BUCKET)]))
    return builder.write(tmp_path / "meta.db", root=3)


def container_config(container_id: str, **overrides) -> dict:
    config = {
        "ID": container_id,
        "Created": "2021-05-11T15:30:12.123456789Z",
        "Path": "nginx",
        "Args": ["-g", "daemon off;"],
        "Config": {
            "Hostname": container_id[:12],
            "ExposedPorts": {"80/tcp": {}, "443/tcp": {}},
            "Labels": {"maintainer": "NGINX Docker Maintainers"},
        },
        "State": {
            "Running": True,
            "Pid": 4242,
            "StartedAt": "2021-05-11T15:30:13.5Z",
            "FinishedAt": "0001-01-01T00:00:00Z",
        },
        "Image": "sha256:62d49f9bab67f7c70ac3395855bf01389eb3175b374e621f6f191bf31b54cd5b",
        "Name": "/web",
        "Driver": "overlay2",
        "MountPoints": {},
        "HasBeenStartedBefore": True,
    }
    config.update(overrides)
    return config


class DockerRoot:
    """
    Writes a Docker state directory layout under a temporary root.
    """

    def __init__(self, root):
        self.root = str(root)

    def path(self, *parts) -> str:
        return os.path.join(self.root, *parts)

    def _write(self, path: str, content) -> str:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        mode = "wb" if isinstance(content, bytes) else "w"
        with open(path, mode) as f:
            f.write(content)
        return path

    def add_container(self, container_id: str, config: Optional[dict] = None,
                      legacy: Optional[dict] = None, raw_v2: Optional[str] = None) -> str:
        container_dir = self.path("containers", container_id)
        os.makedirs(container_dir, exist_ok=True)
        if raw_v2 is not None:
            self._write(os.path.join(container_dir, "config.v2.json"), raw_v2)
        elif config is not None:
            self._write(os.path.join(container_dir, "config.v2.json"), json.dumps(config))
        if legacy is not None:
            self._write(os.path.join(container_dir, "config.json"), json.dumps(legacy))
        return container_dir

    def add_repositories(self, storage: str, repositories: Optional[dict] = None, raw: Optional[str] = None) -> str:
        content = raw if raw is not None else json.dumps({"Repositories": repositories or {}})
        return self._write(self.path("image", storage, "repositories.json"), content)

    def add_image_content(self, storage: str, digest: str, content: dict) -> str:
        algorithm, hex_value = digest.split(":")
        return self._write(self.path("image", storage, "imagedb", "content", algorithm, hex_value),
                           json.dumps(content))

    def add_mount(self, container_id: str, mount_id: str, lower: Optional[Union[str, bytes]] = None,
                  driver: str = "overlay2") -> None:
        self._write(self.path("image", driver, "layerdb", "mounts", container_id, "mount-id"), mount_id)
        mount_dir = self.path(driver, mount_id)
        os.makedirs(os.path.join(mount_dir, "diff"), exist_ok=True)
        os.makedirs(os.path.join(mount_dir, "work"), exist_ok=True)
        if lower is not None:
            self._write(os.path.join(mount_dir, "lower"), lower)


@pytest.fixture
def docker_root(tmp_path):
    root = tmp_path / "var" / "lib" / "docker"
    root.mkdir(parents=True)
    return DockerRoot(root)


class RecordingMountFacility(MountFacility):
    """
    Mount facility double: records every invocation and keeps an
    in-memory mount table.
    """

    def __init__(self, status: int = 0, output: str = ""):
        self.status = status
        self.output = output
        self.calls: List[List[str]] = []
        self.mounted = set()

    def invoke(self, args):
        args = list(args)
        self.calls.append(args)
        if self.status != 0:
            return self.output, self.status
        if args[0] == "mount":
            self.mounted.add(args[-1])
        elif args[0] == "umount":
            self.mounted.discard(args[-1])
        return self.output, 0

    def is_mounted(self, path):
        return path in self.mounted


@pytest.fixture
def mount_facility():
    return RecordingMountFacility()


@pytest.fixture
def make_config():
    return container_config
