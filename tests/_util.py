# Copyright Red Hat
#
# tests/_util.py - Root file system diff test utilities.
#
# This file is part of the rootfsdiff project.
#
# SPDX-License-Identifier: Apache-2.0
import os
import stat

from rootfsdiff.backends import Backend
from rootfsdiff.difftypes import BackendKind
from rootfsdiff.treewalk import FileEntry


def make_tree(root, files=None, links=None):
    """
    Create a test tree below ``root``.

    :param files: A dictionary mapping relative paths to ``str`` or ``bytes``
                  content.
    :param links: A dictionary mapping relative link paths to raw targets.
    """
    os.makedirs(root, exist_ok=True)
    for path, content in (files or {}).items():
        full_path = os.path.join(root, path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        if isinstance(content, str):
            content = content.encode("utf8")
        with open(full_path, "wb") as f:
            f.write(content)
    for path, target in (links or {}).items():
        full_path = os.path.join(root, path)
        os.makedirs(os.path.dirname(full_path), exist_ok=True)
        os.symlink(target, full_path)
    return root


def make_entry(path, size=1024, full_path=None, is_symlink=False, target=""):
    """
    Factory to create FileEntry objects without touching disk.
    """
    mode = (stat.S_IFLNK | 0o777) if is_symlink else (stat.S_IFREG | 0o644)
    return FileEntry(
        path=path,
        full_path=full_path or os.path.join("/nonexistent", path),
        size=size,
        mode=mode,
        is_symlink=is_symlink,
        is_file=not is_symlink,
        symlink_target=target,
    )


def _read(path):
    with open(path, "rb") as f:
        return f.read()


class FakeCompressBackend(Backend):
    """Compression backend that keeps the first half of its input."""

    name = "fakez"
    extension = "fz"
    kind = BackendKind.COMPRESS

    calls = 0

    def available(self):
        return True

    def generate(self, from_path, to_path, out_path):
        FakeCompressBackend.calls += 1
        data = _read(to_path)
        with open(out_path, "wb") as f:
            f.write(data[: len(data) // 2])


class FakeDeltaBackend(Backend):
    """Delta backend that writes the bytes appended to its first input."""

    name = "fakedelta"
    extension = "fd"
    kind = BackendKind.DELTA
    compressible = True

    calls = 0

    def available(self):
        return True

    def generate(self, from_path, to_path, out_path):
        FakeDeltaBackend.calls += 1
        old = _read(from_path)
        new = _read(to_path)
        with open(out_path, "wb") as f:
            f.write(b"D" + new[len(old):])


class FakeReportBackend(Backend):
    """Report backend that writes a one line report."""

    name = "fakereport"
    extension = "fr"
    kind = BackendKind.REPORT

    def available(self):
        return True

    def generate(self, from_path, to_path, out_path):
        with open(out_path, "w", encoding="utf8") as f:
            f.write(f"{from_path} -> {to_path}\n")


class UnavailableBackend(Backend):
    """Delta backend whose tool is never installed."""

    name = "missing"
    extension = "miss"
    kind = BackendKind.DELTA
    compressible = True

    def available(self):
        return False

    def generate(self, from_path, to_path, out_path):
        raise AssertionError("unavailable backend was run")


class UnavailableCompressBackend(UnavailableBackend):
    """Compression backend whose tool is never installed."""

    name = "missingz"
    extension = "mz"
    kind = BackendKind.COMPRESS


FAKE_BACKENDS = {
    cls.name: cls
    for cls in (
        FakeCompressBackend,
        FakeDeltaBackend,
        FakeReportBackend,
        UnavailableBackend,
        UnavailableCompressBackend,
    )
}


def reset_fake_calls():
    FakeCompressBackend.calls = 0
    FakeDeltaBackend.calls = 0
