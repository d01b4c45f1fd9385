# Copyright (c) 2024 The archview Authors
#
# This file is a part of `archview` project.
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License
# along with this program. If not, see <http://www.gnu.org/licenses/>.

"""Loading archive entries into a `ResourceStore`."""

import abc as _abc
import asyncio as _asyncio
import logging as _logging
import os as _os
import typing as _t
import zipfile as _zipfile

from .exceptions import *
from .mime import guess_mime_type
from .store import ResourceStore

def normalize_path(path : str) -> str:
    """Drop empty and `.` segments, so that `./a//b` becomes `a/b`."""
    return "/".join([p for p in path.replace("\\", "/").split("/") if p not in ("", ".")])

class Archive(metaclass=_abc.ABCMeta):
    @_abc.abstractmethod
    def list_entries(self) -> list[tuple[str, bool]]:
        """List `(path, is_directory)` pairs."""
        raise NotImplementedError()

    @_abc.abstractmethod
    async def read_entry_bytes(self, path : str) -> bytes:
        raise NotImplementedError()

    def close(self) -> None:
        pass

    def __enter__(self) -> "Archive":
        return self

    def __exit__(self, *args : _t.Any) -> None:
        self.close()

class ZipArchive(Archive):
    def __init__(self, path : str) -> None:
        self.path = path
        try:
            self.zipf = _zipfile.ZipFile(path, "r")
        except (OSError, _zipfile.BadZipFile) as exc:
            raise ArchiveError("failed to open `%s`: %s", path, str(exc))
        # normalized path -> name in the zip file
        self.names : dict[str, str] = {}
        for info in self.zipf.infolist():
            if not info.is_dir():
                self.names[normalize_path(info.filename)] = info.filename

    def list_entries(self) -> list[tuple[str, bool]]:
        res = []
        for info in self.zipf.infolist():
            path = normalize_path(info.filename)
            if path != "":
                res.append((path, info.is_dir()))
        return res

    async def read_entry_bytes(self, path : str) -> bytes:
        try:
            name = self.names[path]
        except KeyError:
            raise NotFound("no `%s` in `%s`", path, self.path)
        try:
            return self.zipf.read(name)
        except (OSError, _zipfile.BadZipFile) as exc:
            raise ArchiveError("failed to read `%s` from `%s`: %s", path, self.path, str(exc))

    def close(self) -> None:
        self.zipf.close()

class DirectoryArchive(Archive):
    def __init__(self, path : str) -> None:
        if not _os.path.isdir(path):
            raise ArchiveError("`%s` is not a directory", path)
        self.path = path

    def list_entries(self) -> list[tuple[str, bool]]:
        res = []
        for root, dirs, files in _os.walk(self.path):
            dirs.sort()
            rel = _os.path.relpath(root, self.path)
            prefix = "" if rel == "." else normalize_path(rel) + "/"
            for d in dirs:
                res.append((prefix + d, True))
            for f in sorted(files):
                res.append((prefix + f, False))
        return res

    async def read_entry_bytes(self, path : str) -> bytes:
        fpath = _os.path.join(self.path, *path.split("/"))
        try:
            with open(fpath, "rb") as f:
                return f.read()
        except FileNotFoundError:
            raise NotFound("no `%s` in `%s`", path, self.path)
        except OSError as exc:
            raise ArchiveError("failed to read `%s` from `%s`: %s", path, self.path, str(exc))

def open_archive(path : str) -> Archive:
    if _os.path.isdir(path):
        return DirectoryArchive(path)
    return ZipArchive(path)

async def load_store(archive : Archive, store : ResourceStore, subdir : str | None = None) -> int:
    """Register all file entries of `archive` (only those under `subdir`, if
       given) in `store`, returning how many were registered.
    """
    prefix = normalize_path(subdir) + "/" if subdir is not None and normalize_path(subdir) != "" else ""

    num = 0
    for path, is_dir in archive.list_entries():
        if is_dir or not path.startswith(prefix):
            continue
        data = await archive.read_entry_bytes(path)
        mime = guess_mime_type(path, data)
        _logging.debug("loading `%s` as `%s`", path, mime)
        store.register(path, data, mime)
        num += 1
    return num

def test_normalize_path() -> None:
    assert normalize_path("./a//b/") == "a/b"
    assert normalize_path("a\\b.html") == "a/b.html"
    assert normalize_path("a b/ü.html") == "a b/ü.html"

def test_zip_archive(tmp_path : _t.Any) -> None:
    zpath = str(tmp_path / "page.zip")
    with _zipfile.ZipFile(zpath, "w") as zf:
        zf.writestr("index.html", "<p>root</p>")
        zf.writestr("sub/", "")
        zf.writestr("sub/page.html", "<p>sub</p>")
        zf.writestr("sub/style.css", "p {}")
        zf.writestr("other/x.png", b"\x89PNG\x0d\x0a\x1a\x0a")

    with open_archive(zpath) as archive:
        assert isinstance(archive, ZipArchive)
        assert ("sub", True) in archive.list_entries()

        store = ResourceStore()
        num = _asyncio.run(load_store(archive, store, "sub"))
        assert num == 2
        assert sorted(store.paths()) == ["sub/page.html", "sub/style.css"]
        res = store.get("sub/style.css")
        assert res is not None and res.mime == "text/css"

        store = ResourceStore()
        assert _asyncio.run(load_store(archive, store)) == 4
        res = store.get("other/x.png")
        assert res is not None and res.mime == "image/png"

        try:
            _asyncio.run(archive.read_entry_bytes("missing.html"))
        except NotFound:
            pass
        else:
            assert False

def test_directory_archive(tmp_path : _t.Any) -> None:
    (tmp_path / "sub dir").mkdir()
    (tmp_path / "index.html").write_bytes(b"<p>root</p>")
    (tmp_path / "sub dir" / "data").write_bytes(b"<!DOCTYPE html><p>sniffed</p>")

    archive = open_archive(str(tmp_path))
    assert isinstance(archive, DirectoryArchive)
    entries = archive.list_entries()
    assert entries == [("sub dir", True), ("index.html", False), ("sub dir/data", False)]

    store = ResourceStore()
    assert _asyncio.run(load_store(archive, store)) == 2
    res = store.get("sub dir/data")
    assert res is not None and res.mime == "text/html"

def test_bad_archive(tmp_path : _t.Any) -> None:
    bad = tmp_path / "bad.zip"
    bad.write_bytes(b"not a zip")
    try:
        open_archive(str(bad))
    except ArchiveError:
        pass
    else:
        assert False
