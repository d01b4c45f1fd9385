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

"""Resources of an archive and the locators standing in for them.

   A locator is an opaque session-local URL (`blob:archview/<uuid>` by
   default) that the store can turn back into content.  The store is
   append-only while open: locators are issued, never changed, and all of
   them are revoked together by `close`.
"""

import dataclasses as _dc
import enum as _enum
import logging as _logging
import typing as _t
import uuid as _uuid

from .exceptions import *

class TransformKind(_enum.Enum):
    DOCUMENT = 0
    STYLESHEET = 1

@_dc.dataclass(frozen=True)
class Resource:
    path : str
    content : bytes
    mime : str
    locator : str

@_dc.dataclass(frozen=True)
class LocatorEntry:
    locator : str
    content : bytes
    mime : str
    # archive path this content derives from, `None` for anonymous content
    path : str | None
    # `None` for original archive content
    transform : TransformKind | None

default_locator_prefix = "blob:archview/"

class ResourceStore:
    def __init__(self, locator_prefix : str = default_locator_prefix) -> None:
        self.locator_prefix = locator_prefix
        self.resources : dict[str, Resource] = {}
        self.locators : dict[str, LocatorEntry] = {}
        self.closed = False

    def _new_locator(self) -> str:
        if self.closed:
            raise NotFound("resource store is closed")
        return self.locator_prefix + str(_uuid.uuid4())

    def __len__(self) -> int:
        return len(self.resources)

    def __contains__(self, path : str) -> bool:
        return path in self.resources

    def paths(self) -> list[str]:
        return list(self.resources.keys())

    def get(self, path : str) -> Resource | None:
        return self.resources.get(path, None)

    def register(self, path : str, content : bytes, mime : str) -> Resource:
        """Add an archive entry and issue its own locator."""
        if path in self.resources:
            raise ArchiveError("duplicate archive entry `%s`", path)
        locator = self._new_locator()
        res = Resource(path, content, mime, locator)
        self.resources[path] = res
        self.locators[locator] = LocatorEntry(locator, content, mime, path, None)
        return res

    def register_rewritten(self, path : str, transform : TransformKind, content : bytes, mime : str) -> str:
        """Issue a fresh locator for a transformed derivative of `path`."""
        locator = self._new_locator()
        self.locators[locator] = LocatorEntry(locator, content, mime, path, transform)
        return locator

    def issue(self, content : bytes, mime : str) -> str:
        """Issue a locator for content that is not an archive entry."""
        locator = self._new_locator()
        self.locators[locator] = LocatorEntry(locator, content, mime, None, None)
        return locator

    def is_locator(self, url : str) -> bool:
        return url.startswith(self.locator_prefix)

    def entry(self, locator : str) -> LocatorEntry:
        try:
            return self.locators[locator]
        except KeyError:
            raise NotFound("unknown locator `%s`", locator)

    def path_of_locator(self, locator : str) -> str | None:
        e = self.locators.get(locator, None)
        if e is None:
            return None
        return e.path

    def is_rewritten(self, locator : str) -> bool:
        e = self.locators.get(locator, None)
        return e is not None and e.transform is not None

    def close(self) -> None:
        """Revoke every issued locator."""
        if self.closed:
            return
        _logging.debug("revoking %d locators", len(self.locators))
        self.locators.clear()
        self.resources.clear()
        self.closed = True

    def __enter__(self) -> "ResourceStore":
        return self

    def __exit__(self, *args : _t.Any) -> None:
        self.close()

def test_resource_store() -> None:
    with ResourceStore() as store:
        res = store.register("a/index.html", b"<p>hi</p>", "text/html")
        assert store.get("a/index.html") is res
        assert store.get("a/missing.html") is None
        assert store.is_locator(res.locator)
        assert store.path_of_locator(res.locator) == "a/index.html"
        assert not store.is_rewritten(res.locator)

        rw = store.register_rewritten("a/index.html", TransformKind.DOCUMENT, b"<p>rewritten</p>", "text/html")
        assert rw != res.locator
        assert store.path_of_locator(rw) == "a/index.html"
        assert store.is_rewritten(rw)
        assert store.entry(rw).content == b"<p>rewritten</p>"
        # the original stays available
        assert store.entry(res.locator).content == b"<p>hi</p>"

        anon = store.issue(b"body {}", "text/css")
        assert store.path_of_locator(anon) is None

        try:
            store.register("a/index.html", b"", "text/html")
        except ArchiveError:
            pass
        else:
            assert False

    assert store.path_of_locator(res.locator) is None
    try:
        store.entry(rw)
    except NotFound:
        pass
    else:
        assert False
    try:
        store.issue(b"", "text/plain")
    except NotFound:
        pass
    else:
        assert False
