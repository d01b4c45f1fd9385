# Copyright (c) 2023-2024 Jan Malakhovski <oxij@oxij.org>
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

"""Archive paths, virtual URLs, and resolution of references found in archived documents.

   Every archive entry has a virtual URL: a fixed base address followed by
   its percent-encoded path.  Relative references found inside a document
   are resolved against that document's virtual URL, and anything landing
   under the base is looked up in the `ResourceStore`.
"""

import dataclasses as _dc
import logging as _logging
import urllib.parse as _up

from .exceptions import *
from .wire import scheck, parse_path, unparse_path, split_fragment
from .store import Resource, ResourceStore

URLType = str

default_virtual_base = "http://archview.invalid/!/"

class PathCodec:
    def __init__(self, virtual_base : URLType = default_virtual_base) -> None:
        if not virtual_base.endswith("/"):
            virtual_base += "/"
        self.virtual_base = virtual_base

    def to_virtual_url(self, path : str) -> URLType:
        return self.virtual_base + unparse_path(path.split("/"))

    def from_virtual_url(self, url : URLType) -> str | None:
        """Inverse of `to_virtual_url`, `None` when `url` is outside the base."""
        if not url.startswith(self.virtual_base):
            return None
        return "/".join(parse_path(url[len(self.virtual_base):]))

@_dc.dataclass(frozen=True)
class ResolvedReference:
    # what to put into the rewritten document
    final_url : URLType
    in_archive : bool = _dc.field(default=False)
    path : str | None = _dc.field(default=None)
    virtual_url : URLType | None = _dc.field(default=None)
    query : str = _dc.field(default="")
    fragment : str = _dc.field(default="")
    mime : str | None = _dc.field(default=None)

class UrlResolver:
    def __init__(self, codec : PathCodec, store : ResourceStore) -> None:
        self.codec = codec
        self.store = store

    def absolutize(self, url : URLType, ref_url : URLType) -> URLType:
        """`urljoin`, but raising `MalformedURL` instead of returning garbage."""
        surl = url.strip()
        try:
            res = _up.urljoin(ref_url, surl)
            # `urljoin` does not validate ports and IPv6 brackets, `urlsplit` does
            purl = _up.urlsplit(res)
            purl.port
        except ValueError as exc:
            raise MalformedURL("malformed URL `%s`: %s", url, str(exc))
        if purl.scheme == "":
            raise MalformedURL("malformed URL `%s`: can't make it absolute", url)
        return res

    def locate(self, url : URLType) -> tuple[str, Resource]:
        """Find the archive entry for a fragment-less and query-less virtual URL.

           Raises `NotInArchive` when `url` is outside the virtual base, and
           `NotFound` when it is inside but names no entry.
        """
        path = self.codec.from_virtual_url(url)
        if path is None:
            raise NotInArchive("`%s` is outside of the archive", url)
        res = self.store.get(path)
        if res is None:
            raise NotFound("no `%s` in the archive", path)
        return path, res

    def resolve(self, url : URLType, ref_url : URLType) -> ResolvedReference:
        """Resolve `url` found in a document with virtual URL `ref_url`.

           Never raises: malformed URLs and in-archive-looking URLs with no
           matching entry come back unchanged with `in_archive=False`.
        """
        try:
            absolute = self.absolutize(url, ref_url)
        except MalformedURL as exc:
            _logging.debug("referenced from `%s`: %s", ref_url, str(exc))
            return ResolvedReference(url)

        main, fragment = split_fragment(absolute)
        main, sep, query = main.partition("?")
        query = sep + query if query != "" else ""

        try:
            path, res = self.locate(main)
        except NotInArchive:
            # pass through
            return ResolvedReference(absolute)
        except NotFound as exc:
            _logging.debug("referenced from `%s`: %s", ref_url, str(exc))
            return ResolvedReference(url)

        # fragments survive on locators, queries do not
        return ResolvedReference(res.locator + fragment, True, path, main + fragment, query, fragment, res.mime)

def test_path_codec_round_trip() -> None:
    codec = PathCodec("http://archview.invalid/!/")
    for p in [
        "index.html",
        "sub dir/a b.html",
        "100%/50%25.css",
        "café/naïve résumé.html",
        "日本語/ページ.html",
        "q?a#b/x.html",
        "a/b/c/d.png",
    ]:
        url = codec.to_virtual_url(p)
        assert url.startswith(codec.virtual_base)
        scheck(p, "round-trip", codec.from_virtual_url(url), p)

    assert codec.from_virtual_url("https://example.org/index.html") is None
    scheck("base", "normalized", PathCodec("http://x.invalid/!").virtual_base, "http://x.invalid/!/")

def make_test_resolver(paths : list[str]) -> UrlResolver:
    store = ResourceStore()
    for p in paths:
        store.register(p, b"", "text/html")
    return UrlResolver(PathCodec(), store)

def test_url_resolver() -> None:
    resolver = make_test_resolver(["index.html", "sub/page.html", "sub/a b.png", "café.css"])
    store = resolver.store
    ref = resolver.codec.to_virtual_url("sub/page.html")

    r = resolver.resolve("../index.html?x=1#top", ref)
    assert r.in_archive and r.path == "index.html"
    scheck("query", "final_url", r.final_url, store.resources["index.html"].locator + "#top")
    scheck("query", "query", r.query, "?x=1")
    scheck("query", "fragment", r.fragment, "#top")
    scheck("query", "virtual_url", r.virtual_url, resolver.codec.to_virtual_url("index.html") + "#top")

    r = resolver.resolve("a%20b.png", ref)
    assert r.in_archive and r.path == "sub/a b.png"
    r = resolver.resolve("a b.png", ref)
    assert r.in_archive and r.path == "sub/a b.png"
    r = resolver.resolve("../caf%C3%A9.css", ref)
    assert r.in_archive and r.path == "café.css"

    r = resolver.resolve("#section", ref)
    assert r.in_archive and r.path == "sub/page.html" and r.fragment == "#section"

    # external, made absolute
    r = resolver.resolve("//example.org/x.js", ref)
    scheck("external", "result", r, ResolvedReference("http://example.org/x.js"))
    r = resolver.resolve("https://example.org/", ref)
    scheck("external", "result", r, ResolvedReference("https://example.org/"))
    # escaping the base is external too
    r = resolver.resolve("../../../../elsewhere.html", ref)
    assert not r.in_archive and r.final_url == "http://archview.invalid/elsewhere.html"

    # broken in-archive reference degrades to the original string
    r = resolver.resolve("missing.html#x", ref)
    scheck("missing", "result", r, ResolvedReference("missing.html#x"))

    # malformed URLs degrade too
    r = resolver.resolve("http://[::1", ref)
    scheck("malformed", "result", r, ResolvedReference("http://[::1"))
    r = resolver.resolve("http://example.org:port/", ref)
    scheck("malformed", "result", r, ResolvedReference("http://example.org:port/"))

def test_locate() -> None:
    resolver = make_test_resolver(["index.html", "sub/page.html"])
    codec = resolver.codec

    path, res = resolver.locate(codec.to_virtual_url("sub/page.html"))
    assert path == "sub/page.html" and res is resolver.store.resources[path]

    for url, kind in [(codec.to_virtual_url("sub/missing.html"), NotFound),
                      ("https://example.org/index.html", NotInArchive)]:
        try:
            resolver.locate(url)
        except ViewerError as exc:
            assert type(exc) is kind, url
        else:
            assert False, url
