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

"""The viewer: fetching archive entries with optional rewriting, and what
   the UI needs to navigate between them.
"""

import asyncio as _asyncio
import dataclasses as _dc
import html as _html
import logging as _logging
import typing as _t
import urllib.parse as _up
import xml.etree.ElementTree as _ET

from .exceptions import *
from .wire import scheck, is_absolute_url, split_fragment, parse_refresh_header
from .mime import html_mime, stylesheet_mime, script_mime, document_mime, page_mime, guess_mime_type
from .url import default_virtual_base, PathCodec, UrlResolver
from .chain import RecursionChain
from .store import TransformKind, Resource, default_locator_prefix, ResourceStore
from .css import StylesheetRewriter, marker_prefix
from .html import DocumentRewriter, PageInfo, parse_document, split_tag
from .fetch import Fetcher, NullFetcher
from . import serve_static as _static

@_dc.dataclass
class ViewerOptions:
    virtual_base : str = _dc.field(default=default_virtual_base)
    locator_prefix : str = _dc.field(default=default_locator_prefix)
    index : str = _dc.field(default="index.html")
    subdir : str | None = _dc.field(default=None)
    localize_external : bool = _dc.field(default=False)
    scripts : bool = _dc.field(default=True)
    # `None` means "same as `localize_external`"
    sanitize : bool | None = _dc.field(default=None)
    reset_css : bool = _dc.field(default=True)
    inert_url : str = _dc.field(default="about:blank")

    def __post_init__(self) -> None:
        if self.sanitize is None:
            self.sanitize = self.localize_external

@_dc.dataclass(frozen=True)
class SameArchiveNavigation:
    path : str
    fragment : str
    # `True` when `path` is the currently displayed document
    same_document : bool
    # `True` when the clicked locator already points to a rewritten page
    rewritten : bool

@_dc.dataclass(frozen=True)
class ExternalNavigation:
    url : str

@_dc.dataclass(frozen=True)
class InertNavigation:
    pass

Navigation = SameArchiveNavigation | ExternalNavigation | InertNavigation

web_url_schemes = frozenset(["http", "https", "ftp", "ftps"])
noop_url_schemes = frozenset(["mailto", "irc", "magnet"])

class Viewer:
    def __init__(self, options : ViewerOptions | None = None, fetcher : Fetcher | None = None) -> None:
        if options is None:
            options = ViewerOptions()
        self.options = options
        self.inert_url = options.inert_url
        self.fetcher : Fetcher = fetcher if fetcher is not None else NullFetcher()

        self.codec = PathCodec(options.virtual_base)
        self.store = ResourceStore(options.locator_prefix)
        self.resolver = UrlResolver(self.codec, self.store)
        self.css = StylesheetRewriter(self)
        self.html = DocumentRewriter(self)

        # locators of synthesized redirect notice pages -> their targets
        self.redirects : dict[str, str] = {}
        self._reset_css_locator : str | None = None
        self._sanitize_locator : str | None = None

    async def fetch(self, path : str, transform : TransformKind | None = None, chain : RecursionChain | None = None) -> str | None:
        """Get a locator for archive entry `path`, optionally rewritten.

           Returns `None` when there is no such entry.  Without `transform`
           this always returns the entry's own locator.  With it, the entry
           gets rewritten anew on every call and the result gets a fresh
           locator.
        """
        res = self.store.get(path)
        if res is None:
            _logging.debug("no `%s` in the archive", path)
            return None
        if transform is None:
            return res.locator

        if chain is None:
            chain = RecursionChain()

        ref_url = self.codec.to_virtual_url(path)
        if transform == TransformKind.DOCUMENT:
            content = await self.transform_document(res, chain)
        else:
            content = await self.css.rewrite_file(res.content, ref_url, chain)
        return self.store.register_rewritten(path, transform, content, res.mime)

    async def transform_document(self, res : Resource, chain : RecursionChain) -> bytes:
        if res.mime not in document_mime:
            return res.content
        try:
            return await self.html.rewrite(res.content, res.mime, res.path, chain)
        except ParseFailure as exc:
            exc.elaborate("while rewriting `%s`", res.path)
            _logging.warning("%s", str(exc))
            return res.content

    async def fetch_page(self, path : str, url : str | None, chain : RecursionChain) -> str | None:
        """Rewrite a page and return its new locator with the fragment of `url` attached."""
        located = await self.fetch(path, TransformKind.DOCUMENT, chain)
        if located is None:
            return None
        fragment = split_fragment(url)[1] if url is not None else ""
        return located + fragment

    async def open_root_document(self, index_path : str | None = None, initial_fragment : str = "") -> str | None:
        """Rewrite the root document with an empty chain.

           Returns `None` when `index_path` (or `options.index`) is not in the
           archive.
        """
        path = index_path if index_path is not None else self.options.index
        if path not in self.store:
            _logging.debug("no root document `%s` in the archive", path)
            return None
        if initial_fragment != "" and not initial_fragment.startswith("#"):
            initial_fragment = "#" + initial_fragment
        return await self.fetch_page(path, self.codec.to_virtual_url(path) + initial_fragment, RecursionChain())

    def path_of_locator(self, locator : str) -> str | None:
        return self.store.path_of_locator(split_fragment(locator)[0])

    def resolve_click_target(self, locator : str, target_url : str) -> Navigation:
        """Decide what clicking on `target_url` inside the document shown
           at `locator` should do.
        """
        current = self.path_of_locator(locator)
        url, fragment = split_fragment(target_url.strip())

        if url == "":
            if current is None:
                return InertNavigation()
            return SameArchiveNavigation(current, fragment, True, self.store.is_rewritten(split_fragment(locator)[0]))

        if self.store.is_locator(url):
            path = self.store.path_of_locator(url)
            if path is None:
                _logging.debug("clicked on an unknown or anonymous locator `%s`", url)
                return InertNavigation()
            return SameArchiveNavigation(path, fragment, path == current, self.store.is_rewritten(url))

        scheme = _up.urlsplit(url).scheme.lower() if is_absolute_url(url) else ""
        if scheme in web_url_schemes or scheme in noop_url_schemes:
            return ExternalNavigation(url + fragment)
        return InertNavigation()

    async def follow_link(self, url : str) -> str | None:
        """Handle a click on a link inside a nested frame.

           When `url` is a locator of an archived page that was not rewritten
           yet, rewrite it with an empty chain and return the new locator.
           Returns `None` when the click should proceed as is.
        """
        main, fragment = split_fragment(url)
        if not self.store.is_locator(main) or self.store.is_rewritten(main):
            return None
        entry = self.store.locators.get(main, None)
        if entry is None or entry.path is None or entry.mime not in page_mime:
            return None
        located = await self.fetch_page(entry.path, url, RecursionChain())
        return located if located is not None else self.inert_url

    def redirect_notice(self, url : str) -> str:
        """Synthesize a page that links to `url` without navigating there."""
        page = _static.redirect_notice_html \
            .replace("@URL@", _html.escape(url, True)) \
            .replace("@TEXT@", _html.escape(url, False))
        locator = self.store.issue(page.encode("utf-8"), html_mime[0])
        self.redirects[locator] = url
        return locator

    def redirect_target(self, locator : str) -> str | None:
        return self.redirects.get(split_fragment(locator)[0], None)

    async def localize(self, url : str) -> str:
        """Fetch an external resource and issue an anonymous locator for it."""
        data, mime = await self.fetcher.fetch_bytes(url)
        return self.store.issue(data, mime)

    def reset_css_locator(self) -> str:
        if self._reset_css_locator is None:
            self._reset_css_locator = self.store.issue(_static.reset_css.encode("utf-8"), stylesheet_mime[0])
        return self._reset_css_locator

    def sanitize_locator(self) -> str:
        if self._sanitize_locator is None:
            self._sanitize_locator = self.store.issue(_static.sanitize_js.encode("utf-8"), script_mime[0])
        return self._sanitize_locator

    def page_info(self, path : str) -> PageInfo:
        res = self.store.get(path)
        if res is None:
            raise NotFound("no `%s` in the archive", path)
        if res.mime not in page_mime:
            return PageInfo()
        return self.html.page_info(res.content, res.mime, path)

    def close(self) -> None:
        self.redirects.clear()
        self.store.close()

    def __enter__(self) -> "Viewer":
        return self

    def __exit__(self, *args : _t.Any) -> None:
        self.close()

def make_test_viewer(files : dict[str, str | bytes], **kwargs : _t.Any) -> Viewer:
    fetcher = kwargs.pop("fetcher", None)
    viewer = Viewer(ViewerOptions(**kwargs), fetcher)
    for path, data in files.items():
        bdata = data.encode("utf-8") if isinstance(data, str) else data
        viewer.store.register(path, bdata, guess_mime_type(path, bdata))
    return viewer

def elements_of(viewer : Viewer, locator : str, name : str) -> list[_ET.Element]:
    entry = viewer.store.entry(split_fragment(locator)[0])
    doc = parse_document(entry.content, entry.mime)
    return [e for e in doc.root.iter() if isinstance(e.tag, str) and split_tag(e.tag)[1] == name]

def content_of(viewer : Viewer, locator : str) -> str:
    return viewer.store.entry(split_fragment(locator)[0]).content.decode("utf-8")

def test_self_links() -> None:
    viewer = make_test_viewer({
        "index.html": """<!DOCTYPE html><title>Index</title>
<a href="#section">1</a>
<a href="index.html#other">2</a>
<a href="">3</a>
<a href="page.html#x">4</a>
<a href="https://example.org/">5</a>
<svg><a href="#s"><use xlink:href="index.html#icon"/></a></svg>
<math><mi href="index.html">x</mi></math>
""",
        "page.html": "<p>page</p>",
    })
    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None
    assert viewer.store.is_rewritten(locator)
    assert viewer.path_of_locator(locator) == "index.html"

    hrefs = [a.get("href") for a in elements_of(viewer, locator, "a")]
    page = viewer.store.resources["page.html"].locator
    scheck("anchors", "hrefs", hrefs, ["#section", "#other", "#", page + "#x", "https://example.org/", "#s"])

    use = elements_of(viewer, locator, "use")[0]
    scheck("svg", "xlink:href", use.get("{http://www.w3.org/1999/xlink}href"), "#icon")
    mi = elements_of(viewer, locator, "mi")[0]
    scheck("math", "href", mi.get("href"), "#")
    assert "xlink:href=" in content_of(viewer, locator)

def test_frame_cycle() -> None:
    viewer = make_test_viewer({
        "a.html": '<iframe src="b.html#top"></iframe>',
        "b.html": '<frameset><frame src="a.html"><frame src="c.html"></frameset>',
        "c.html": "<p>leaf</p>",
    })
    locator = _asyncio.run(viewer.open_root_document("a.html"))
    assert locator is not None

    src = elements_of(viewer, locator, "iframe")[0].get("src")
    assert src is not None and src.endswith("#top")
    assert viewer.store.is_rewritten(split_fragment(src)[0])
    assert viewer.path_of_locator(src) == "b.html"

    frames = elements_of(viewer, src, "frame")
    scheck("cycle", "src", frames[0].get("src"), "about:blank")
    leaf = frames[1].get("src")
    assert leaf is not None and viewer.path_of_locator(leaf) == "c.html"
    assert viewer.store.is_rewritten(leaf)

def refresh_content(viewer : Viewer, locator : str) -> str:
    for meta in elements_of(viewer, locator, "meta"):
        if meta.get("http-equiv", "").lower() == "refresh":
            content = meta.get("content")
            assert content is not None
            return content
    raise CatastrophicFailure("no `meta refresh` in `%s`", locator)

def test_meta_refresh() -> None:
    viewer = make_test_viewer({
        "self.html": '<meta http-equiv="refresh" content="0;url=#section">',
        "self2.html": '<meta http-equiv="Refresh" content="3; URL=self2.html">',
        "cross.html": '<meta http-equiv="refresh" content="0;url=b.html#x">',
        "b.html": '<meta http-equiv="refresh" content="1;url=cross.html">',
        "ext.html": '<meta http-equiv="refresh" content="5;url=https://example.org/x?q=1&amp;r=2#frag">',
        "none.html": '<meta http-equiv="refresh" content="7">',
    })

    def refresh_of(path : str) -> tuple[str, str]:
        locator = _asyncio.run(viewer.open_root_document(path))
        assert locator is not None
        return locator, refresh_content(viewer, locator)

    scheck("self", "content", refresh_of("self.html")[1], "0;url=#section")
    scheck("self2", "content", refresh_of("self2.html")[1], "3")
    scheck("none", "content", refresh_of("none.html")[1], "7")

    _, content = refresh_of("cross.html")
    secs, url = parse_refresh_header(content)
    assert secs == 0 and url is not None and url.endswith("#x")
    assert viewer.path_of_locator(url) == "b.html"
    assert viewer.store.is_rewritten(split_fragment(url)[0])
    # b.html refreshes back to cross.html, which is in its chain
    back = refresh_content(viewer, url)
    scheck("cycle", "content", back, "1;url=about:blank")

    _, content = refresh_of("ext.html")
    secs, url = parse_refresh_header(content)
    assert secs == 5 and url is not None and url.endswith("#frag")
    assert viewer.path_of_locator(url) is None
    target = "https://example.org/x?q=1&r=2#frag"
    scheck("external", "redirect_target", viewer.redirect_target(url), target)
    notice = content_of(viewer, url)
    assert _static.meta_refresh_marker_attr in notice
    assert 'href="https://example.org/x?q=1&amp;r=2#frag"' in notice

def test_stylesheet_placeholders() -> None:
    viewer = make_test_viewer({
        "index.html": '<link rel="stylesheet" href="style.css"><p style="background: url(img/bg.png)">x</p>',
        "style.css": '@import url(imported.css);\n@import "style.css";\nbody { background: url("img/bg.png") }\n.x { background: url(https://example.org/e.png) }\n',
        "imported.css": "@import url(style.css);\n@font-face { font-family: f; src: url(font.woff) format('woff') }\n",
        "font.woff": b"wOFF....",
        "img/bg.png": b"\x89PNG\x0d\x0a\x1a\x0a....",
    })
    store = viewer.store
    v = viewer.codec.to_virtual_url
    bg = store.resources["img/bg.png"].locator

    async def resolve() -> tuple[str, _t.Any]:
        text = store.resources["style.css"].content.decode("utf-8")
        scanned, table = viewer.css.scan(text)
        await viewer.css.resolve(table, RecursionChain([v("index.html"), v("style.css")]))
        return table.substitute(scanned), table

    out, table = _asyncio.run(resolve())
    assert len(table) == 4 and table.substituted == 4
    assert marker_prefix not in out
    finals = [ph.final for ph in table.entries.values()]
    assert finals[1] == "about:blank"
    assert finals[2] == bg
    assert finals[3] == "https://example.org/e.png"
    assert finals[0] is not None and store.path_of_locator(finals[0]) == "imported.css"
    assert store.is_rewritten(finals[0])
    imported = content_of(viewer, finals[0])
    assert "@import url(about:blank);" in imported
    assert "url(" + store.resources["font.woff"].locator + ") format('woff')" in imported
    assert out.endswith("\n.x { background: url(https://example.org/e.png) }\n")

    # the whole thing, through a document
    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None
    href = elements_of(viewer, locator, "link")[-1].get("href")
    assert href is not None and store.path_of_locator(href) == "style.css" and store.is_rewritten(href)
    css = content_of(viewer, href)
    assert marker_prefix not in css
    assert "url(" + bg + ")" in css
    p = elements_of(viewer, locator, "p")[0]
    scheck("style attr", "style", p.get("style"), f"background: url({bg})")

def test_stylesheet_charset() -> None:
    latin1 = "@charset \"iso-8859-1\";\na { content: '\\2603 caf\xe9' }\nb { background: url(img.png) }\n".encode("latin-1")
    viewer = make_test_viewer({
        "latin1.css": latin1,
        "bom.css": b"\xef\xbb\xbfi { background: url('img.png') } /* \xc3\xa9 */",
        "plain.css": b"p { color: red }",
        "img.png": b"\x89PNG\x0d\x0a\x1a\x0a",
    })
    img = viewer.store.resources["img.png"].locator.encode("ascii")

    async def rewrite(path : str) -> bytes:
        located = await viewer.fetch(path, TransformKind.STYLESHEET)
        assert located is not None
        return viewer.store.entry(located).content

    scheck("latin1", "content", _asyncio.run(rewrite("latin1.css")), latin1.replace(b"url(img.png)", b"url(" + img + b")"))
    scheck("bom", "content", _asyncio.run(rewrite("bom.css")), b"\xef\xbb\xbfi { background: url(" + img + b") } /* \xc3\xa9 */")
    scheck("plain", "content", _asyncio.run(rewrite("plain.css")), b"p { color: red }")

def test_missing_resources_degrade() -> None:
    viewer = make_test_viewer({
        "index.html": """<link rel="stylesheet" href="missing.css">
<style>@import "gone.css"; p { background: url(nope.png) }</style>
<img src="missing.png" srcset="missing.png 1x, there.png 2x">
<iframe src="nope.html#f"></iframe>
<a href="nope.html">x</a>
<a href="http://[::1">y</a>
""",
        "there.png": b"\x89PNG\x0d\x0a\x1a\x0a....",
    })
    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None

    img = elements_of(viewer, locator, "img")[0]
    scheck("img", "src", img.get("src"), "missing.png")
    scheck("img", "srcset", img.get("srcset"), "missing.png 1x, " + viewer.store.resources["there.png"].locator + " 2x")
    scheck("iframe", "src", elements_of(viewer, locator, "iframe")[0].get("src"), "nope.html#f")
    scheck("a", "hrefs", [a.get("href") for a in elements_of(viewer, locator, "a")], ["nope.html", "http://[::1"])
    scheck("link", "href", elements_of(viewer, locator, "link")[-1].get("href"), "missing.css")
    style = elements_of(viewer, locator, "style")[0].text
    scheck("style", "text", style, '@import url(gone.css); p { background: url(nope.png) }')

    assert _asyncio.run(viewer.open_root_document("nope.html")) is None

def test_locator_idempotence() -> None:
    viewer = make_test_viewer({"a.png": b"\x89PNG\x0d\x0a\x1a\x0a", "b.html": "<p>b</p>"})

    async def run() -> None:
        l1 = await viewer.fetch("a.png")
        l2 = await viewer.fetch("a.png")
        assert l1 is not None and l1 == l2
        d1 = await viewer.fetch("b.html", TransformKind.DOCUMENT)
        d2 = await viewer.fetch("b.html", TransformKind.DOCUMENT)
        assert d1 is not None and d2 is not None and d1 != d2
        assert viewer.path_of_locator(d1) == viewer.path_of_locator(d2) == "b.html"
        assert await viewer.fetch("missing.png") is None
    _asyncio.run(run())

def test_unparsable_document() -> None:
    broken = b'<?xml version="1.0"?><html xmlns="http://www.w3.org/1999/xhtml"><body><p></body></html>'
    viewer = make_test_viewer({"index.xhtml": broken})
    locator = _asyncio.run(viewer.open_root_document("index.xhtml"))
    assert locator is not None
    assert viewer.store.entry(locator).content == broken

def test_xhtml() -> None:
    viewer = make_test_viewer({
        "index.xhtml": """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Strict//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-strict.dtd">
<html xmlns="http://www.w3.org/1999/xhtml"><head><title>T&nbsp;</title></head>
<body><img src="a.svg"/><a href="#top">top</a></body></html>""",
        "a.svg": """<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink"><image xlink:href="b.png"/><a href="a.svg#x"/></svg>""",
        "b.png": b"\x89PNG\x0d\x0a\x1a\x0a",
    })
    locator = _asyncio.run(viewer.open_root_document("index.xhtml"))
    assert locator is not None
    out = content_of(viewer, locator)
    assert out.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE html PUBLIC')
    assert '<html xmlns="http://www.w3.org/1999/xhtml">' in out
    # the reset stylesheet goes first into `<head>`
    link = elements_of(viewer, locator, "link")[0]
    scheck("reset", "href", link.get("href"), viewer.reset_css_locator())
    scheck("img", "src", elements_of(viewer, locator, "img")[0].get("src"), viewer.store.resources["a.svg"].locator)
    scheck("a", "href", elements_of(viewer, locator, "a")[0].get("href"), "#top")

    svg = _asyncio.run(viewer.fetch("a.svg", TransformKind.DOCUMENT))
    assert svg is not None
    scheck("svg", "image", elements_of(viewer, svg, "image")[0].get("{http://www.w3.org/1999/xlink}href"), viewer.store.resources["b.png"].locator)
    scheck("svg", "a", elements_of(viewer, svg, "a")[0].get("href"), "#x")
    # not a page
    assert len(elements_of(viewer, svg, "link")) == 0

class DictFetcher:
    def __init__(self, data : dict[str, tuple[bytes, str]]) -> None:
        self.data = data

    async def fetch_bytes(self, url : str) -> tuple[bytes, str]:
        try:
            return self.data[url]
        except KeyError:
            raise FetchFailure("can't fetch `%s`", url)

def test_localize_external() -> None:
    fetcher = DictFetcher({
        "https://cdn.example.org/lib.js": (b"lib()", "text/javascript"),
        "https://example.org/movie.swf": (b"FWS", "application/x-shockwave-flash"),
    })
    viewer = make_test_viewer({
        "index.html": """<head><title>x</title></head>
<script src="https://cdn.example.org/lib.js"></script>
<script src="https://cdn.example.org/missing.js"></script>
<script src="local.js"></script>
<script>inline()</script>
<embed src="https://example.org/movie.swf">
<object data="https://example.org/missing.swf"></object>
""",
        "local.js": "local()",
    }, localize_external=True, fetcher=fetcher)
    assert viewer.options.sanitize

    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None
    store = viewer.store

    scripts = elements_of(viewer, locator, "script")
    # sanitizing script first, then the reset stylesheet
    scheck("sanitize", "src", scripts[0].get("src"), viewer.sanitize_locator())
    head = [split_tag(e.tag)[1] for e in elements_of(viewer, locator, "head")[0]]
    scheck("head", "children", head, ["script", "link", "meta", "title"])
    assert content_of(viewer, locator).count("<meta") == 1

    lib = scripts[1].get("src")
    assert lib is not None and store.entry(lib).content == b"lib()" and store.path_of_locator(lib) is None
    scheck("missing script", "src", scripts[2].get("src"), "about:blank")
    scheck("local script", "src", scripts[3].get("src"), store.resources["local.js"].locator)
    inline = scripts[4].get("src")
    assert inline is not None and store.entry(inline).content == b"inline()"
    assert (scripts[4].text or "") == ""

    embed = elements_of(viewer, locator, "embed")[0].get("src")
    assert embed is not None and store.entry(embed).content == b"FWS"
    # plugin failures leave the reference alone
    scheck("object", "data", elements_of(viewer, locator, "object")[0].get("data"), "https://example.org/missing.swf")

def test_no_scripts() -> None:
    viewer = make_test_viewer({
        "index.html": '<script src="a.js"></script><script>inline()</script><p>x',
        "a.js": "a()",
    }, scripts=False, reset_css=False)
    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None
    scripts = elements_of(viewer, locator, "script")
    assert len(scripts) == 2
    scheck("script", "src", scripts[0].get("src"), "about:blank")
    scheck("inline", "text", scripts[1].text, "inline()")
    assert len(elements_of(viewer, locator, "link")) == 0

def test_click_targets() -> None:
    viewer = make_test_viewer({
        "index.html": '<title> The Index </title><link rel="shortcut icon" href="favicon.ico"><a href="page.html#p">x</a>',
        "page.html": "<p>page</p>",
        "favicon.ico": b"\x00\x00\x01\x00",
    })
    store = viewer.store
    locator = _asyncio.run(viewer.open_root_document())
    assert locator is not None
    page = store.resources["page.html"].locator

    scheck("click", "fragment", viewer.resolve_click_target(locator, "#sec"),
           SameArchiveNavigation("index.html", "#sec", True, True))
    scheck("click", "other page", viewer.resolve_click_target(locator, page + "#p"),
           SameArchiveNavigation("page.html", "#p", False, False))
    scheck("click", "external", viewer.resolve_click_target(locator, "https://example.org/#a"),
           ExternalNavigation("https://example.org/#a"))
    scheck("click", "mailto", viewer.resolve_click_target(locator, "mailto:me@example.org"),
           ExternalNavigation("mailto:me@example.org"))
    scheck("click", "inert", viewer.resolve_click_target(locator, "about:blank"), InertNavigation())
    scheck("click", "javascript", viewer.resolve_click_target(locator, "javascript:void(0)"), InertNavigation())
    scheck("click", "relative", viewer.resolve_click_target(locator, "page.html"), InertNavigation())
    scheck("click", "unknown", viewer.resolve_click_target(locator, viewer.options.locator_prefix + "nope"), InertNavigation())
    scheck("click", "anonymous", viewer.resolve_click_target(locator, viewer.reset_css_locator()), InertNavigation())

    followed = _asyncio.run(viewer.follow_link(page + "#p"))
    assert followed is not None and followed.endswith("#p")
    assert store.is_rewritten(split_fragment(followed)[0])
    assert _asyncio.run(viewer.follow_link(followed)) is None
    assert _asyncio.run(viewer.follow_link("https://example.org/")) is None
    assert _asyncio.run(viewer.follow_link(store.resources["favicon.ico"].locator)) is None

    info = viewer.page_info("index.html")
    scheck("page_info", "title", info.title, "The Index")
    scheck("page_info", "icon", info.icon, store.resources["favicon.ico"].locator)

    viewer.close()
    assert viewer.path_of_locator(locator) is None
