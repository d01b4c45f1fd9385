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

"""Parsing, rewriting, and serialization of HTML, XHTML, and SVG documents.

   HTML is parsed with `html5lib` into an `xml.etree` tree, XHTML and SVG
   are parsed with `xml.etree` directly, so both end up as the same kind of
   tree and share a single set of rewriting rules.
"""

import asyncio as _asyncio
import dataclasses as _dc
import html.entities as _he
import logging as _logging
import re as _re
import typing as _t
import xml.etree.ElementTree as _ET

import html5lib as _h5
import html5lib.filters.base as _h5fb

from .exceptions import *
from .parser import ParseError
from .wire import scheck, split_fragment, parse_refresh_header, unparse_refresh_header, parse_srcset_attr, unparse_srcset_attr
from .mime import html_mime, script_mime, page_mime
from .chain import RecursionChain
from .store import TransformKind

if _t.TYPE_CHECKING:
    from .viewer import Viewer

htmlns = _h5.constants.namespaces["html"]
svgns = _h5.constants.namespaces["svg"]
mathmlns = _h5.constants.namespaces["mathml"]
xlinkns = _h5.constants.namespaces["xlink"]
xmlns = _h5.constants.namespaces["xml"]
xmlnsns = _h5.constants.namespaces["xmlns"]

_ET.register_namespace("svg", svgns)
_ET.register_namespace("xlink", xlinkns)
_ET.register_namespace("mathml", mathmlns)

xlink_href_attr = f"{{{xlinkns}}}href"

tag_re = _re.compile(r"^(?:\{([^}]*)\})?(.*)$")

def split_tag(tag : str) -> tuple[str | None, str]:
    m = tag_re.match(tag)
    assert m is not None
    return m.group(1), m.group(2)

og_url_properties = frozenset([
    "og:image", "og:image:url", "og:image:secure_url",
    "og:audio", "og:audio:url", "og:audio:secure_url",
    "og:video", "og:video:url", "og:video:secure_url",
    "og:url",
])

legacy_background_elements = frozenset(["body", "table", "tr", "th", "td"])

# elements whose contents is not markup
raw_text_elements = frozenset(["style", "script"])

word_re = _re.compile(r"\S+")

def rels_of(elem : _ET.Element) -> list[str]:
    return [r.lower() for r in word_re.findall(elem.get("rel", ""))]

def is_charset_meta(elem : _ET.Element) -> bool:
    if not isinstance(elem.tag, str) or split_tag(elem.tag)[1].lower() != "meta":
        return False
    return "charset" in elem.attrib or \
        (elem.get("http-equiv", "").lower() == "content-type" and "content" in elem.attrib)

class ForeignAttributesFilter(_h5fb.Filter):
    """`html5lib` serializer ignores attribute namespaces, so `xlink:href`
       would come out as a plain `href`.  This puts the prefixes back.
    """

    prefixes = {
        xlinkns: "xlink:",
        xmlns: "xml:",
        xmlnsns: "xmlns:",
    }

    def __iter__(self) -> _t.Iterator[dict[str, _t.Any]]:
        for token in super().__iter__():
            if token["type"] in ("StartTag", "EmptyTag") and token["namespace"] != htmlns:
                data = token["data"]
                if any(ns is not None for ns, _ in data):
                    ndata = {}
                    for (ns, name), value in data.items():
                        prefix = self.prefixes.get(ns, None) if ns is not None else None
                        if prefix is not None:
                            ns, name = None, (name if prefix == "xmlns:" and name == "xmlns" else prefix + name)
                        ndata[(ns, name)] = value
                    token["data"] = ndata
            yield token

_html5treebuilder = _h5.treebuilders.getTreeBuilder("etree", fullTree=True)
_html5parser = _h5.html5parser.HTMLParser(_html5treebuilder)
_html5walker = _h5.treewalkers.getTreeWalker("etree")
_html5serializer = _h5.serializer.HTMLSerializer(strip_whitespace = False, omit_optional_tags = False)

xml_prolog_re = _re.compile(rb"^(?:\xef\xbb\xbf)?((?:\s+|<\?[\s\S]*?\?>|<!--[\s\S]*?-->|<!DOCTYPE(?:[^>\[]|\[[^\]]*\])*>)*)", flags=_re.IGNORECASE)
xml_decl_encoding_re = _re.compile(r"""(<\?xml[^>]*\sencoding\s*=\s*)(["'])[^"']*\2""")

xml_entities = {k: chr(v) for k, v in _he.name2codepoint.items()}

class Document:
    """A parsed document: its tree and what is needed to serialize it back."""

    def __init__(self, mime : str, dom : _ET.Element, root : _ET.Element, prolog : str = "") -> None:
        self.mime = mime
        # the whole tree, for HTML this includes the doctype
        self.dom = dom
        # the document element
        self.root = root
        self.prolog = prolog

    @property
    def is_html(self) -> bool:
        return self.mime in html_mime

    def head(self) -> _ET.Element | None:
        for child in self.root:
            if isinstance(child.tag, str) and split_tag(child.tag)[1].lower() == "head":
                return child
        return None

    def serialize(self) -> bytes:
        if self.is_html:
            walker = ForeignAttributesFilter(_html5walker(self.dom))
            return _html5serializer.render(walker, "utf-8") # type: ignore

        # `default_namespace` of `tostring` refuses unqualified attributes, so
        # elements of the root namespace are un-qualified and the namespace is
        # declared explicitly instead
        root = self.root
        ns, _ = split_tag(root.tag)
        if ns is not None:
            prefix = f"{{{ns}}}"
            for elem in root.iter():
                if isinstance(elem.tag, str) and elem.tag.startswith(prefix):
                    elem.tag = elem.tag[len(prefix):]
            attrs = {"xmlns": ns}
            attrs.update((k, v) for k, v in root.attrib.items() if k != "xmlns")
            root.attrib = attrs
        body = _ET.tostring(root, encoding="unicode")
        return (self.prolog + body).encode("utf-8")

def parse_document(data : bytes, mime : str) -> Document:
    """Parse an HTML, XHTML, or SVG document, raising `ParseFailure` on failure."""

    if mime in html_mime:
        dom = _html5parser.parse(data)
        for child in dom:
            if isinstance(child.tag, str) and child.tag == f"{{{htmlns}}}html":
                return Document(mime, dom, child)
        raise ParseFailure("no document element")

    m = xml_prolog_re.match(data)
    prolog = m.group(1).decode("utf-8", "replace") if m is not None else ""
    prolog = xml_decl_encoding_re.sub(r"\1\2UTF-8\2", prolog)

    parser = _ET.XMLParser(target=_ET.TreeBuilder(insert_comments=True, insert_pis=True))
    parser.entity.update(xml_entities)
    try:
        parser.feed(data)
        root = parser.close()
    except _ET.ParseError as exc:
        raise ParseFailure("malformed XML: %s", str(exc))
    return Document(mime, root, root, prolog)

def test_parse_document() -> None:
    doc = parse_document(b"<!DOCTYPE html><title>t</title><p>hi", "text/html")
    assert doc.root.tag == f"{{{htmlns}}}html"
    assert doc.head() is not None
    out = doc.serialize()
    assert out.startswith(b"<!DOCTYPE html>")
    assert b"<p>hi</p>" in out

    svg = b"""<?xml version="1.0" encoding="ISO-8859-1"?>
<!DOCTYPE svg PUBLIC "-//W3C//DTD SVG 1.1//EN" "http://www.w3.org/Graphics/SVG/1.1/DTD/svg11.dtd">
<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink"><use xlink:href="#a"/></svg>"""
    doc = parse_document(svg, "image/svg+xml")
    assert doc.head() is None
    out = doc.serialize().decode("utf-8")
    assert out.startswith('<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE svg PUBLIC')
    assert '<svg xmlns:xlink="http://www.w3.org/1999/xlink" xmlns="http://www.w3.org/2000/svg">' in out
    assert 'xlink:href="#a"' in out

    try:
        parse_document(b"<svg><unclosed></svg>", "image/svg+xml")
    except ParseFailure:
        pass
    else:
        assert False

def test_foreign_attributes() -> None:
    doc = parse_document(b'<svg xmlns:xlink="http://www.w3.org/1999/xlink"><a xlink:href="x.html" href="y.html"/></svg>', "text/html")
    out = doc.serialize().decode("utf-8")
    # unquoted, as values have no special characters
    assert "xlink:href=x.html" in out
    assert " href=y.html" in out
    assert 'xmlns:xlink="http://www.w3.org/1999/xlink"' in out

def test_xml_unqualified_attributes() -> None:
    doc = parse_document(b"""<?xml version="1.0"?>
<html xmlns="http://www.w3.org/1999/xhtml" lang="en"><head><title>t</title></head><body><svg xmlns="http://www.w3.org/2000/svg" width="1"><rect x="0"/></svg></body></html>""", "application/xhtml+xml")
    head = doc.head()
    assert head is not None
    head.insert(0, _ET.Element(f"{{{htmlns}}}link", {"rel": "stylesheet", "href": "r.css"}))
    out = doc.serialize().decode("utf-8")
    scheck("xhtml", "serialized", out, """<?xml version="1.0"?>
<html xmlns:svg="http://www.w3.org/2000/svg" xmlns="http://www.w3.org/1999/xhtml" lang="en"><head><link rel="stylesheet" href="r.css" /><title>t</title></head><body><svg:svg width="1"><svg:rect x="0" /></svg:svg></body></html>""")

@_dc.dataclass
class RewriteContext:
    path : str
    # virtual URL of the document being rewritten
    ref_url : str
    chain : RecursionChain
    tasks : list[_asyncio.Future[None]] = _dc.field(default_factory=list)

    def spawn(self, coro : _t.Coroutine[_t.Any, _t.Any, None]) -> None:
        self.tasks.append(_asyncio.ensure_future(coro))

@_dc.dataclass
class PageInfo:
    title : str | None = _dc.field(default=None)
    icon : str | None = _dc.field(default=None)

class DocumentRewriter:
    def __init__(self, viewer : "Viewer") -> None:
        self.viewer = viewer

    async def rewrite(self, data : bytes, mime : str, path : str, chain : RecursionChain) -> bytes:
        """Rewrite all references in a document loaded from `path`.

           All sub-resource fetches spawned while walking the tree are joined
           before serialization.  Raises `ParseFailure` when the document
           can not be parsed at all.
        """
        doc = parse_document(data, mime)
        viewer = self.viewer
        ctx = RewriteContext(path, viewer.codec.to_virtual_url(path), chain)

        self.walk(ctx, doc.root)

        if mime in page_mime:
            self.insert_head_elements(doc)

        if len(ctx.tasks) > 0:
            results = await _asyncio.gather(*ctx.tasks, return_exceptions=True)
            for r in results:
                if isinstance(r, BaseException):
                    _logging.warning("while rewriting `%s`: %s", path, str(r))

        return doc.serialize()

    def walk(self, ctx : RewriteContext, root : _ET.Element) -> None:
        """Visit every element under `root` in document order.
           Children of an element are skipped when its visit returns `False`.
        """
        stack : list[tuple[_ET.Element, str]] = [(root, split_tag(root.tag)[1].lower())]
        while len(stack) > 0:
            elem, root_name = stack.pop()
            if not isinstance(elem.tag, str):
                # comments and processing instructions
                continue

            name = split_tag(elem.tag)[1].lower()
            if name in ("svg", "math"):
                root_name = name

            if not self.visit(ctx, elem, name, root_name):
                continue

            children = [(child, root_name) for child in elem]
            children.reverse()
            stack += children

    def resolve_url(self, ctx : RewriteContext, url : str) -> str:
        return self.viewer.resolver.resolve(url, ctx.ref_url).final_url

    def rewrite_attr(self, ctx : RewriteContext, elem : _ET.Element, attr : str) -> str | None:
        value = elem.get(attr, None)
        if value is None:
            return None
        res = self.resolve_url(ctx, value)
        elem.set(attr, res)
        return res

    def rewrite_link_attr(self, ctx : RewriteContext, elem : _ET.Element, attr : str) -> None:
        value = elem.get(attr, None)
        if value is None:
            return
        info = self.viewer.resolver.resolve(value, ctx.ref_url)
        if info.in_archive and info.path == ctx.path:
            # link to self
            elem.set(attr, info.fragment or "#")
        else:
            elem.set(attr, info.final_url)

    def rewrite_srcset_attr(self, ctx : RewriteContext, elem : _ET.Element, attr : str) -> None:
        value = elem.get(attr, None)
        if value is None:
            return
        try:
            srcset = parse_srcset_attr(value)
        except ParseError as exc:
            _logging.debug("not rewriting `%s` in `%s`: %s", attr, ctx.path, str(exc))
            return
        elem.set(attr, unparse_srcset_attr([(self.resolve_url(ctx, url), cond) for url, cond in srcset]))

    def visit(self, ctx : RewriteContext, elem : _ET.Element, name : str, root_name : str) -> bool:
        viewer = self.viewer

        if root_name == "svg":
            self.rewrite_link_attr(ctx, elem, "href")
            self.rewrite_link_attr(ctx, elem, xlink_href_attr)
            if name == "style":
                self.rewrite_style_text(ctx, elem)
        elif root_name == "math":
            self.rewrite_link_attr(ctx, elem, "href")
        elif name == "meta":
            if elem.get("http-equiv", "").lower() == "refresh" and "content" in elem.attrib:
                self.rewrite_meta_refresh(ctx, elem)
            elif elem.get("property", "").lower() in og_url_properties:
                self.rewrite_attr(ctx, elem, "content")
        elif name == "link":
            href = elem.get("href", None)
            if href is not None:
                if "stylesheet" in rels_of(elem):
                    self.rewrite_stylesheet_link(ctx, elem, href)
                else:
                    self.rewrite_attr(ctx, elem, "href")
        elif name == "style":
            self.rewrite_style_text(ctx, elem)
        elif name == "script":
            self.rewrite_script(ctx, elem)
        elif name in legacy_background_elements:
            self.rewrite_attr(ctx, elem, "background")
        elif name in ("frame", "iframe"):
            src = elem.get("src", None)
            if src is not None:
                self.rewrite_frame(ctx, elem, src)
        elif name in ("a", "area"):
            self.rewrite_link_attr(ctx, elem, "href")
        elif name in ("img", "source"):
            self.rewrite_attr(ctx, elem, "src")
            self.rewrite_srcset_attr(ctx, elem, "srcset")
        elif name in ("audio", "track"):
            self.rewrite_attr(ctx, elem, "src")
        elif name == "video":
            self.rewrite_attr(ctx, elem, "src")
            self.rewrite_attr(ctx, elem, "poster")
        elif name == "embed":
            self.rewrite_plugin_attr(ctx, elem, "src")
        elif name == "object":
            self.rewrite_plugin_attr(ctx, elem, "data")
        elif name == "applet":
            self.rewrite_plugin_attr(ctx, elem, "code")
            self.rewrite_plugin_attr(ctx, elem, "archive")
        elif name == "form":
            self.rewrite_attr(ctx, elem, "action")
        elif name == "input":
            if elem.get("type", "").lower() == "image":
                self.rewrite_attr(ctx, elem, "src")

        style = elem.get("style", None)
        if style is not None:
            async def rewrite_style_attr() -> None:
                elem.set("style", await viewer.css.rewrite_text(style, ctx.ref_url, ctx.chain))
            ctx.spawn(rewrite_style_attr())

        return name not in raw_text_elements

    def rewrite_style_text(self, ctx : RewriteContext, elem : _ET.Element) -> None:
        text = elem.text
        if text is None or text == "":
            return

        async def sub() -> None:
            elem.text = await self.viewer.css.rewrite_text(text, ctx.ref_url, ctx.chain)
        ctx.spawn(sub())

    def rewrite_stylesheet_link(self, ctx : RewriteContext, elem : _ET.Element, href : str) -> None:
        viewer = self.viewer
        info = viewer.resolver.resolve(href, ctx.ref_url)
        elem.set("href", info.final_url)
        if not info.in_archive:
            return
        assert info.path is not None
        path = info.path

        async def sub() -> None:
            # imports get their own chain
            located = await viewer.fetch(path, TransformKind.STYLESHEET, RecursionChain().append(ctx.ref_url))
            if located is not None:
                elem.set("href", located)
        ctx.spawn(sub())

    def rewrite_frame(self, ctx : RewriteContext, elem : _ET.Element, src : str) -> None:
        viewer = self.viewer
        frame_chain = ctx.chain.append(ctx.ref_url)
        info = viewer.resolver.resolve(src, ctx.ref_url)
        elem.set("src", info.final_url)
        if not info.in_archive:
            return
        assert info.path is not None
        path = info.path

        try:
            frame_chain.check(viewer.codec.to_virtual_url(path))
        except Cycle as exc:
            _logging.debug("in `%s`: %s", ctx.path, str(exc))
            elem.set("src", viewer.inert_url)
            return

        async def sub() -> None:
            located = await viewer.fetch_page(path, info.final_url, frame_chain)
            if located is not None:
                elem.set("src", located)
        ctx.spawn(sub())

    def rewrite_meta_refresh(self, ctx : RewriteContext, elem : _ET.Element) -> None:
        viewer = self.viewer
        content = elem.get("content", "")
        try:
            secs, url = parse_refresh_header(content)
        except ParseError as exc:
            _logging.debug("not rewriting `meta refresh` in `%s`: %s", ctx.path, str(exc))
            return
        if url is None:
            return

        info = viewer.resolver.resolve(url, ctx.ref_url)
        source_page, _ = split_fragment(ctx.ref_url)
        target_page, target_hash = split_fragment(info.virtual_url if info.virtual_url is not None else info.final_url)

        if target_page == source_page:
            elem.set("content", unparse_refresh_header(secs, target_hash if target_hash != "" else None))
        elif ctx.chain.would_cycle(target_page):
            _logging.debug("`%s` has a circular reference to `%s`", ctx.path, target_page)
            elem.set("content", unparse_refresh_header(secs, viewer.inert_url))
        elif info.in_archive:
            assert info.path is not None
            path = info.path
            elem.set("content", unparse_refresh_header(secs, info.final_url))

            async def sub() -> None:
                located = await viewer.fetch_page(path, info.final_url, ctx.chain.append(ctx.ref_url))
                if located is not None:
                    elem.set("content", unparse_refresh_header(secs, located))
            ctx.spawn(sub())
        else:
            # never navigate out of the archive automatically
            notice = viewer.redirect_notice(info.final_url)
            elem.set("content", unparse_refresh_header(secs, notice + target_hash))

    def rewrite_script(self, ctx : RewriteContext, elem : _ET.Element) -> None:
        viewer = self.viewer
        opts = viewer.options

        src = elem.get("src", None)
        if src is not None:
            if not opts.scripts:
                elem.set("src", viewer.inert_url)
                return
            url = self.rewrite_attr(ctx, elem, "src")
            assert url is not None
            if opts.localize_external and not viewer.store.is_locator(url):
                self.localize_attr(ctx, elem, "src", url, True)
        elif opts.localize_external and opts.scripts:
            text = elem.text
            if text is not None and text != "":
                elem.set("src", viewer.store.issue(text.encode("utf-8"), script_mime[0]))
                elem.text = ""

    def rewrite_plugin_attr(self, ctx : RewriteContext, elem : _ET.Element, attr : str) -> None:
        url = self.rewrite_attr(ctx, elem, attr)
        if url is None:
            return
        viewer = self.viewer
        if viewer.options.localize_external and not viewer.store.is_locator(url):
            self.localize_attr(ctx, elem, attr, url, False)

    def localize_attr(self, ctx : RewriteContext, elem : _ET.Element, attr : str, url : str, neutralize : bool) -> None:
        viewer = self.viewer

        async def sub() -> None:
            try:
                elem.set(attr, await viewer.localize(url))
            except FetchFailure as exc:
                _logging.warning("while localizing `%s` referenced from `%s`: %s", url, ctx.path, str(exc))
                if neutralize:
                    elem.set(attr, viewer.inert_url)
        ctx.spawn(sub())

    def insert_head_elements(self, doc : Document) -> None:
        viewer = self.viewer
        opts = viewer.options
        head = doc.head()
        if head is None:
            _logging.debug("document has no `<head>`, not inserting anything")
            return

        if doc.is_html and not any(is_charset_meta(e) for e in head):
            # the serializer re-encodes into UTF-8 and would inject this as
            # the very first child of `<head>` otherwise
            head.insert(0, _ET.Element(f"{{{htmlns}}}meta", {"charset": "utf-8"}))
        if opts.reset_css:
            link = _ET.Element(f"{{{htmlns}}}link", {"rel": "stylesheet", "href": viewer.reset_css_locator()})
            head.insert(0, link)
        if opts.sanitize:
            script = _ET.Element(f"{{{htmlns}}}script", {"src": viewer.sanitize_locator()})
            head.insert(0, script)

    def page_info(self, data : bytes, mime : str, path : str) -> PageInfo:
        """Get the title and the icon of a page, if any."""
        res = PageInfo()
        try:
            doc = parse_document(data, mime)
        except ParseFailure as exc:
            _logging.debug("can't get page info of `%s`: %s", path, str(exc))
            return res

        ref_url = self.viewer.codec.to_virtual_url(path)
        for elem in doc.root.iter():
            if not isinstance(elem.tag, str):
                continue
            ns, name = split_tag(elem.tag)
            if ns not in (None, htmlns):
                continue
            name = name.lower()
            if name == "title" and res.title is None:
                res.title = "".join(elem.itertext()).strip()
            elif name == "link" and res.icon is None and "icon" in rels_of(elem):
                href = elem.get("href", None)
                if href is not None:
                    res.icon = self.viewer.resolver.resolve(href, ref_url).final_url
        return res
