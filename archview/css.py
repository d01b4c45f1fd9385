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

"""Rewriting of references in CSS.

   Rewriting happens in three passes:

   - scanning walks `tinycss2` component values and splices a placeholder
     marker over every `url()` and `@import` target in the original text,
     recording it in a `PlaceholderTable`;
   - resolving computes final values for all recorded placeholders
     concurrently, recursing into imported stylesheets;
   - substitution replaces markers with their final values in a single pass.

   Everything that is not a reference is kept exactly as it was.
"""

import asyncio as _asyncio
import codecs as _codecs
import dataclasses as _dc
import logging as _logging
import re as _re
import typing as _t
import uuid as _uuid

import tinycss2 as _tcss
import tinycss2.bytes as _tcss_bytes
import tinycss2.serializer as _tcss_ser

from .exceptions import *
from .wire import scheck
from .chain import RecursionChain
from .store import TransformKind

if _t.TYPE_CHECKING:
    from .viewer import Viewer

CSSNode : _t.TypeAlias = _tcss.ast.Node

marker_prefix = "urn:archview:url:"
marker_re = _re.compile(_re.escape(marker_prefix) + r"([0-9a-f]{32})")

boms = [_codecs.BOM_UTF8, _codecs.BOM_UTF16_LE, _codecs.BOM_UTF16_BE]

@_dc.dataclass
class Placeholder:
    url : str
    transform : TransformKind | None
    final : str | None = _dc.field(default=None)

non_ascii_re = _re.compile(r"[^\x00-\x7f]")

def serialize_url_ascii(value : str) -> str:
    """`url()`-escape `value`, also escaping non-ASCII characters, so that
       the result can be encoded in the charset of any stylesheet.
    """
    return non_ascii_re.sub(lambda m: f"\\{ord(m.group(0)):x} ", _tcss_ser.serialize_url(value))

class PlaceholderTable:
    def __init__(self) -> None:
        self.entries : dict[str, Placeholder] = {}
        self.substituted = 0

    def __len__(self) -> int:
        return len(self.entries)

    def allocate(self, url : str, transform : TransformKind | None = None) -> str:
        key = _uuid.uuid4().hex
        self.entries[key] = Placeholder(url, transform)
        return marker_prefix + key

    def substitute(self, text : str) -> str:
        """Replace known markers with `url()`-escaped final values.
           Markers that are not in the table are left as they are.
        """
        def sub(m : _re.Match[str]) -> str:
            ph = self.entries.get(m.group(1), None)
            if ph is None:
                _logging.debug("leaving unknown placeholder `%s` alone", m.group(0))
                return m.group(0)
            self.substituted += 1
            return serialize_url_ascii(ph.final if ph.final is not None else ph.url)
        return marker_re.sub(sub, text)

def test_placeholder_table() -> None:
    table = PlaceholderTable()
    m1 = table.allocate("a.png")
    m2 = table.allocate("b c.png")
    m3 = table.allocate("café.png")
    table.entries[m1[len(marker_prefix):]].final = "blob:archview/1"
    stray = marker_prefix + "0" * 32
    text = f"url({m1}) url({m2}) url({m3}) /* {stray} */"
    res = table.substitute(text)
    scheck(text, "substitute", res, f"url(blob:archview/1) url(b\\ c.png) url(caf\\e9 .png) /* {stray} */")
    assert table.substituted == 3

newline_re = _re.compile(r"\r\n|[\r\n\f]")

class SourceMap:
    """Maps positions `tinycss2` records in its nodes back to offsets into
       the text it parsed.
    """

    def __init__(self, text : str) -> None:
        # `tinycss2` counts `\r\n`, `\r`, and `\f` as single newlines
        self.line_starts = [0] + [m.end() for m in newline_re.finditer(text)]

    def offset(self, node : CSSNode) -> int:
        return self.line_starts[node.source_line - 1] + node.source_column - 1

def token_end(text : str, start : int) -> int:
    """Offset right after the token or block starting at `start` in `text`."""
    rest = text[start:]
    nodes = _tcss.parse_component_value_list(rest)
    if len(nodes) < 2:
        return len(text)
    return start + SourceMap(rest).offset(nodes[1])

Reference = tuple[CSSNode, str, TransformKind | None, CSSNode | None]

def collect_references(nodes : list[CSSNode], res : list[Reference]) -> None:
    """Collect `(node, url, transform, next_sibling)` for every reference in
       `nodes`, in source order.
    """
    import_pending = False
    for i, node in enumerate(nodes):
        if isinstance(node, (_tcss.ast.WhitespaceToken, _tcss.ast.Comment)):
            continue

        transform = TransformKind.STYLESHEET if import_pending else None

        if isinstance(node, _tcss.ast.AtKeywordToken):
            import_pending = node.lower_value == "import"
            continue
        import_pending = False

        following = nodes[i + 1] if i + 1 < len(nodes) else None
        if isinstance(node, _tcss.ast.URLToken):
            res.append((node, node.value, transform, following))
        elif isinstance(node, _tcss.ast.StringToken) and transform is not None:
            # `@import "url.css"`
            res.append((node, node.value, transform, following))
        elif isinstance(node, _tcss.ast.FunctionBlock):
            if node.lower_name == "url":
                # `url("...")` tokenizes as a function
                res.append((node, "".join([n.value for n in node.arguments if n.type == "string"]), transform, following))
            else:
                collect_references(node.arguments, res)
        elif isinstance(node, (_tcss.ast.ParenthesesBlock, _tcss.ast.SquareBracketsBlock, _tcss.ast.CurlyBracketsBlock)):
            collect_references(node.content, res)

def scan_css(table : PlaceholderTable, text : str) -> str:
    """Replace every reference in `text` with `url(<placeholder>)` allocated
       in `table`.  All other text, including comments, whitespace, quotes,
       and escapes, is kept exactly as it was.
    """
    refs : list[Reference] = []
    collect_references(_tcss.parse_component_value_list(text), refs)
    if len(refs) == 0:
        return text

    smap = SourceMap(text)
    res = []
    pos = 0
    for node, url, transform, following in refs:
        start = smap.offset(node)
        # tokens are contiguous, so a token ends where its next sibling starts
        end = smap.offset(following) if following is not None else token_end(text, start)
        res.append(text[pos:start])
        res.append(f"url({table.allocate(url, transform)})")
        pos = end
    res.append(text[pos:])
    return "".join(res)

def test_scan_css() -> None:
    table = PlaceholderTable()
    text = "a{background:url( 'x.png' )}\r\n/* url(c.png) */ @import \"i.css\" screen;\r\nb { content: '\\2603 '; background: URL(y.png)}\fi { src: url(\"f.woff\") format('woff') }"
    scanned = scan_css(table, text)
    urls = [(ph.url, ph.transform) for ph in table.entries.values()]
    scheck(text, "references", urls, [("x.png", None), ("i.css", TransformKind.STYLESHEET), ("y.png", None), ("f.woff", None)])
    for ph in table.entries.values():
        ph.final = ph.url.upper()
    scheck(text, "substituted", table.substitute(scanned),
           "a{background:url(X.PNG)}\r\n/* url(c.png) */ @import url(I.CSS) screen;\r\nb { content: '\\2603 '; background: url(Y.PNG)}\fi { src: url(F.WOFF) format('woff') }")

    table = PlaceholderTable()
    text = "p { color: red } /* nothing to see here */"
    assert scan_css(table, text) is text and len(table) == 0

class StylesheetRewriter:
    def __init__(self, viewer : "Viewer") -> None:
        self.viewer = viewer

    def scan(self, text : str) -> tuple[str, PlaceholderTable]:
        table = PlaceholderTable()
        return scan_css(table, text), table

    async def resolve(self, table : PlaceholderTable, chain : RecursionChain) -> None:
        """Compute final values for all placeholders in `table` concurrently.
           `chain` must end with the URL of the stylesheet being rewritten.
        """
        viewer = self.viewer
        ref_url = chain.last
        assert ref_url is not None

        async def resolve_one(ph : Placeholder) -> None:
            info = viewer.resolver.resolve(ph.url, ref_url)
            if not info.in_archive:
                ph.final = info.final_url
                return

            assert info.path is not None
            try:
                chain.check(viewer.codec.to_virtual_url(info.path))
            except Cycle as exc:
                _logging.debug("in `%s`: %s", ref_url, str(exc))
                ph.final = viewer.inert_url
                return

            located = await viewer.fetch(info.path, ph.transform, chain)
            ph.final = located + info.fragment if located is not None else info.final_url

        entries = list(table.entries.values())
        results = await _asyncio.gather(*[resolve_one(ph) for ph in entries], return_exceptions=True)
        for ph, r in zip(entries, results):
            if isinstance(r, BaseException):
                _logging.warning("while resolving CSS reference `%s` from `%s`: %s", ph.url, ref_url, str(r))

    async def rewrite_text(self, text : str, ref_url : str, chain : RecursionChain) -> str:
        """Rewrite stylesheet text found at (or inlined into a document at) `ref_url`."""
        cchain = chain.append(ref_url)
        scanned, table = self.scan(text)
        if len(table) == 0:
            return text
        await self.resolve(table, cchain)
        return table.substitute(scanned)

    async def rewrite_file(self, data : bytes, ref_url : str, chain : RecursionChain) -> bytes:
        """Like `rewrite_text`, but decoding and re-encoding a whole stylesheet
           file.  The result keeps the original encoding, and its BOM, if any.
        """
        text, encoding = _tcss_bytes.decode_stylesheet_bytes(data)
        res = await self.rewrite_text(text, ref_url, chain)
        if res is text:
            return data

        bom = b""
        for b in boms:
            if data.startswith(b):
                bom = b
                break

        try:
            body = encoding.codec_info.encode(res)[0]
        except UnicodeEncodeError:
            # only happens when decoding replaced some undecodable bytes
            _logging.warning("can't encode the rewritten version of `%s` into `%s` exactly", ref_url, encoding.name)
            body = encoding.codec_info.encode(res, "replace")[0]
        return bom + body
