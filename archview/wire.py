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

"""Parsing and un-parsing of paths, URL fragments, `Refresh` values, `srcset` attributes, etc."""

import re as _re
import typing as _t
import urllib.parse as _up

from .exceptions import *
from .parser import ParseError, Parser

def scheck(v : _t.Any, what : str, value : _t.Any, expected : _t.Any) -> None:
    if value != expected:
        raise CatastrophicFailure("while evaluating %s of %s, expected %s, got %s", what, repr(v), repr(expected), repr(value))

### Paths

# the same set `encodeURIComponent` leaves alone
path_segment_safe = "!~*'()"

def parse_path(path : str, encoding : str = "utf-8") -> list[str]:
    """Split a `/`-separated URL path into percent-decoded segments.
       Segments that do not decode keep their original form.
    """
    res = []
    for e in path.split("/"):
        try:
            res.append(_up.unquote(e, encoding=encoding, errors="strict"))
        except UnicodeDecodeError:
            res.append(e)
    return res

def unparse_path(path_parts : _t.Sequence[str], encoding : str = "utf-8", errors : str = "strict") -> str:
    return "/".join([_up.quote(e, safe=path_segment_safe, encoding=encoding, errors=errors) for e in path_parts])

def test_parse_path() -> None:
    def check(path : str, expected_parts : list[str]) -> None:
        parts = parse_path(path)
        scheck(path, "parse", parts, expected_parts)

    check("a/b%20c/d.html", ["a", "b c", "d.html"])
    check("caf%C3%A9/100%25", ["café", "100%"])
    check("100%.html", ["100%.html"])
    # not UTF-8
    check("x%FF/y", ["x%FF", "y"])

    scheck(["sub dir", "é#?.html"], "unparse", unparse_path(["sub dir", "é#?.html"]), "sub%20dir/%C3%A9%23%3F.html")

### URLs

scheme_re = _re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*:")

def is_absolute_url(url : str) -> bool:
    return scheme_re.match(url) is not None

def split_fragment(url : str) -> tuple[str, str]:
    """Split `url` into the part before `#` and the fragment including its `#`.
       An empty fragment is returned as `""`, like `URL.hash` does.
    """
    pos = url.find("#")
    if pos == -1:
        return url, ""
    frag = url[pos:]
    if frag == "#":
        frag = ""
    return url[:pos], frag

def test_split_fragment() -> None:
    scheck("a.html#x", "split", split_fragment("a.html#x"), ("a.html", "#x"))
    scheck("a.html#", "split", split_fragment("a.html#"), ("a.html", ""))
    scheck("a.html", "split", split_fragment("a.html"), ("a.html", ""))
    scheck("#x#y", "split", split_fragment("#x#y"), ("", "#x#y"))

# URL double-slash scheme
uds_str       = r"http|https|ftp|ftps"
# URL hostname
def uhostname_str(d : str) -> str:
    return rf"[^:/?#\s{d}]+"
# URL port
uport_str     = r":\d+"
# URL path
def upath_str(d : str) -> str:
    return rf"/[^?#\s{d}]*"
# URL relative path
def urel_str(d : str) -> str:
    return rf"[^?#\s{d}]+"
# URL query
def uquery_str(d : str) -> str:
    return rf"[^#\s{d}]*"
# URL fragment/hash
def ufragment_str(d : str) -> str:
    return rf"[^\s{d}]*"

def url_re_str(d : str) -> str:
    return rf"""(
(
(?:(?:{uds_str}):)?
//
(?:{uhostname_str(d)})
(?:{uport_str})?
(?:{upath_str(d)})?
|
(?:{upath_str(d)})
|
(?:{urel_str(d)})
)?
(\?{uquery_str(d)})?
(#{ufragment_str(d)})?
)""".replace("\n", "")

url_re = _re.compile(url_re_str(""))

### `Refresh` values, as found in `<meta http-equiv="refresh" content="...">`

refresh_secs_re = _re.compile(r"([0-9]+)(?:\.[0-9.]*)?")
refresh_url_key_re = _re.compile(r"([Uu][Rr][Ll]\s*=\s*)?")

def parse_refresh_header(value : str) -> tuple[int, str | None]:
    """Parse `Refresh` header value, the way browsers do it.

       Returns the number of seconds and the target URL, if any.
       Separators, the `url=` key, and quotes around the URL are all optional.
    """
    p = Parser(value)
    p.opt_whitespace()
    grp = p.regex(refresh_secs_re)
    secs = int(grp[0])
    p.opt_whitespace()
    p.opt_string_in([";", ","])
    p.opt_whitespace()
    if p.at_eof():
        return secs, None

    p.opt_regex(refresh_url_key_re)
    quote = p.opt_string_in(['"', "'"])
    if quote is not None:
        try:
            url = p.take_until_string(quote)
        except ParseError:
            url = p.take_rest()
    else:
        url = p.take_rest()
    url = url.strip()
    return secs, url if url != "" else None

def unparse_refresh_header(secs : int, url : str | None) -> str:
    if url is None:
        return str(secs)
    return f"{secs};url={url}"

def test_parse_refresh_header() -> None:
    def check(rhs : list[str], expected_num : _t.Any, expected_url : _t.Any) -> None:
        for rh in rhs:
            num, url = parse_refresh_header(rh)
            scheck(rh, "num", num, expected_num)
            scheck(rh, "url", url, expected_url)

    check([
        "10;url=https://example.org/",
        "10; url=https://example.org/",
        "10 ;url=https://example.org/",
        " 10;url=https://example.org/",
        "10 ; URL = https://example.org/",
        "10, url='https://example.org/'",
        '10;url="https://example.org/"',
        "10.5; https://example.org/",
    ], 10, "https://example.org/")
    check(["0;url=#section"], 0, "#section")
    check(["5", "5;", " 5 ; "], 5, None)

    try:
        parse_refresh_header("url=b.html")
    except ParseError:
        pass
    else:
        assert False

    scheck("unparse", "value", unparse_refresh_header(3, "b.html#x"), "3;url=b.html#x")
    scheck("unparse", "value", unparse_refresh_header(3, None), "3")

### HTML attribute parsing

opt_srcset_condition = _re.compile(r"(?:\s+([0-9]*\.?[0-9]+[xwh]))?")
opt_srcset_sep = _re.compile(r"(\s*,)?")

def parse_srcset_attr(value : str) -> list[tuple[str, str | None]]:
    """Parse HTML5 srcset attribute"""
    res = []
    p = Parser(value)
    p.opt_whitespace()
    while not p.at_eof():
        grp = p.regex(url_re)
        if grp[0].endswith(","):
            url = grp[0][:-1]
            p.unread(",")
        else:
            url = grp[0]
        grp = p.opt_regex(opt_srcset_condition)
        cond = grp[0]
        p.opt_whitespace()
        p.opt_regex(opt_srcset_sep)
        p.opt_whitespace()
        if url != "":
            res.append((url, cond))
        #else: ignore it
    p.eof()
    return res

def unparse_srcset_attr(value : list[tuple[str, str | None]]) -> str:
    """Unparse HTML5 srcset attribute"""
    return ", ".join([(f"{url} {cond}" if cond is not None else url) for url, cond in value])

def test_parse_srcset_attr() -> None:
    def check(attr : str, expected_values : _t.Any) -> None:
        values = parse_srcset_attr(attr)
        scheck(attr, "the whole", values, expected_values)

    check("images/a.jpg", [
        ("images/a.jpg", None),
    ])
    check("1.jpg, https://example.org/2.jpg", [
        ("1.jpg", None),
        ("https://example.org/2.jpg", None),
    ])
    check("1.jpg 2.5x, 2.jpg 100w,3.jpg 50h", [
        ("1.jpg", "2.5x"),
        ("2.jpg", "100w"),
        ("3.jpg", "50h"),
    ])
    check("""
        ../1.jpg    2x
        ,
        2.jpg#frag
    """, [
        ("../1.jpg", "2x"),
        ("2.jpg#frag", None),
    ])

    scheck("unparse", "value", unparse_srcset_attr([("a.jpg", "2x"), ("b.jpg", None)]), "a.jpg 2x, b.jpg")
