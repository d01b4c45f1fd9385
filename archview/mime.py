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

"""MIME types of archive entries.

  Archive entries carry no `Content-Type`, so the type is guessed from the
  file extension first and sniffed from the content (following
  https://mimesniff.spec.whatwg.org/ loosely) when the extension is unknown.
"""

import posixpath as _pp
import re as _re

from .exceptions import *

canonical_mime_of : dict[str, str]
canonical_mime_of = {
    "application/font-woff": "font/woff",
    "application/font-woff2": "font/woff2",
    "application/vnd.ms-fontobject": "font/otf",
    "font/sfnt": "font/otf",

    "image/jpg": "image/jpeg",

    "application/ecmascript": "text/javascript",
    "application/javascript": "text/javascript",
    "application/x-javascript": "text/javascript",
    "text/ecmascript": "text/javascript",
    "text/x-javascript": "text/javascript",

    "application/json": "text/json",
    "application/xml": "text/xml",
}

def canonicalize_mime(mime : str) -> str:
    mime = mime.split(";", 1)[0].strip().lower()
    return canonical_mime_of.get(mime, mime)

mime_extensions : dict[str, list[str]]
mime_extensions = {
    "application/ogg": [".ogg", ".ogv", ".oga"],
    "application/pdf": [".pdf"],
    "application/wasm": [".wasm"],
    "application/xhtml+xml": [".xhtml", ".xht"],
    "application/zip": [".zip"],
    "audio/mpeg": [".mp3"],
    "audio/wave": [".wav"],
    "font/collection": [".ttc"],
    "font/otf": [".otf"],
    "font/ttf": [".ttf"],
    "font/woff": [".woff"],
    "font/woff2": [".woff2"],
    "image/avif": [".avif"],
    "image/bmp": [".bmp"],
    "image/gif": [".gif"],
    "image/jpeg": [".jpg", ".jpeg"],
    "image/png": [".png"],
    "image/svg+xml": [".svg"],
    "image/webp": [".webp"],
    "image/x-icon": [".ico"],
    "text/css": [".css"],
    "text/html": [".htm", ".html", ".shtml"],
    "text/javascript": [".js", ".mjs"],
    "text/json": [".json"],
    "text/plain": [".txt"],
    "text/vtt": [".vtt"],
    "text/xml": [".xml"],
    "video/mp4": [".mp4", ".m4v"],
    "video/webm": [".webm"],
}

# extension -> list[content_type]
possible_mimes_of_ext : dict[str, list[str]]
possible_mimes_of_ext = {}

for ct, exts in mime_extensions.items():
    for ext in exts:
        try:
            ms = possible_mimes_of_ext[ext]
        except KeyError:
            ms = []
            possible_mimes_of_ext[ext] = ms
        ms.append(ct)

html_mime = ["text/html"]
xhtml_mime = ["application/xhtml+xml"]
svg_mime = ["image/svg+xml"]
stylesheet_mime = ["text/css"]
script_mime = ["text/javascript"]

# documents whose references get rewritten
document_mime = html_mime + xhtml_mime + svg_mime
# documents that get a `<head>` and can be navigated to
page_mime = html_mime + xhtml_mime

_pre = r"(?:\ufeff|\s)*"
html_sniff_re = _re.compile(rf"^{_pre}(?:<\?xml(?:\s[^>]*)?>\s*)?(?:<!--[\s\S]*-->\s*)*<(?:!doctype\shtml|html|head|meta|link|title|body|frameset|frame|iframe|style|font|script|table|h1|h2|h3|div|p|span|b|br|a)(?:\s[^>]*)?>", flags=_re.IGNORECASE)
xhtml_sniff_re = _re.compile(rf"^{_pre}<\?xml(?:\s[^>]*)?>[\s\S]*<html\s[^>]*xmlns\s*=\s*[\"']http://www\.w3\.org/1999/xhtml[\"']", flags=_re.IGNORECASE)
svg_sniff_re = _re.compile(rf"^{_pre}(?:<\?xml(?:\s[^>]*)?>\s*)?(?:<!--[\s\S]*-->\s*)*(?:<!doctype\ssvg[^>]*>\s*)?<svg(?:\s[^>]*)?>", flags=_re.IGNORECASE)
xml_sniff_re = _re.compile(rf"^{_pre}<\?xml(?:\s[^>]*)?>", flags=_re.IGNORECASE)

def sniff_mime_type(data : bytes) -> str:
    """Sniff MIME type from given file content or file content prefix."""

    # binary formats
    if data.startswith(b"GIF87a") or data.startswith(b"GIF89a"):
        return "image/gif"
    elif data.startswith(b"RIFF") and data[8:12] == b"WEBP":
        return "image/webp"
    elif data.startswith(b"\x89PNG\x0d\x0a\x1a\x0a"):
        return "image/png"
    elif data.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    elif data.startswith(b"\x00\x00\x01\x00"):
        return "image/x-icon"
    elif data.startswith(b"ID3"):
        return "audio/mpeg"
    elif data.startswith(b"OggS\x00"):
        return "application/ogg"
    elif data.startswith(b"wOFF"):
        return "font/woff"
    elif data.startswith(b"wOF2"):
        return "font/woff2"
    elif data.startswith(b"%PDF-"):
        return "application/pdf"
    elif data.startswith(b"PK\x03\x04"):
        return "application/zip"

    if data.startswith(b"\xef\xbb\xbf"):
        text = data[3:].decode("utf-8", "replace")
    elif data.find(b"\x00", 0, 1024) != -1:
        return "application/octet-stream"
    else:
        # decode into ascii with replacements so that we could
        # match markup via regexps below
        text = data[:4096].decode("ascii", "replace")

    if xhtml_sniff_re.match(text):
        return "application/xhtml+xml"
    elif html_sniff_re.match(text):
        return "text/html"
    elif svg_sniff_re.match(text):
        return "image/svg+xml"
    elif xml_sniff_re.match(text):
        return "text/xml"
    return "text/plain"

def guess_mime_type(path : str, data : bytes) -> str:
    """Guess MIME type of an archive entry by its extension, falling back to sniffing."""
    _, ext = _pp.splitext(path)
    mimes = possible_mimes_of_ext.get(ext.lower(), None)
    if mimes is not None:
        return mimes[0]
    return sniff_mime_type(data)

def test_sniff_mime_type() -> None:
    def check(want_mime : str, data : bytes) -> None:
        mime = sniff_mime_type(data)
        if mime != want_mime:
            raise CatastrophicFailure("while evaluating `sniff_mime_type` on %s, expected %s, got %s", data, want_mime, mime)

    check("text/html", b"<!DOCTYPE html><html>")
    check("text/html", b"\xef\xbb\xbf<!DOCTYPE html><html>")
    check("text/html", b"""
<!-- comment -->
<!DOCTYPE html>
<html>""")
    check("text/html", b"""<a>test</a>""")
    check("application/xhtml+xml", b"""<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE html PUBLIC "-//W3C//DTD XHTML 1.0 Transitional//EN" "http://www.w3.org/TR/xhtml1/DTD/xhtml1-transitional.dtd">
<html xmlns="http://www.w3.org/1999/xhtml" lang="en">""")
    check("image/svg+xml", b"""<?xml version="1.0" encoding="UTF-8"?>
<!-- comment -->
<svg>""")
    check("image/svg+xml", b"""<svg xmlns="http://www.w3.org/2000/svg">""")
    check("text/xml", b"""<?xml version="1.0" encoding="UTF-8"?><data>""")
    check("image/png", b"\x89PNG\x0d\x0a\x1a\x0a....")
    check("application/octet-stream", b"\x01\x00\x02")
    check("text/plain", b"example")

def test_guess_mime_type() -> None:
    def check(path : str, data : bytes, want_mime : str) -> None:
        mime = guess_mime_type(path, data)
        if mime != want_mime:
            raise CatastrophicFailure("while guessing MIME type of %s, expected %s, got %s", path, want_mime, mime)

    check("index.html", b"", "text/html")
    check("dir/PAGE.XHTML", b"", "application/xhtml+xml")
    check("style.css", b"", "text/css")
    check("noext", b"<!DOCTYPE html>", "text/html")
    check("blob.bin", b"GIF89a...", "image/gif")
