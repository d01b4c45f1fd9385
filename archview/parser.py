# Copyright (c) 2024 Jan Malakhovski <oxij@oxij.org>
#
# This file is a part of `archview` project.
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.

"""Small regex-driven parser for attribute and header values.
"""

import re as _re
import typing as _t

from kisstdlib.exceptions import *

natural_re = _re.compile(r"([0-9]+)")
opt_whitespace_re = _re.compile(r"(\s*)")

class ParseError(Failure, ValueError):
    pass

class Parser:
    """A cursor over a string, advanced by matching strings and regexes."""

    def __init__(self, data : str) -> None:
        self.buffer = data
        self.pos = 0

    def unread(self, data : str) -> None:
        self.buffer = self.buffer[:self.pos] + data + self.buffer[self.pos:]

    @property
    def leftovers(self) -> str:
        return self.buffer[self.pos:]

    def at_eof(self) -> bool:
        return self.pos >= len(self.buffer)

    def eof(self) -> None:
        if self.at_eof():
            return
        raise ParseError("while parsing %s: expected EOF, got %s", repr(self.buffer), repr(self.leftovers))

    def take_rest(self) -> str:
        res = self.leftovers
        self.pos = len(self.buffer)
        return res

    def at_string(self, s : str) -> bool:
        return self.buffer.startswith(s, self.pos)

    def opt_string_in(self, ss : list[str]) -> str | None:
        for s in ss:
            if self.at_string(s):
                self.pos += len(s)
                return s
        return None

    def take_until_string(self, s : str) -> str:
        start = self.pos
        end = self.buffer.find(s, start)
        if end == -1:
            raise ParseError("while parsing %s: expected %s, got EOF", repr(self.buffer), repr(s))
        self.pos = end
        return self.buffer[start:end]

    def regex(self, regexp : _re.Pattern[str], allow_empty : bool = False) -> tuple[str | _t.Any, ...]:
        m = regexp.match(self.buffer, self.pos)
        if m is None:
            raise ParseError("while parsing %s: expected %s, got %s", repr(self.buffer), repr(regexp), repr(self.leftovers))
        pos = m.span()[1]
        if pos == self.pos and not allow_empty:
            raise ParseError("while parsing %s: matched nothing via %s, buffer is %s", repr(self.buffer), repr(regexp), repr(self.leftovers))
        self.pos = pos
        return m.groups()

    def opt_regex(self, regexp : _re.Pattern[str]) -> tuple[str | _t.Any, ...]:
        return self.regex(regexp, True)

    def opt_whitespace(self) -> tuple[str | _t.Any, ...]:
        return self.opt_regex(opt_whitespace_re)

def test_parser() -> None:
    p = Parser("  12 ; rest")
    p.opt_whitespace()
    assert p.regex(natural_re) == ("12",)
    p.opt_whitespace()
    assert p.opt_string_in([",", ";"]) == ";"
    assert p.opt_string_in([",", ";"]) is None
    p.opt_whitespace()
    assert p.take_rest() == "rest"
    p.eof()

    try:
        Parser("abc").regex(natural_re)
    except ValueError:
        pass
    else:
        assert False
