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

"""Recursion chains: which documents are being fetched on the way to the current one."""

import typing as _t

from .exceptions import *
from .wire import scheck, split_fragment

class RecursionChain:
    """An immutable sequence of fragment-less virtual URLs.

       `append` returns a new chain and never touches `self`, so sibling
       branches of the same document each see only their own ancestors.
    """

    __slots__ = ["entries"]

    def __init__(self, entries : _t.Iterable[str] = ()) -> None:
        self.entries : tuple[str, ...] = tuple([split_fragment(e)[0] for e in entries])

    def append(self, url : str) -> "RecursionChain":
        res = RecursionChain()
        res.entries = self.entries + (split_fragment(url)[0],)
        return res

    def would_cycle(self, url : str) -> bool:
        """Would fetching `url` re-enter a document already in this chain?"""
        return split_fragment(url)[0] in self.entries

    __contains__ = would_cycle

    def check(self, url : str) -> None:
        """Raise `Cycle` when fetching `url` would re-enter this chain."""
        if self.would_cycle(url):
            raise Cycle("circular reference to `%s`", split_fragment(url)[0])

    @property
    def last(self) -> str | None:
        if len(self.entries) == 0:
            return None
        return self.entries[-1]

    def __len__(self) -> int:
        return len(self.entries)

    def __iter__(self) -> _t.Iterator[str]:
        return iter(self.entries)

    def __eq__(self, other : _t.Any) -> bool:
        return isinstance(other, RecursionChain) and self.entries == other.entries

    def __hash__(self) -> int:
        return hash(self.entries)

    def __repr__(self) -> str:
        return f"RecursionChain({list(self.entries)!r})"

def test_recursion_chain() -> None:
    root = RecursionChain()
    a = root.append("http://v/!/a.html#top")
    b1 = a.append("http://v/!/b.html")
    b2 = a.append("http://v/!/c.html")

    assert len(root) == 0 and root.last is None
    assert list(a) == ["http://v/!/a.html"]
    assert a.would_cycle("http://v/!/a.html#elsewhere")
    assert "http://v/!/a.html" in b1
    assert "http://v/!/b.html" in b1
    # siblings do not see each other
    assert "http://v/!/b.html" not in b2
    assert "http://v/!/c.html" not in b1
    assert b1.last == "http://v/!/b.html"
    assert a == RecursionChain(["http://v/!/a.html"])

    b1.check("http://v/!/c.html")
    try:
        b1.check("http://v/!/a.html#x")
    except Cycle as exc:
        scheck("cycle", "str", str(exc), "circular reference to `http://v/!/a.html`")
    else:
        assert False
