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

"""Retrieval of external resources, for when the host does not allow
   documents to load them directly.
"""

import asyncio as _asyncio
import logging as _logging
import typing as _t
import urllib.parse as _up

import aiohttp

from .exceptions import *
from .mime import canonicalize_mime, sniff_mime_type

fetchable_url_schemes = frozenset(["http", "https"])

class Fetcher(_t.Protocol):
    async def fetch_bytes(self, url : str) -> tuple[bytes, str]:
        """Fetch `url`, returning its content and MIME type, raising `FetchFailure` on failure."""
        ...

class NullFetcher:
    """A `Fetcher` that never fetches anything."""

    async def fetch_bytes(self, url : str) -> tuple[bytes, str]:
        raise FetchFailure("fetching external resources is disabled, not fetching `%s`", url)

    async def close(self) -> None:
        pass

class AiohttpFetcher:
    def __init__(self, timeout : float = 30, user_agent : str | None = None, max_size : int = 64 * 1024 * 1024) -> None:
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self.headers = {"User-Agent": user_agent} if user_agent is not None else {}
        self.max_size = max_size
        self.session : aiohttp.ClientSession | None = None

    def _session(self) -> aiohttp.ClientSession:
        if self.session is None:
            self.session = aiohttp.ClientSession(timeout=self.timeout, headers=self.headers)
        return self.session

    async def fetch_bytes(self, url : str) -> tuple[bytes, str]:
        scheme = _up.urlsplit(url).scheme.lower()
        if scheme not in fetchable_url_schemes:
            raise FetchFailure("not fetching `%s`: unsupported URL scheme", url)

        _logging.debug("fetching `%s`", url)
        try:
            async with self._session().get(url, raise_for_status=True) as response:
                if response.content_length is not None and response.content_length > self.max_size:
                    raise FetchFailure("not fetching `%s`: larger than %d bytes", url, self.max_size)
                # `Content-Length` can be missing or lie
                data = b""
                while len(data) <= self.max_size:
                    chunk = await response.content.read(self.max_size + 1 - len(data))
                    if chunk == b"":
                        break
                    data += chunk
                if len(data) > self.max_size:
                    raise FetchFailure("not fetching `%s`: larger than %d bytes", url, self.max_size)
                ctype = response.headers.get("Content-Type", None)
        except (aiohttp.ClientError, _asyncio.TimeoutError) as exc:
            raise FetchFailure("failed to fetch `%s`: %s", url, repr(exc))

        mime = canonicalize_mime(ctype) if ctype is not None else sniff_mime_type(data)
        return data, mime

    async def close(self) -> None:
        if self.session is not None:
            await self.session.close()
            self.session = None

    async def __aenter__(self) -> "AiohttpFetcher":
        return self

    async def __aexit__(self, *args : _t.Any) -> None:
        await self.close()

def test_null_fetcher() -> None:
    try:
        _asyncio.run(NullFetcher().fetch_bytes("https://example.org/"))
    except FetchFailure:
        pass
    else:
        assert False

def test_aiohttp_fetcher_schemes() -> None:
    async def run() -> None:
        async with AiohttpFetcher() as fetcher:
            for url in ["file:///etc/passwd", "javascript:void(0)", "data:text/plain,x", "relative.js"]:
                try:
                    await fetcher.fetch_bytes(url)
                except FetchFailure:
                    pass
                else:
                    assert False
            # nothing was fetched, so no session was made
            assert fetcher.session is None
    _asyncio.run(run())

def test_aiohttp_fetcher_max_size() -> None:
    from aiohttp import web
    from aiohttp.test_utils import TestServer

    async def chunked(request : web.Request) -> web.StreamResponse:
        response = web.StreamResponse(headers={"Content-Type": "text/plain"})
        response.enable_chunked_encoding()
        await response.prepare(request)
        for _ in range(3):
            await response.write(b"x" * 1000)
        await response.write_eof()
        return response

    async def sized(request : web.Request) -> web.Response:
        return web.Response(body=b"y" * 3000, content_type="text/css")

    app = web.Application()
    app.router.add_get("/chunked", chunked)
    app.router.add_get("/sized", sized)

    async def run() -> None:
        async with TestServer(app) as server:
            for path in ["/chunked", "/sized"]:
                url = str(server.make_url(path))
                async with AiohttpFetcher(max_size=1500) as fetcher:
                    try:
                        await fetcher.fetch_bytes(url)
                    except FetchFailure as exc:
                        assert "larger than 1500 bytes" in str(exc)
                    else:
                        assert False, path

            async with AiohttpFetcher(max_size=3000) as fetcher:
                data, mime = await fetcher.fetch_bytes(str(server.make_url("/chunked")))
                assert data == b"x" * 3000 and mime == "text/plain"
                data, mime = await fetcher.fetch_bytes(str(server.make_url("/sized")))
                assert data == b"y" * 3000 and mime == "text/css"
    _asyncio.run(run())
