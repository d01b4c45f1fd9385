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

import argparse as _argparse
import asyncio as _asyncio
import html as _html
import logging as _logging
import os as _os
import sys as _sys
import typing as _t

from gettext import gettext, ngettext

from aiohttp import web
from kisstdlib.logging import CounterHandler

from .exceptions import *
from .wire import scheck, split_fragment
from .archive import open_archive, load_store
from .fetch import AiohttpFetcher, NullFetcher
from .viewer import Viewer, ViewerOptions, SameArchiveNavigation, ExternalNavigation, make_test_viewer
from . import serve_static as _static
from .util import str_Exception

__prog__ = "archview"

def issue(pattern : str, *args : _t.Any) -> None:
    message = pattern % args
    if _sys.stderr.isatty():
        _sys.stderr.write("\033[31m" + message + "\033[0m\n")
    else:
        _sys.stderr.write(message + "\n")
    _sys.stderr.flush()

def error(pattern : str, *args : _t.Any) -> None:
    issue(gettext("error") + ": " + pattern, *args)

def options_of(cargs : _t.Any, locator_prefix : str | None = None) -> ViewerOptions:
    opts = ViewerOptions(
        index = cargs.index,
        subdir = cargs.subdir,
        localize_external = cargs.localize_external,
        scripts = cargs.scripts,
        reset_css = cargs.reset_css,
    )
    if locator_prefix is not None:
        opts.locator_prefix = locator_prefix
    return opts

async def load_viewer(cargs : _t.Any, locator_prefix : str | None = None) -> Viewer:
    opts = options_of(cargs, locator_prefix)
    fetcher = AiohttpFetcher() if opts.localize_external else NullFetcher()
    viewer = Viewer(opts, fetcher)
    with open_archive(_os.path.expanduser(cargs.archive)) as archive:
        num = await load_store(archive, viewer.store, opts.subdir)
    _logging.debug("loaded %d entries from `%s`", num, cargs.archive)
    return viewer

async def open_root(viewer : Viewer, path : str | None, fragment : str = "") -> str:
    locator = await viewer.open_root_document(path, fragment)
    if locator is None:
        raise IndexNotFound(gettext("no `%s` in the archive"), path if path is not None else viewer.options.index)
    return locator

def cmd_ls(cargs : _t.Any) -> None:
    async def run() -> None:
        viewer = await load_viewer(cargs)
        with viewer:
            for path in viewer.store.paths():
                res = viewer.store.get(path)
                assert res is not None
                _sys.stdout.write(f"{res.mime}\t{path}\n")
            await viewer.fetcher.close()
    _asyncio.run(run())

def cmd_open(cargs : _t.Any) -> None:
    async def run() -> None:
        viewer = await load_viewer(cargs)
        with viewer:
            try:
                locator = await open_root(viewer, cargs.index, cargs.fragment)
            finally:
                await viewer.fetcher.close()
            _sys.stdout.write(locator + "\n")
    _asyncio.run(run())

def cmd_rewrite(cargs : _t.Any) -> None:
    async def run() -> None:
        viewer = await load_viewer(cargs)
        with viewer:
            try:
                locator = await open_root(viewer, cargs.index)
            finally:
                await viewer.fetcher.close()
            data = viewer.store.entry(split_fragment(locator)[0]).content

        if cargs.output is None:
            _sys.stdout.buffer.write(data)
            _sys.stdout.buffer.flush()
        else:
            with open(_os.path.expanduser(cargs.output), "wb") as f:
                f.write(data)
    _asyncio.run(run())

# what the host page allows archived documents to load when `--localize-external` is set
host_csp = "default-src 'self' data:; style-src 'self' 'unsafe-inline' data:; script-src 'self'; object-src 'self'; frame-src 'self' about:"

def make_app(viewer : Viewer, extra_headers : dict[str, str]) -> web.Application:
    """The browser-facing surface: a frame page per document, locator
       contents under `/blob/`, and click resolution under `/_resolve`.

       `viewer.options.locator_prefix` must be `<server URL>/blob/`.
    """
    blob_prefix = viewer.options.locator_prefix
    app = web.Application()

    # (path, fragment) -> root locator, so that reloading the frame page
    # does not rewrite the whole document tree again
    roots : dict[tuple[str, str], str] = {}

    async def frame_page(request : web.Request) -> web.Response:
        path = request.query.get("path", viewer.options.index)
        fragment = request.query.get("fragment", "")
        try:
            locator = roots[(path, fragment)]
        except KeyError:
            try:
                locator = await open_root(viewer, path, fragment)
            except IndexNotFound as exc:
                raise web.HTTPNotFound(text=str(exc))
            roots[(path, fragment)] = locator

        info = viewer.page_info(path)
        icon = f'<link rel="icon" href="{_html.escape(info.icon, True)}">\n' if info.icon is not None else ""
        page = _static.frame_page_html \
            .replace("@TITLE@", _html.escape(info.title if info.title else path, False)) \
            .replace("@ICON@", icon) \
            .replace("@SRC@", _html.escape(locator, True))
        return web.Response(text=page, content_type="text/html")

    async def blob(request : web.Request) -> web.Response:
        try:
            entry = viewer.store.entry(blob_prefix + request.match_info["id"])
        except NotFound as exc:
            raise web.HTTPNotFound(text=str(exc))
        return web.Response(body=entry.content, content_type=entry.mime, headers=extra_headers)

    async def resolve(request : web.Request) -> web.Response:
        frm = request.query.get("from", "")
        url = request.query.get("url", "")
        nav = viewer.resolve_click_target(frm, url)
        if isinstance(nav, SameArchiveNavigation):
            locator = frm if nav.same_document else url
            if not nav.same_document and not nav.rewritten:
                followed = await viewer.follow_link(url)
                if followed is not None:
                    locator = followed
            return web.json_response({
                "kind": "same-archive",
                "path": nav.path,
                "fragment": nav.fragment,
                "same_document": nav.same_document,
                "locator": locator,
            })
        elif isinstance(nav, ExternalNavigation):
            return web.json_response({"kind": "external", "url": nav.url})
        return web.json_response({"kind": "inert"})

    async def cleanup(app : web.Application) -> None:
        roots.clear()
        await viewer.fetcher.close()
        viewer.close()

    app.router.add_get("/", frame_page)
    app.router.add_get("/blob/{id}", blob)
    app.router.add_get("/_resolve", resolve)
    app.on_cleanup.append(cleanup)
    return app

def cmd_serve(cargs : _t.Any) -> None:
    server_url_base = f"http://{cargs.host}:{cargs.port}"
    extra_headers = {"Content-Security-Policy": host_csp} if cargs.localize_external else {}

    async def init() -> web.Application:
        viewer = await load_viewer(cargs, server_url_base + "/blob/")
        return make_app(viewer, extra_headers)

    _sys.stderr.write(gettext("Working as an archive viewer at %s") % (server_url_base,) + "\n")
    web.run_app(init(), host=cargs.host, port=cargs.port, print=None)

def make_argparser() -> _argparse.ArgumentParser:
    _ : _t.Callable[[str], str] = gettext

    parser = _argparse.ArgumentParser(
        prog=__prog__,
        description=_("View self-contained web page archives (`ZIP` files or directories) with every reference rewritten to point into the archive."),
        allow_abbrev = False)
    parser.add_argument("--verbose", action="store_true", help=_("log debugging messages"))

    subparsers = parser.add_subparsers(title="subcommands", required=True)

    def add_common(cmd : _t.Any) -> None:
        cmd.add_argument("archive", metavar="ARCHIVE", type=str, help=_("path to a `ZIP` file or a directory"))
        cmd.add_argument("--subdir", metavar="DIR", type=str, default=None, help=_("only load entries under this directory of the archive; paths are kept as they are in the archive"))
        cmd.add_argument("--index", metavar="PATH", type=str, default="index.html", help=_("path of the root document in the archive; default: `%(default)s`"))

        grp = cmd.add_argument_group("rewriting")
        grp.add_argument("--localize-external", action="store_true", help=_("fetch external scripts and plugin content and replace them with local copies, move inline scripts out, and insert the sanitizing script; for hosts that disallow external loads"))
        grp.add_argument("--no-scripts", dest="scripts", action="store_false", help=_("replace the `src` of every `<script>` with an inert target"))
        grp.add_argument("--no-reset-css", dest="reset_css", action="store_false", help=_("do not insert the reset stylesheet into pages"))

    cmd = subparsers.add_parser("ls", help=_("list archive entries with their MIME types"))
    add_common(cmd)
    cmd.set_defaults(func=cmd_ls)

    cmd = subparsers.add_parser("open", help=_("rewrite the root document and print its locator"))
    add_common(cmd)
    cmd.add_argument("--fragment", metavar="FRAGMENT", type=str, default="", help=_("fragment to open the root document at"))
    cmd.set_defaults(func=cmd_open)

    cmd = subparsers.add_parser("rewrite", help=_("rewrite the root document and print the result"))
    add_common(cmd)
    cmd.add_argument("-o", "--output", metavar="FILE", type=str, default=None, help=_("write the result into this file instead of `stdout`"))
    cmd.set_defaults(func=cmd_rewrite)

    cmd = subparsers.add_parser("serve", help=_("view the archive in a browser"))
    add_common(cmd)
    cmd.add_argument("--host", type=str, default="127.0.0.1", help=_("listen on this host; default: `%(default)s`"))
    cmd.add_argument("--port", type=int, default=3210, help=_("listen on this port; default: `%(default)s`"))
    cmd.set_defaults(func=cmd_serve)

    return parser

def main() -> None:
    _ : _t.Callable[[str], str] = gettext

    parser = make_argparser()
    cargs = parser.parse_args(_sys.argv[1:])

    _logging.basicConfig(level=_logging.DEBUG if cargs.verbose else _logging.WARNING,
                         stream = _sys.stderr)
    errorcnt = CounterHandler()
    logger = _logging.getLogger()
    logger.addHandler(errorcnt)

    try:
        cargs.func(cargs)
    except KeyboardInterrupt:
        error("%s", _("Interrupted!"))
        errorcnt.errors += 1
    except CatastrophicFailure as exc:
        error("%s", str(exc))
        errorcnt.errors += 1
    except Exception as exc:
        _sys.stderr.write(str_Exception(exc))
        errorcnt.errors += 1

    _sys.stdout.flush()
    _sys.stderr.flush()

    if errorcnt.warnings > 0:
        _sys.stderr.write(ngettext("There was %d warning!", "There were %d warnings!", errorcnt.warnings) % (errorcnt.warnings,) + "\n")
    if errorcnt.errors > 0:
        _sys.stderr.write(ngettext("There was %d error!", "There were %d errors!", errorcnt.errors) % (errorcnt.errors,) + "\n")
        _sys.exit(1)
    _sys.exit(0)

def test_argparser() -> None:
    parser = make_argparser()
    cargs = parser.parse_args(["open", "page.zip", "--subdir", "a", "--no-scripts", "--fragment", "top"])
    assert cargs.func is cmd_open
    opts = options_of(cargs)
    assert opts.subdir == "a" and opts.index == "index.html"
    assert not opts.scripts and opts.reset_css and not opts.localize_external and not opts.sanitize

    cargs = parser.parse_args(["serve", "dir", "--localize-external", "--port", "8080"])
    opts = options_of(cargs, "http://127.0.0.1:8080/blob/")
    assert opts.localize_external and opts.sanitize
    assert opts.locator_prefix == "http://127.0.0.1:8080/blob/"

def test_cmd_rewrite(tmp_path : _t.Any, capsysbinary : _t.Any) -> None:
    (tmp_path / "index.html").write_bytes(b'<link rel="stylesheet" href="s.css"><a href="#x">x</a>')
    (tmp_path / "s.css").write_bytes(b"p { color: red }")
    out = tmp_path / "out.html"

    parser = make_argparser()
    cmd_rewrite(parser.parse_args(["rewrite", str(tmp_path), "-o", str(out)]))
    data = out.read_bytes()
    assert b"href=#x" in data
    assert b"blob:archview/" in data

    cargs = parser.parse_args(["open", str(tmp_path), "--index", "missing.html"])
    try:
        cmd_open(cargs)
    except IndexNotFound:
        pass
    else:
        assert False

    cmd_ls(parser.parse_args(["ls", str(tmp_path)]))
    listing = capsysbinary.readouterr().out
    assert b"text/html\tindex.html\n" in listing
    assert b"text/css\ts.css\n" in listing

def test_serve() -> None:
    from aiohttp.test_utils import TestClient, TestServer

    viewer = make_test_viewer({
        "index.html": "<title>Home</title><a href=\"#x\">x</a><a href=\"other.html\">o</a>",
        "other.html": "<title>Other</title>",
    }, locator_prefix="http://127.0.0.1/blob/")
    store = viewer.store

    def rewritten_roots() -> list[str]:
        return [l for l, e in store.locators.items() if e.path == "index.html" and e.transform is not None]

    async def run() -> None:
        async with TestClient(TestServer(make_app(viewer, {}))) as client:
            resp = await client.get("/")
            assert resp.status == 200
            page = await resp.text()
            issued = len(store.locators)

            # reloading reuses the rewritten tree
            resp = await client.get("/")
            scheck("reload", "page", await resp.text(), page)
            scheck("reload", "locators", len(store.locators), issued)
            roots = rewritten_roots()
            assert len(roots) == 1
            locator = roots[0]
            assert locator in page

            # a different fragment is a different root
            resp = await client.get("/", params={"fragment": "x"})
            assert resp.status == 200
            assert len(rewritten_roots()) == 2

            resp = await client.get("/blob/" + locator[len(viewer.options.locator_prefix):])
            assert resp.status == 200
            assert "Home" in await resp.text()
            resp = await client.get("/blob/nonexistent")
            assert resp.status == 404

            resp = await client.get("/", params={"path": "missing.html"})
            assert resp.status == 404

            resp = await client.get("/_resolve", params={"from": locator, "url": "#x"})
            data = await resp.json()
            assert data["kind"] == "same-archive" and data["same_document"] and data["fragment"] == "#x"

            resp = await client.get("/_resolve", params={"from": locator, "url": "https://example.org/"})
            scheck("external", "resolve", await resp.json(), {"kind": "external", "url": "https://example.org/"})

        # shutting down revokes every locator
        assert store.closed and len(store.locators) == 0

    _asyncio.run(run())

if __name__ == "__main__":
    main()
