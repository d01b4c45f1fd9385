# Copyright (c) 2024 Jan Malakhovski <oxij@oxij.org>
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

meta_refresh_marker_attr = "data-archview-meta-refresh"

style = """
  html { background-color: #eee; font-family: sans-serif; }
  body { background-color: #fff; border: 1px solid #ddd; padding: 15px; margin: 15px; }
  a, code { overflow-wrap: anywhere; }
"""

# @URL@ and @TEXT@ must be HTML-escaped by the caller
redirect_notice_html = """<!DOCTYPE html>
<html @MARKER@="1">
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<style>@STYLE@</style>
</head>
<body>
Redirecting to: <a href="@URL@">@TEXT@</a>
</body>
</html>
""".replace("@MARKER@", meta_refresh_marker_attr).replace("@STYLE@", style)

reset_css = """html, body {
  margin: 0;
  padding: 0;
  border: 0;
}
"""

# removes privileged APIs archived scripts have no business using
sanitize_js = """(function () {
  "use strict";
  for (const name of ["browser", "chrome"]) {
    try {
      delete window[name];
      Object.defineProperty(window, name, { value: undefined, writable: false, configurable: false });
    } catch (e) {}
  }
})();
"""

frame_page_html = """<!DOCTYPE html>
<html>
<head>
<meta charset="UTF-8">
<meta name="viewport" content="width=device-width,initial-scale=1">
<title>@TITLE@</title>
@ICON@<style>
  html, body { margin: 0; padding: 0; height: 100%; overflow: hidden; }
  iframe { border: 0; width: 100%; height: 100%; }
</style>
</head>
<body>
<iframe id="viewer" src="@SRC@"></iframe>
<script>
(function () {
  "use strict";
  const frame = document.getElementById("viewer");

  async function resolve(from, url) {
    const q = new URLSearchParams({from: from, url: url});
    const r = await fetch("/_resolve?" + q.toString());
    return await r.json();
  }

  function hook(win) {
    win.document.addEventListener("click", async (event) => {
      const a = event.target.closest("a[href], area[href]");
      if (!a) { return; }
      event.preventDefault();
      const res = await resolve(win.location.href, a.getAttribute("href"));
      if (res.kind === "same-archive" && win !== frame.contentWindow) {
        // nested frames navigate themselves
        if (res.same_document) { win.location.hash = res.fragment; } else { win.location.href = res.locator; }
      } else if (res.kind === "same-archive") {
        const path = new URL(window.location.href);
        path.searchParams.set("path", res.path);
        path.hash = res.fragment;
        window.history.pushState(null, "", path.toString());
        if (res.same_document) {
          win.location.hash = res.fragment;
        } else {
          win.location.href = res.locator;
        }
      } else if (res.kind === "external") {
        window.location.href = res.url;
      }
    }, true);
    for (const sub of win.document.querySelectorAll("frame, iframe")) {
      sub.addEventListener("load", () => hook(sub.contentWindow));
    }
  }

  frame.addEventListener("load", async () => {
    const win = frame.contentWindow;
    const redirect = win.document.documentElement.getAttribute("@MARKER@");
    if (redirect !== null) {
      const a = win.document.querySelector("a[href]");
      if (a) { window.location.replace(a.getAttribute("href")); }
      return;
    }
    hook(win);
  });
})();
</script>
</body>
</html>
""".replace("@MARKER@", meta_refresh_marker_attr)
