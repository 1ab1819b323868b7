"""
=============================================================================
RELOAD SNIPPET INJECTION
=============================================================================

Every HTML page the static handler serves gets a small script that opens
the reload channel and reloads the page on any message:

    <html>                              <html>
      <body>                              <body>
        <h1>Hi</h1>          ──►            <h1>Hi</h1>
      </body>                               <script data-liveserver-reload>…</script>
    </html>                               </body>
                                        </html>

Rules:
    - The snippet goes immediately before the LAST ``</body>`` (any case,
      optional whitespace before ``>``). Earlier matches can sit inside
      inline scripts or comments; the last one is the real closing tag.
    - No closing body tag (fragments, truncated files): the snippet is
      appended at the end.
    - A page that already carries the exact snippet is returned untouched,
      so the output always contains it exactly once. Pages that merely
      mention the marker attribute in their text still get the snippet.
    - The input is never modified apart from the insertion.

=============================================================================
"""

import re


SNIPPET_MARKER = "data-liveserver-reload"

RELOAD_SCRIPT = f"""<script {SNIPPET_MARKER}>
(function () {{
  if (window.__LIVE_RELOAD__) {{ return; }}
  window.__LIVE_RELOAD__ = true;
  var scheme = location.protocol === "https:" ? "wss://" : "ws://";
  var socket = new WebSocket(scheme + location.host + "/");
  socket.onmessage = function () {{ location.reload(); }};
  socket.onerror = function () {{ console.log("Live reload: connection error"); }};
}})();
</script>
"""

_CLOSING_BODY = re.compile(r"</body\s*>", re.IGNORECASE)


def has_reload_script(html: str, script: str = RELOAD_SCRIPT) -> bool:
    return script in html


def inject_reload_script(html: str, script: str = RELOAD_SCRIPT) -> str:
    """
    Insert ``script`` before the closing body tag, or append it.

        >>> inject_reload_script("<body>x</BODY>").count("data-liveserver-reload")
        1
    """
    if has_reload_script(html, script):
        return html

    last = None
    for last in _CLOSING_BODY.finditer(html):
        pass

    if last is None:
        return html + script

    position = last.start()
    return html[:position] + script + html[position:]
