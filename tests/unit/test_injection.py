"""
Unit tests for reload snippet injection.
"""

import pytest

from liveserver.http.injection import (
    RELOAD_SCRIPT,
    SNIPPET_MARKER,
    has_reload_script,
    inject_reload_script,
)


HTML_INPUTS = [
    "",
    "plain text, no markup",
    "<html><body><p>hi</p></body></html>",
    "<HTML><BODY>upper</BODY></HTML>",
    "<body>spaced</body >",
    "<html><body><script>console.log(1)</script></body></html>",
    "<html><body><div><p>unbalanced</body>",
    "<body>first</body><body>second</body>",
    "<html><head><title>no body</title></head></html>",
    "<p>data-liveserver-reload</p>",
    "<html><body><p>use the data-liveserver-reload attribute</p></body></html>",
    "<body><script data-liveserver-reload>custom()</script></body>",
]


class TestInjectReloadScript:
    """Tests for inject_reload_script()."""

    @pytest.mark.parametrize("html", HTML_INPUTS)
    def test_snippet_appears_exactly_once(self, html: str):
        result = inject_reload_script(html)
        assert result.count(RELOAD_SCRIPT) == 1

    @pytest.mark.parametrize("html", HTML_INPUTS)
    def test_original_content_kept_apart_from_insertion(self, html: str):
        """Removing the snippet gives back the input unchanged."""
        result = inject_reload_script(html)
        assert result.replace(RELOAD_SCRIPT, "", 1) == html

    def test_inserted_before_closing_body(self):
        result = inject_reload_script("<html><body>x</body></html>")
        assert result == "<html><body>x" + RELOAD_SCRIPT + "</body></html>"

    def test_case_insensitive_body_tag(self):
        result = inject_reload_script("<BODY>x</BODY>")
        assert result.endswith(RELOAD_SCRIPT + "</BODY>")

    def test_appended_without_body_tag(self):
        result = inject_reload_script("<p>fragment</p>")
        assert result == "<p>fragment</p>" + RELOAD_SCRIPT

    def test_uses_last_closing_body(self):
        """A '</body>' inside earlier content does not capture the snippet."""
        html = "<body><pre>&lt;/body&gt; </body></pre></body>"
        result = inject_reload_script(html)
        assert result.endswith(RELOAD_SCRIPT + "</body>")

    def test_already_injected_left_alone(self):
        once = inject_reload_script("<body></body>")
        assert inject_reload_script(once) == once

    def test_marker_text_in_page_still_injected(self):
        html = "<html><body><p>use the data-liveserver-reload attribute</p></body></html>"
        result = inject_reload_script(html)

        assert result.count(RELOAD_SCRIPT) == 1
        assert result.endswith(RELOAD_SCRIPT + "</body></html>")

    def test_custom_script(self):
        script = f"<script {SNIPPET_MARKER}>x()</script>"
        assert inject_reload_script("<body></body>", script) == f"<body>{script}</body>"


class TestReloadScript:
    """The client snippet itself."""

    def test_connects_to_same_host(self):
        assert "location.host" in RELOAD_SCRIPT
        assert "wss://" in RELOAD_SCRIPT and "ws://" in RELOAD_SCRIPT

    def test_reloads_on_message(self):
        assert "location.reload()" in RELOAD_SCRIPT

    def test_has_marker(self):
        assert has_reload_script(RELOAD_SCRIPT)
        assert not has_reload_script("<script>other()</script>")
        assert not has_reload_script(f"<p>{SNIPPET_MARKER}</p>")
