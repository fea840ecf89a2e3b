"""Tests for pulling the HTML document out of raw model output."""

import pytest

from game_forge.errors import ArtifactExtractionError
from game_forge.generation.extraction import extract_artifact

DOC = "<!DOCTYPE html>\n<html><body><canvas></canvas></body></html>"


class TestExtractArtifact:
    def test_bare_document(self) -> None:
        assert extract_artifact(DOC) == ("doctype", DOC)

    def test_document_with_chatter(self) -> None:
        raw = f"Here is your game:\n\n{DOC}\n\nEnjoy!"
        name, doc = extract_artifact(raw)
        assert name == "doctype"
        assert doc == DOC

    def test_doctype_case_insensitive(self) -> None:
        raw = "<!doctype html><html></html>"
        assert extract_artifact(raw)[0] == "doctype"

    def test_html_fence_without_doctype(self) -> None:
        raw = "```html\n<div>partial</div>\n```"
        assert extract_artifact(raw) == ("html_fence", "<div>partial</div>")

    def test_html_element_without_doctype(self) -> None:
        raw = "text <html lang='en'><body></body></html> more"
        assert extract_artifact(raw) == ("html_element", "<html lang='en'><body></body></html>")

    def test_generic_fence_with_markup(self) -> None:
        raw = "```\n<body><canvas id='c'></canvas></body>\n```"
        assert extract_artifact(raw) == ("any_fence", "<body><canvas id='c'></canvas></body>")

    def test_generic_fence_without_markup_ignored(self) -> None:
        with pytest.raises(ArtifactExtractionError):
            extract_artifact("```js\nconsole.log(1)\n```")

    def test_nothing_found(self) -> None:
        with pytest.raises(ArtifactExtractionError, match="No HTML document"):
            extract_artifact("Sorry, I cannot help with that.")

    def test_empty_fence_falls_through(self) -> None:
        with pytest.raises(ArtifactExtractionError):
            extract_artifact("```html\n   \n```")

    def test_custom_strategies(self) -> None:
        strategies = [("upper", lambda text: text.upper() or None)]
        assert extract_artifact("abc", strategies) == ("upper", "ABC")
