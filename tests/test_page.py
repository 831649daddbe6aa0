from __future__ import annotations

from webinsight.engine.page import PageDocument


def test_links_resolve_against_base_href() -> None:
    html = """<html><head><base href="https://cdn.example.org/docs/"></head>
    <body><a href="guide.html"> The  guide </a><a href="">empty</a>
    <a href="https://other.test/x">Other</a></body></html>"""

    data = PageDocument("https://example.org/start", html).page_data()

    assert [link.to_dict() for link in data.links] == [
        {"text": "The guide", "url": "https://cdn.example.org/docs/guide.html"},
        {"text": "Other", "url": "https://other.test/x"},
    ]


def test_missing_title_and_meta_defaults() -> None:
    data = PageDocument("https://example.org/", "<html><body>Just text</body></html>").page_data()

    assert data.title == "Untitled Page"
    assert data.lang is None
    assert data.description is None
    assert data.keywords is None
    assert data.text == "Just text"


def test_metadata_and_wire_form() -> None:
    html = """<html lang="en"><head><title>Tides</title>
    <meta name="keywords" content="sea, moon"></head>
    <body><h1>Tides</h1><p>The moon pulls the sea.</p></body></html>"""

    data = PageDocument("https://example.org/tides", html).page_data()

    assert data.keywords == "sea, moon"
    assert data.text == "Tides\nThe moon pulls the sea."
    assert data.metadata()["lang"] == "en"
    assert data.to_wire()["html"] == html


def test_selection_is_trimmed() -> None:
    document = PageDocument("https://example.org/", "<html></html>", selected_text="  hi \n")

    assert document.selection() == "hi"
    document.select("")
    assert document.selection() == ""
