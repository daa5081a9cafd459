"""Tests for block-level crossover."""

import random

from artcade.evolution.crossover import available_blocks, crossover, top_level_elements
from artcade.types import PatternContent


def test_top_level_elements():
    html = '<div id="a"><span>x</span></div>\n<img src="p.png"><p>y</p><style>.a{}</style>'
    spans = [html[s:e] for s, e in top_level_elements(html)]
    assert spans == ['<div id="a"><span>x</span></div>', '<img src="p.png">', "<p>y</p>"]


def test_style_block_swap():
    a = PatternContent(html="<div></div><style>.a { color: red; }</style>")
    b = PatternContent(html="<style>.b { color: blue; }</style>")
    assert available_blocks(a, b) == ["style"]

    child = crossover(a, b, random.Random(0))
    assert child.html == "<div></div><style>.b { color: blue; }</style>"


def test_script_block_swap():
    a = PatternContent(html="<script>let a = 1;</script>")
    b = PatternContent(html="<script>let b = 2;</script>")
    child = crossover(a, b, random.Random(0))
    assert child.html == "<script>let b = 2;</script>"


def test_element_swap():
    a = PatternContent(html="<header>A</header><main>A</main>")
    b = PatternContent(html="<footer>B</footer>")
    child = crossover(a, b, random.Random(5))
    assert child.html in ("<footer>B</footer><main>A</main>", "<header>A</header><footer>B</footer>")


def test_css_field_swap():
    a = PatternContent(html="text only", css=".a {}")
    b = PatternContent(html="more text", css=".b {}")
    child = crossover(a, b, random.Random(0))
    assert child.css == ".b {}"
    assert child.html == "text only"


def test_no_common_blocks_returns_primary():
    a = PatternContent(html="plain text")
    b = PatternContent(html="<div></div>")
    assert crossover(a, b, random.Random(0)) == a
