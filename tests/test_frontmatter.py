from __future__ import annotations

from sitepipe.frontmatter import split_frontmatter, strip_quotes


def test_split_frontmatter_returns_fields_and_body() -> None:
    fm, body = split_frontmatter('---\ntitle: "Hello"\nlayout: page.njk\n---\n\n# Body\n')

    assert fm == {"title": "Hello", "layout": "page.njk"}
    assert body == "# Body\n"


def test_indented_lines_continue_previous_key() -> None:
    fm, _ = split_frontmatter("---\ndescription:\n  first line\n  second line\n---\ntext")

    assert fm["description"] == "first line second line"


def test_content_without_frontmatter_is_untouched() -> None:
    fm, body = split_frontmatter("# Just markdown\n---\n")

    assert fm == {}
    assert body == "# Just markdown\n---\n"


def test_comments_and_malformed_lines_are_ignored() -> None:
    fm, _ = split_frontmatter("---\n# comment\nnot a pair\nkey: 'v'\n---\n")

    assert fm == {"key": "v"}


def test_strip_quotes_only_strips_matching_pairs() -> None:
    assert strip_quotes("'a'") == "a"
    assert strip_quotes("\"a'") == "\"a'"
    assert strip_quotes("x") == "x"
