from research_core.utils.urls import (
    dedupe_identifiers,
    normalize_identifier,
    normalize_identifiers,
)


def test_host_prefix_case_and_trailing_slash_collapse():
    a = normalize_identifier("https://www.Example.com/Docs/")
    b = normalize_identifier("http://example.com/docs")
    assert a == b == "example.com/docs"


def test_root_path_is_preserved():
    assert normalize_identifier("https://example.com/") == "example.com/"
    assert normalize_identifier("https://example.com") == "example.com/"


def test_query_string_kept_fragment_dropped():
    key = normalize_identifier("https://example.com/search?q=Python#top")
    assert key == "example.com/search?q=python"
    assert normalize_identifier("https://example.com/search?q=a") != normalize_identifier(
        "https://example.com/search?q=b"
    )


def test_non_www_subdomain_is_kept():
    assert normalize_identifier("https://old.reddit.com/r/python/") == "old.reddit.com/r/python"


def test_bare_identifier_best_effort():
    assert normalize_identifier("T3_ABC/") == "t3_abc"
    assert normalize_identifier("") == ""
    assert normalize_identifier("   ") == ""


def test_normalize_identifiers_and_dedupe_preserve_order():
    urls = ["https://www.a.com/x/", "https://b.com", "http://a.com/x"]
    assert normalize_identifiers(urls) == ["a.com/x", "b.com/", "a.com/x"]
    assert dedupe_identifiers(urls) == ["https://www.a.com/x/", "https://b.com"]


def test_malformed_netloc_falls_back_to_bare_key():
    assert normalize_identifier("http://[::1/broken") == "http://[::1/broken"
    assert normalize_identifier("HTTP://[Bad/") == "http://[bad"
    assert dedupe_identifiers(["http://[bad", "https://ok.com", "HTTP://[BAD"]) == [
        "http://[bad",
        "https://ok.com",
    ]
