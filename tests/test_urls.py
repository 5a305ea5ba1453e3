import pytest

from site_taxonomy.errors import InvalidURLError
from site_taxonomy.hierarchy.urls import (
    domain_root,
    node_id_for,
    normalize_url,
    parent_candidates,
    parse_url,
    slug_for,
    title_from_slug,
)


def test_normalize_url_strips_query_fragment_and_trailing_slash():
    assert normalize_url("HTTPS://Shop.Example.com/Shoes/Running/?color=red#top") == (
        "https://shop.example.com/shoes/running"
    )


def test_normalize_url_keeps_root_slash():
    assert normalize_url("https://shop.example.com") == "https://shop.example.com/"
    assert normalize_url("https://shop.example.com/") == "https://shop.example.com/"


def test_normalize_url_drops_default_port():
    assert normalize_url("https://shop.example.com:443/a") == "https://shop.example.com/a"
    assert normalize_url("http://shop.example.com:8080/a") == "http://shop.example.com:8080/a"


@pytest.mark.parametrize("url", ["", "not a url", "/relative/path", "https://host:notaport/x"])
def test_normalize_url_rejects_malformed(url):
    with pytest.raises(InvalidURLError):
        normalize_url(url)


def test_parse_url():
    parsed = parse_url("https://shop.example.com/Shoes/Running?color=red&size=")
    assert parsed is not None
    assert parsed.domain == "shop.example.com"
    assert parsed.segments == ("shoes", "running")
    assert parsed.params == {"color": "red", "size": ""}
    assert parsed.path == "/shoes/running"
    assert parse_url("nonsense") is None


def test_parent_candidates_longest_first():
    parsed = parse_url("https://shop.example.com/a/b/c")
    assert parent_candidates(parsed) == [
        "https://shop.example.com/a/b",
        "https://shop.example.com/a",
    ]
    assert domain_root(parsed) == "https://shop.example.com/"


def test_node_id_is_stable():
    a = node_id_for("https://shop.example.com/shoes")
    assert a == node_id_for("https://shop.example.com/shoes")
    assert a != node_id_for("https://shop.example.com/shirts")
    assert a.startswith("node_")


def test_slug_and_title():
    assert slug_for(("shoes", "running-shoes")) == "running-shoes"
    assert slug_for(()) == "home"
    assert title_from_slug("running-shoes_for_men") == "Running Shoes For Men"
