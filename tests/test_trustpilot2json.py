import asyncio
import json
from unittest.mock import AsyncMock, MagicMock

import pytest
import requests

from trustpilot2json import format_json, format_markdown, parse_reviews, scrape_reviews


def _page_html(*reviews: dict) -> str:
    graph = [{"@type": "Organization", "name": "Example"}]
    for index, review in enumerate(reviews):
        graph.append({
            "@type": "Review",
            "@id": f"review-{index}",
            "author": {"name": review["author"], "url": f"https://example.com/u/{index}"},
            "datePublished": "2024-03-01T10:00:00Z",
            "headline": review.get("headline", "Great"),
            "reviewBody": "Works well.",
            "reviewRating": {"ratingValue": review.get("rating", "4")},
            "inLanguage": "en",
        })
    payload = json.dumps({"@graph": graph})
    return f'<html><head><script type="application/ld+json" data-business-unit-json-ld="true">{payload}</script></head></html>'


def _http_error(status: int) -> requests.HTTPError:
    response = requests.Response()
    response.status_code = status
    return requests.HTTPError(f"{status} error", response=response)


def test_parse_reviews_maps_review_entities() -> None:
    reviews = parse_reviews(_page_html({"author": "Ann", "rating": "5"}, {"author": "Bob", "rating": "x"}))

    assert [r["author"] for r in reviews] == ["Ann", "Bob"]
    assert reviews[0] == {
        "id": "review-0",
        "author": "Ann",
        "author_url": "https://example.com/u/0",
        "date": "2024-03-01T10:00:00Z",
        "title": "Great",
        "content": "Works well.",
        "rating": 5,
        "language": "en",
    }
    assert reviews[1]["rating"] is None


def test_parse_reviews_without_json_ld_returns_none() -> None:
    assert parse_reviews("<html><body>Nothing here</body></html>") is None


def test_scrape_stops_on_not_found() -> None:
    client = MagicMock()
    client.get_text = AsyncMock(side_effect=[
        _page_html({"author": "Ann"}),
        _page_html({"author": "Bob"}),
        _http_error(404),
    ])

    reviews = asyncio.run(scrape_reviews(client, "example.com", delay=0))

    assert [r["author"] for r in reviews] == ["Ann", "Bob"]
    pages = [call.kwargs["params"]["page"] for call in client.get_text.call_args_list]
    assert pages == [1, 2, 3]
    assert client.get_text.call_args_list[0].args[0] == "https://it.trustpilot.com/review/example.com"


def test_scrape_stops_when_page_has_no_review_data() -> None:
    client = MagicMock()
    client.get_text = AsyncMock(side_effect=[_page_html({"author": "Ann"}), "<html></html>"])

    reviews = asyncio.run(scrape_reviews(client, "example.com", delay=0))

    assert len(reviews) == 1
    assert client.get_text.await_count == 2


def test_scrape_propagates_other_http_errors() -> None:
    client = MagicMock()
    client.get_text = AsyncMock(side_effect=_http_error(403))

    with pytest.raises(requests.HTTPError):
        asyncio.run(scrape_reviews(client, "example.com", delay=0))


def test_format_markdown_renders_stars() -> None:
    reviews = parse_reviews(_page_html({"author": "Ann", "headline": "Solid"}))

    text = format_markdown("example.com", reviews)

    assert text.startswith("# Trustpilot Reviews for example.com\n\nTotal reviews: 1")
    assert "## Solid" in text
    assert "**Rating:** ★★★★☆ (4/5)" in text
    assert "[Ann](https://example.com/u/0)" in text


def test_format_json_keeps_unicode() -> None:
    text = format_json("example.com", [{"author": "Zoë"}])

    assert "Zoë" in text
    assert json.loads(text) == {"domain": "example.com", "total_count": 1, "records": [{"author": "Zoë"}]}


@pytest.mark.parametrize("payload", ["[]", '"just text"', "42"])
def test_parse_reviews_with_non_object_json_ld_returns_none(payload: str) -> None:
    html = f'<script data-business-unit-json-ld="true">{payload}</script>'

    assert parse_reviews(html) is None


def test_parse_reviews_skips_malformed_entities() -> None:
    graph = [
        "not an entity",
        None,
        {"@type": "Review", "author": "Ann", "reviewRating": 5, "headline": "Loose"},
        {"@type": "Review", "author": {"name": "Bob"}, "reviewRating": {"ratingValue": "3"}},
    ]
    html = f'<script data-business-unit-json-ld="true">{json.dumps({"@graph": graph})}</script>'

    reviews = parse_reviews(html)

    assert [(r["author"], r["rating"]) for r in reviews] == [(None, None), ("Bob", 3)]
