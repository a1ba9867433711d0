"""Scrape the last twelve months of Trustpilot reviews for a domain."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from typing import Any

import requests
from bs4 import BeautifulSoup
from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, run_cli
from http_client import ApiClient
from models import Page
from paginator import fetch_all
from retry_guard import RetryPolicy, policy_from_env
from sinks import emit

TRUSTPILOT_URL = "https://it.trustpilot.com/review/{domain}"
PAGE_DELAY_SECONDS = 1.0
OUTPUT_FORMATS = ("json", "markdown")

LOGGER = logging.getLogger(__name__)


def parse_reviews(html: str) -> list[dict[str, Any]] | None:
    """Extract review records from the page's JSON-LD block.

    Returns None when the page carries no business-unit JSON-LD, which marks
    the end of the listing.
    """
    soup = BeautifulSoup(html, "html.parser")
    script = soup.find("script", attrs={"data-business-unit-json-ld": True})
    if script is None or not script.string:
        return None
    try:
        data = json.loads(script.string)
    except json.JSONDecodeError as exc:
        LOGGER.warning("Failed to parse review JSON-LD: %s", exc)
        return None
    if not isinstance(data, dict):
        LOGGER.warning("Unexpected review JSON-LD shape: %s", type(data).__name__)
        return None

    reviews = []
    for entity in data.get("@graph") or []:
        if not isinstance(entity, dict) or entity.get("@type") != "Review":
            continue
        author = entity.get("author") if isinstance(entity.get("author"), dict) else {}
        reviews.append({
            "id": entity.get("@id"),
            "author": author.get("name"),
            "author_url": author.get("url"),
            "date": entity.get("datePublished"),
            "title": entity.get("headline"),
            "content": entity.get("reviewBody"),
            "rating": _rating(entity),
            "language": entity.get("inLanguage"),
        })
    return reviews


def _rating(entity: dict[str, Any]) -> int | None:
    rating = entity.get("reviewRating")
    value = rating.get("ratingValue") if isinstance(rating, dict) else None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def review_pages(client: ApiClient, domain: str, *, delay: float = PAGE_DELAY_SECONDS):
    """Page fetcher over review listing pages; a 404 or missing JSON-LD ends it."""
    url = TRUSTPILOT_URL.format(domain=domain)

    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        page = int(cursor or "1")
        if page > 1 and delay:
            await asyncio.sleep(delay)
        LOGGER.info("Fetching page %s...", page)
        try:
            html = await client.get_text(url, params={"date": "last12months", "sort": "recency", "page": page})
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                return Page(items=[], next_cursor=None)
            raise

        reviews = parse_reviews(html)
        if reviews is None:
            LOGGER.info("No review data found on page %s", page)
            return Page(items=[], next_cursor=None)
        return Page(items=reviews, next_cursor=str(page + 1) if reviews else None)

    return fetch_page


async def scrape_reviews(
    client: ApiClient,
    domain: str,
    *,
    delay: float = PAGE_DELAY_SECONDS,
    policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    return await fetch_all(review_pages(client, domain, delay=delay), retry_policy=policy, label="review")


def format_markdown(domain: str, reviews: list[dict[str, Any]]) -> str:
    lines = [f"# Trustpilot Reviews for {domain}", "", f"Total reviews: {len(reviews)}", ""]
    for review in reviews:
        rating = max(0, min(5, review.get("rating") or 0))
        stars = "★" * rating + "☆" * (5 - rating)
        lines += [
            f"## {review.get('title') or 'Untitled'}",
            "",
            f"**Author:** [{review.get('author')}]({review.get('author_url')})  ",
            f"**Date:** {review.get('date')}  ",
            f"**Rating:** {stars} ({rating}/5)  ",
            f"**Language:** {review.get('language')}  ",
            "",
            review.get("content") or "",
            "",
            "---",
            "",
        ]
    return "\n".join(lines)


def format_json(domain: str, reviews: list[dict[str, Any]]) -> str:
    return json.dumps(
        {"domain": domain, "total_count": len(reviews), "records": reviews},
        indent=2,
        ensure_ascii=False,
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="trustpilot2json", description="Scrape reviews from Trustpilot for a domain")
    parser.add_argument("domain", help="Domain to scrape (e.g. example.com)")
    parser.add_argument("-o", "--output", help="Output file (default: stdout)")
    parser.add_argument("-f", "--format", choices=OUTPUT_FORMATS, default="json", help="Output format")
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    client = ApiClient(headers={"User-Agent": "Mozilla/5.0 (compatible; trustpilot2json)"})
    LOGGER.info("Starting to fetch reviews for %s...", args.domain)
    try:
        reviews = await scrape_reviews(client, args.domain, policy=policy_from_env())
    finally:
        client.close()

    LOGGER.info("Collected %s reviews", len(reviews))
    if args.format == "markdown":
        emit(format_markdown(args.domain, reviews), args.output)
    else:
        emit(format_json(args.domain, reviews), args.output)


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
