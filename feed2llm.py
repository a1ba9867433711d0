"""Summarize every article of an RSS or Atom feed with an LLM, plus a meta-summary."""

from __future__ import annotations

import argparse
import logging
import re
import sys
import xml.etree.ElementTree as ET
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from bs4 import BeautifulSoup
from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, positive_int, run_cli
from concurrency import map_bounded
from disk_cache import JsonCache
from errors import RemoteError, TransformError
from http_client import ApiClient
from llm_client import TextGenerator, build_generator
from models import TransformOutcome
from reporter import report
from retry_guard import RetryPolicy, policy_from_env, with_retry
from sinks import claim_filename, safe_filename, write_text

DEFAULT_CONCURRENCY = 5
DEFAULT_DELAY_SECONDS = 0.2
DEFAULT_SELECTOR = "article"
SUMMARY_MAX_TOKENS = 1000
META_SUMMARY_MAX_TOKENS = 1500

SUMMARY_SYSTEM_PROMPT = (
    "Provide a concise 2-3 paragraph summary of the article, focusing on the main points and key "
    "takeaways. Do not include any preamble or explanation - respond only with the summary content."
)

META_SUMMARY_PROMPT = """I have summaries from multiple articles from {feed_title}.
Please analyze these summaries and create a meta-summary that:
1. Identifies the main themes and patterns across the articles
2. Highlights the key insights that appear repeatedly
3. Synthesizes the overall perspective and approach

Here are the summaries:

{summaries}"""

ATOM_NS = "{http://www.w3.org/2005/Atom}"

LOGGER = logging.getLogger(__name__)

_BOILERPLATE_LINK = re.compile(r"^(click here|read more)$", re.IGNORECASE)
_BLANK_RUNS = re.compile(r"\n{3,}")


@dataclass(frozen=True, slots=True)
class FeedEntry:
    title: str
    url: str


@dataclass(frozen=True, slots=True)
class Feed:
    title: str
    description: str
    link: str
    entries: list[FeedEntry]


def _text(element: ET.Element | None) -> str:
    return (element.text or "").strip() if element is not None else ""


def _atom_link(element: ET.Element) -> str:
    links = element.findall(f"{ATOM_NS}link")
    for link in links:
        if link.get("rel", "alternate") == "alternate" and link.get("href"):
            return link.get("href", "")
    return links[0].get("href", "") if links else ""


def parse_feed(xml_text: str) -> Feed:
    """Parse an RSS 2.0 or Atom document into its metadata and entries."""
    try:
        root = ET.fromstring(xml_text)
    except ET.ParseError as exc:
        raise RemoteError(f"Feed is not valid XML: {exc}") from exc

    channel = root.find("channel")
    if channel is not None:
        entries = [
            FeedEntry(title=_text(item.find("title")) or "Untitled", url=_text(item.find("link")))
            for item in channel.findall("item")
        ]
        return Feed(
            title=_text(channel.find("title")) or "Unknown Feed",
            description=_text(channel.find("description")),
            link=_text(channel.find("link")),
            entries=entries,
        )

    if root.tag == f"{ATOM_NS}feed":
        entries = [
            FeedEntry(title=_text(entry.find(f"{ATOM_NS}title")) or "Untitled", url=_atom_link(entry))
            for entry in root.findall(f"{ATOM_NS}entry")
        ]
        return Feed(
            title=_text(root.find(f"{ATOM_NS}title")) or "Unknown Feed",
            description=_text(root.find(f"{ATOM_NS}subtitle")),
            link=_atom_link(root),
            entries=entries,
        )

    raise RemoteError(f"Unsupported feed format: root element {root.tag!r}")


def extract_content(html: str, selector: str = DEFAULT_SELECTOR) -> str:
    """Plain text of the first element matching ``selector``."""
    soup = BeautifulSoup(html, "html.parser")
    node = soup.select_one(selector)
    if node is None:
        raise TransformError(f"No content found with selector: {selector}")
    for link in node.find_all("a"):
        if _BOILERPLATE_LINK.match(link.get_text(strip=True)):
            link.decompose()
    text = node.get_text("\n", strip=True)
    return _BLANK_RUNS.sub("\n\n", text).strip()


class ArticleSummarizer:
    """Fetches, extracts and summarizes one feed entry, caching both steps."""

    def __init__(
        self,
        client: ApiClient,
        generator: TextGenerator,
        cache_dir: Path,
        output_dir: Path,
        *,
        selector: str = DEFAULT_SELECTOR,
        policy: RetryPolicy | None = None,
        filenames: dict[FeedEntry, str] | None = None,
    ) -> None:
        self.client = client
        self.generator = generator
        self.articles_cache = JsonCache(cache_dir / "articles")
        self.summaries_cache = JsonCache(cache_dir / "summaries")
        self.output_dir = output_dir
        self.selector = selector
        self.policy = policy or RetryPolicy()
        self.filenames = filenames or {}

    async def _fetch_article(self, entry: FeedEntry) -> dict[str, Any]:
        html = await with_retry(lambda: self.client.get_text(entry.url), self.policy, label=f"fetch {entry.url}")
        return {"title": entry.title, "url": entry.url, "content": extract_content(html, self.selector)}

    async def _summarize(self, entry: FeedEntry, content: str) -> dict[str, Any]:
        summary = await with_retry(
            lambda: self.generator.generate(
                f"Title: {entry.title}\n\n{content}",
                system=SUMMARY_SYSTEM_PROMPT,
                max_tokens=SUMMARY_MAX_TOKENS,
            ),
            self.policy,
            label=f"summary of {entry.title}",
        )
        return {"title": entry.title, "summary": summary}

    async def __call__(self, entry: FeedEntry) -> TransformOutcome:
        if not entry.url:
            return TransformOutcome.failure(entry.title, "feed entry has no link")

        article = await self.articles_cache.get_or_create(entry.url, lambda: self._fetch_article(entry))
        content = article["content"]
        summary = await self.summaries_cache.get_or_create(entry.url, lambda: self._summarize(entry, content))

        filename = self.filenames.get(entry) or f"{safe_filename(entry.title, lower=True)}.md"
        write_text(self.output_dir / "articles" / filename, content)
        write_text(self.output_dir / "summaries" / filename, summary["summary"])
        return TransformOutcome.success(
            entry.title,
            {"title": entry.title, "url": entry.url, "summary": summary["summary"]},
        )


def article_filenames(entries: list[FeedEntry]) -> dict[FeedEntry, str]:
    """Output filename per entry, assigned in feed order so re-runs reuse the same names."""
    taken: set[str] = set()
    filenames: dict[FeedEntry, str] = {}
    for entry in entries:
        if entry not in filenames:
            filenames[entry] = claim_filename(f"{safe_filename(entry.title, lower=True)}.md", entry.url, taken)
    return filenames


def render_meta_summary(feed: Feed, meta_summary: str, summaries: list[dict[str, str]]) -> str:
    lines = [
        f"# Meta-Summary of {feed.title}",
        "",
        "## Feed Information",
        f"- Title: {feed.title}",
        f"- Description: {feed.description}",
        f"- URL: {feed.link}",
        "",
        "## Content Analysis",
        "",
        meta_summary,
        "",
        "## Individual Article Summaries",
        "",
    ]
    for item in summaries:
        lines += [f"### {item['title']}", item["url"], "", item["summary"], "", "---", ""]
    return "\n".join(lines)


async def process_feed(
    client: ApiClient,
    generator: TextGenerator,
    feed_url: str,
    output_dir: Path,
    cache_dir: Path,
    *,
    selector: str = DEFAULT_SELECTOR,
    concurrency: int = DEFAULT_CONCURRENCY,
    delay: float = DEFAULT_DELAY_SECONDS,
    policy: RetryPolicy | None = None,
) -> list[TransformOutcome]:
    """Summarize every feed entry and write ``summary.md`` when any succeeded.

    Args:
        client: HTTP client used for the feed and the article pages.
        generator: Text generator for summaries.
        feed_url: RSS or Atom feed URL.
        output_dir: Receives ``articles/``, ``summaries/`` and ``summary.md``.
        cache_dir: Root of the article and summary caches.
        selector: CSS selector of the article body.
        concurrency: Articles processed at the same time.
        delay: Pause each worker takes between articles.
        policy: Retry policy for page fetches and LLM calls.
    """
    policy = policy or RetryPolicy()
    LOGGER.info("Fetching feed from %s", feed_url)
    feed = parse_feed(await with_retry(lambda: client.get_text(feed_url), policy, label="feed"))
    LOGGER.info("Feed %r: %s articles to process", feed.title, len(feed.entries))

    summarizer = ArticleSummarizer(
        client,
        generator,
        cache_dir,
        output_dir,
        selector=selector,
        policy=policy,
        filenames=article_filenames(feed.entries),
    )
    outcomes = await map_bounded(
        feed.entries,
        summarizer,
        concurrency,
        delay_between=delay,
        item_id=lambda e: e.title,
    )
    report(outcomes, title="articles")

    summaries = [outcome.artifact for outcome in outcomes if outcome.ok]
    if summaries:
        LOGGER.info("Generating meta-summary...")
        prompt = META_SUMMARY_PROMPT.format(
            feed_title=feed.title,
            summaries="\n".join(f"Title: {s['title']}\n{s['summary']}\n---\n" for s in summaries),
        )
        meta_summary = await with_retry(
            lambda: generator.generate(prompt, max_tokens=META_SUMMARY_MAX_TOKENS),
            policy,
            label="meta-summary",
        )
        path = write_text(output_dir / "summary.md", render_meta_summary(feed, meta_summary, summaries))
        LOGGER.info("Saved meta-summary to %s", path)
    return outcomes


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="feed2llm",
        description="Process an XML feed and generate article summaries with an LLM",
    )
    parser.add_argument("-f", "--feed", required=True, help="URL of the RSS or Atom feed")
    parser.add_argument(
        "-c",
        "--concurrent",
        type=positive_int,
        default=DEFAULT_CONCURRENCY,
        help="Maximum concurrent articles",
    )
    parser.add_argument(
        "-d",
        "--delay",
        type=int,
        default=int(DEFAULT_DELAY_SECONDS * 1000),
        help="Delay between requests in ms",
    )
    parser.add_argument("-o", "--output", default="./output", help="Output directory")
    parser.add_argument("--cache", default="./.cache", help="Cache directory")
    parser.add_argument("--selector", default=DEFAULT_SELECTOR, help="CSS selector for article content")
    parser.add_argument("--model", help="Model to use (default depends on provider)")
    parser.add_argument("--provider", choices=("anthropic", "openai"), help="LLM provider (default: LLM_PROVIDER)")
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    generator = build_generator(args.provider, model=args.model)
    client = ApiClient(headers={"User-Agent": "feed2llm"})
    try:
        await process_feed(
            client,
            generator,
            args.feed,
            Path(args.output),
            Path(args.cache),
            selector=args.selector,
            concurrency=args.concurrent,
            delay=max(args.delay, 0) / 1000,
            policy=policy_from_env(),
        )
    finally:
        client.close()


def main(argv: list[str] | None = None) -> None:
    load_dotenv()
    args = parse_args(argv)
    configure_logging(args.verbose)
    sys.exit(run_cli(lambda: _run(args)))


if __name__ == "__main__":
    main()
