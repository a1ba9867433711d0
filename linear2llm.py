"""Export Linear projects and their issues as LLM-friendly tagged text files."""

from __future__ import annotations

import argparse
import logging
import re
import sys
from collections.abc import Sequence
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from dotenv import load_dotenv

from cli_common import add_common_arguments, configure_logging, positive_int, require_env, run_cli
from concurrency import map_bounded
from http_client import ApiClient
from models import Page, TransformOutcome
from paginator import fetch_all
from reporter import report
from retry_guard import RetryPolicy, policy_from_env
from sinks import write_text

LINEAR_API_URL = "https://api.linear.app/graphql"
PROJECT_PAGE_SIZE = 10
ISSUE_PAGE_SIZE = 25
DEFAULT_STATUSES = ("planned", "started")
DEFAULT_CONCURRENCY = 3

PRIORITIES = {
    0: "NO_PRIORITY",
    1: "URGENT",
    2: "HIGH",
    3: "MEDIUM",
    4: "LOW",
}

PROJECT_FIELDS = """
fragment ProjectFields on Project {
  id
  name
  description
  slugId
  startDate
  targetDate
  state
  progress
  url
  creator { name }
  lead { name }
  teams { nodes { id name key } }
}
"""

ISSUE_FIELDS = """
fragment IssueFields on Issue {
  id
  identifier
  title
  description
  state { name type }
  priority
  dueDate
  estimate
  createdAt
  updatedAt
  completedAt
  assignee { name }
  creator { name }
}
"""

PROJECTS_QUERY = PROJECT_FIELDS + """
query GetProjects($after: String, $first: Int!, $filter: ProjectFilter) {
  projects(filter: $filter, after: $after, first: $first) {
    nodes { ...ProjectFields }
    pageInfo { hasNextPage endCursor }
  }
}
"""

PROJECT_ISSUES_QUERY = ISSUE_FIELDS + """
query GetProjectIssues($projectId: String!, $after: String, $first: Int!) {
  project(id: $projectId) {
    issues(after: $after, first: $first) {
      nodes { ...IssueFields }
      pageInfo { hasNextPage endCursor }
    }
  }
}
"""

LLM_INSTRUCTIONS = "\n".join([
    "### INSTRUCTIONS FOR LANGUAGE MODEL ###",
    "This document contains exported project and issue data from Linear, structured for analysis.",
    "The format follows these rules:",
    "1. Data is organized hierarchically: PROJECT > PROJECT_ISSUES > ISSUE",
    "2. Each section is clearly marked with XML-style tags (e.g., <PROJECT>, </PROJECT>)",
    "3. Fields are in KEY: VALUE format, one per line",
    "4. Dates are in ISO 8601 format",
    '5. Missing or empty values are marked as "NONE"',
    "6. Long text fields are wrapped in _START and _END markers",
    "7. Priorities are normalized to: NO_PRIORITY, URGENT, HIGH, MEDIUM, LOW",
    "8. Relationships are marked explicitly (e.g., PROJECT_ID in issues links to parent project)",
    "9. All counts are explicit (ISSUE_COUNT)",
    "",
    "When analyzing this data, you should:",
    "1. Consider relationships between projects and their issues",
    "2. Pay attention to temporal aspects (created, updated, completed dates)",
    "3. Look for patterns in priority distributions and state changes",
    "4. Consider both quantitative metrics (counts, progress) and qualitative data (descriptions)",
    "",
])

LOGGER = logging.getLogger(__name__)

_DIGITS = re.compile(r"(\d+)")


def build_client(api_key: str) -> ApiClient:
    return ApiClient(LINEAR_API_URL, headers={"Authorization": api_key})


def format_priority(priority: Any) -> str:
    return PRIORITIES.get(priority, "UNKNOWN")


def natural_key(identifier: str) -> list[Any]:
    """Sort key that orders ``ENG-9`` before ``ENG-10``."""
    return [int(part) if part.isdigit() else part.lower() for part in _DIGITS.split(identifier)]


def _value(value: Any) -> str:
    if value is None or value == "":
        return "NONE"
    return str(value)


def _name(person: dict[str, Any] | None) -> str:
    return _value((person or {}).get("name"))


def _first_team(project: dict[str, Any]) -> dict[str, Any]:
    nodes = (project.get("teams") or {}).get("nodes") or []
    return nodes[0] if nodes else {}


def render_issue(issue: dict[str, Any], project_id: str) -> str:
    state = issue.get("state") or {}
    return "\n".join([
        "<ISSUE>",
        f"ID: {issue.get('id')}",
        f"PROJECT_ID: {project_id}",
        f"IDENTIFIER: {issue.get('identifier')}",
        f"TITLE: {issue.get('title')}",
        f"STATE: {_value(state.get('name'))}",
        f"STATE_TYPE: {_value(state.get('type'))}",
        f"PRIORITY: {format_priority(issue.get('priority'))}",
        f"DUE_DATE: {_value(issue.get('dueDate'))}",
        f"ESTIMATE: {_value(issue.get('estimate'))}",
        f"CREATED_AT: {_value(issue.get('createdAt'))}",
        f"UPDATED_AT: {_value(issue.get('updatedAt'))}",
        f"COMPLETED_AT: {_value(issue.get('completedAt'))}",
        f"CREATOR: {_name(issue.get('creator'))}",
        f"ASSIGNEE: {_name(issue.get('assignee'))}",
        "DESCRIPTION_START",
        _value(issue.get("description")),
        "DESCRIPTION_END",
        "</ISSUE>",
    ])


def render_project(project: dict[str, Any], issues: Sequence[dict[str, Any]]) -> str:
    team = _first_team(project)
    ordered = sorted(issues, key=lambda issue: natural_key(issue.get("identifier") or ""))
    sections = [
        LLM_INSTRUCTIONS,
        "<PROJECT>",
        f"ID: {project.get('id')}",
        f"NAME: {project.get('name')}",
        f"SLUG: {project.get('slugId')}",
        f"STATE: {_value(project.get('state'))}",
        f"PROGRESS: {_value(project.get('progress'))}",
        f"START_DATE: {_value(project.get('startDate'))}",
        f"TARGET_DATE: {_value(project.get('targetDate'))}",
        f"CREATOR: {_name(project.get('creator'))}",
        f"LEAD: {_name(project.get('lead'))}",
        f"URL: {_value(project.get('url'))}",
        f"TEAM_ID: {_value(team.get('id'))}",
        f"TEAM_NAME: {_value(team.get('name'))}",
        f"TEAM_KEY: {_value(team.get('key'))}",
        "DESCRIPTION_START",
        _value(project.get("description")),
        "DESCRIPTION_END",
        f"ISSUE_COUNT: {len(issues)}",
        "</PROJECT>",
        "",
        "<PROJECT_ISSUES>",
        "\n\n".join(render_issue(issue, project.get("id", "")) for issue in ordered),
        "</PROJECT_ISSUES>",
    ]
    return "\n".join(sections)


def render_index(projects: Sequence[dict[str, Any]], exported_at: datetime | None = None) -> str:
    """Index of all exported projects grouped by their first team."""
    exported_at = exported_at or datetime.now(UTC)
    teams: dict[str, dict[str, Any]] = {}
    for project in projects:
        team = _first_team(project)
        key = team.get("key") or "NO_TEAM"
        entry = teams.setdefault(key, {
            "id": team.get("id") or "NONE",
            "name": team.get("name") or "No Team",
            "projects": [],
        })
        entry["projects"].append(project)

    sections = [
        LLM_INSTRUCTIONS,
        "<LINEAR_EXPORT_INDEX>",
        f"EXPORT_DATE: {exported_at.isoformat().replace('+00:00', 'Z')}",
        f"PROJECT_COUNT: {len(projects)}",
        "",
        "<PROJECTS_SUMMARY>",
    ]
    for key, team in teams.items():
        sections += [
            "<TEAM>",
            f"ID: {team['id']}",
            f"NAME: {team['name']}",
            f"KEY: {key}",
            f"PROJECT_COUNT: {len(team['projects'])}",
            "",
        ]
        for project in team["projects"]:
            sections += [
                "<PROJECT_REFERENCE>",
                f"ID: {project.get('id')}",
                f"NAME: {project.get('name')}",
                f"FILENAME: {project.get('slugId')}.txt",
                f"STATE: {_value(project.get('state'))}",
                f"PROGRESS: {_value(project.get('progress'))}",
                "</PROJECT_REFERENCE>",
                "",
            ]
        sections += ["</TEAM>", ""]
    sections += ["</PROJECTS_SUMMARY>", "</LINEAR_EXPORT_INDEX>"]
    return "\n".join(sections)


def _connection_page(connection: dict[str, Any] | None) -> Page[dict[str, Any]]:
    connection = connection or {}
    info = connection.get("pageInfo") or {}
    cursor = info.get("endCursor") if info.get("hasNextPage") else None
    return Page(items=connection.get("nodes") or [], next_cursor=cursor)


def project_filter(statuses: Sequence[str], team: str | None) -> dict[str, Any]:
    filters: dict[str, Any] = {"status": {"type": {"in": list(statuses)}}}
    if team:
        filters["accessibleTeams"] = {"some": {"key": {"eq": team}}}
    return filters


async def fetch_projects(
    client: ApiClient,
    statuses: Sequence[str],
    team: str | None = None,
    policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        data = await client.graphql(
            PROJECTS_QUERY,
            {"after": cursor, "first": PROJECT_PAGE_SIZE, "filter": project_filter(statuses, team)},
        )
        return _connection_page(data.get("projects"))

    return await fetch_all(fetch_page, retry_policy=policy, label="project")


async def fetch_project_issues(
    client: ApiClient,
    project_id: str,
    policy: RetryPolicy | None = None,
) -> list[dict[str, Any]]:
    async def fetch_page(cursor: str | None) -> Page[dict[str, Any]]:
        data = await client.graphql(
            PROJECT_ISSUES_QUERY,
            {"projectId": project_id, "after": cursor, "first": ISSUE_PAGE_SIZE},
        )
        return _connection_page((data.get("project") or {}).get("issues"))

    return await fetch_all(fetch_page, retry_policy=policy, label="issue")


async def export_projects(
    client: ApiClient,
    output_dir: Path,
    *,
    statuses: Sequence[str] = DEFAULT_STATUSES,
    team: str | None = None,
    concurrency: int = DEFAULT_CONCURRENCY,
    policy: RetryPolicy | None = None,
    exported_at: datetime | None = None,
) -> list[TransformOutcome]:
    """Write ``index.txt`` plus one ``<slug>.txt`` per project.

    Args:
        client: Linear GraphQL client.
        output_dir: Directory receiving the export.
        statuses: Project status types to include.
        team: Optional team key filter.
        concurrency: Projects whose issues are fetched at the same time.
        policy: Retry policy for every GraphQL request.
        exported_at: Timestamp recorded in the index.
    """
    policy = policy or RetryPolicy()
    projects = await fetch_projects(client, statuses, team, policy)
    if not projects:
        LOGGER.warning("No active projects found.")
        return []

    write_text(output_dir / "index.txt", render_index(projects, exported_at))
    LOGGER.info("Created index file with %s projects", len(projects))

    async def export_project(project: dict[str, Any]) -> TransformOutcome:
        issues = await fetch_project_issues(client, project["id"], policy)
        filename = f"{project.get('slugId')}.txt"
        path = write_text(output_dir / filename, render_project(project, issues))
        LOGGER.info("Exported project: %s -> %s", project.get("name"), filename)
        return TransformOutcome.success(project.get("name") or project["id"], path, issues=len(issues))

    outcomes = await map_bounded(
        projects,
        export_project,
        concurrency,
        item_id=lambda p: p.get("name") or p.get("id", ""),
    )
    report(outcomes, title="projects")
    return outcomes


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="linear2llm",
        description="Export Linear projects and issues in LLM-friendly format",
    )
    parser.add_argument("output_dir", help="Directory to store the exported files")
    parser.add_argument("-t", "--team", help="Filter projects by team key")
    parser.add_argument(
        "-s",
        "--statuses",
        default=",".join(DEFAULT_STATUSES),
        help="Comma-separated list of project statuses to include",
    )
    parser.add_argument(
        "-c",
        "--concurrency",
        type=positive_int,
        default=DEFAULT_CONCURRENCY,
        help="Number of projects processed in parallel",
    )
    add_common_arguments(parser)
    return parser.parse_args(argv)


async def _run(args: argparse.Namespace) -> None:
    client = build_client(require_env("LINEAR_API_KEY"))
    statuses = [status.strip() for status in args.statuses.split(",") if status.strip()]
    try:
        await export_projects(
            client,
            Path(args.output_dir),
            statuses=statuses,
            team=args.team,
            concurrency=args.concurrency,
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
