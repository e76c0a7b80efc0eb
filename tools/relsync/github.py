#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
import os
import re
from dataclasses import dataclass
from typing import Any
from typing import Optional

import requests
from relsync import git

RELEASE_PR_TITLE_REGEX = re.compile(
    r"^release:\s*([0-9]+\.[0-9]+\.[0-9]+)", re.IGNORECASE)
PER_PAGE = 100


class DuplicatePullRequest(Exception):
    """An open PR with the same head and base already exists."""

    def __init__(self, head: str, base: str, html_url: str = "") -> None:
        super().__init__(f"A pull request from {head} into {base} already "
                         f"exists{': ' + html_url if html_url else ''}")
        self.head = head
        self.base = base
        self.html_url = html_url


@dataclass
class PullRequest:
    title: str
    body: str
    number: int
    html_url: str
    state: str
    head_ref: str
    base_ref: str
    draft: bool

    @staticmethod
    def fromJSON(pr: dict[str, Any]) -> "PullRequest":
        return PullRequest(
            title=str(pr["title"]),
            body=str(pr["body"] or ""),
            number=int(pr["number"]),
            html_url=str(pr["html_url"]),
            state=str(pr["state"]),
            head_ref=str(pr["head"]["ref"]),
            base_ref=str(pr["base"]["ref"]),
            draft=bool(pr.get("draft", False)),
        )


@dataclass(frozen=True)
class ReleasePullRequest:
    """An open PR titled "release: X.Y.Z" and the branch it releases."""

    branch: str
    version: git.ReleaseVersion


def release_version_from_title(title: str) -> Optional[git.ReleaseVersion]:
    """Extract X.Y.Z from titles like "release: 7.36.0" or "Release: 7.36.0 (#1234)"."""
    match = RELEASE_PR_TITLE_REGEX.match(title)
    if not match:
        return None
    return git.parse_version(match.group(1))


class GitHub:
    """A small client for the GitHub REST API.

    Authorization is done with the GITHUB_TOKEN environment variable if it is
    set. The repository is taken from GITHUB_REPOSITORY, or else from the
    origin remote of the working tree.
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        github_token: Optional[str] = None,
        repository: Optional[str] = None,
        prov: Optional[git.Git] = None,
    ) -> None:
        self.api_url = (api_url or os.getenv("GITHUB_API_URL")
                        or "https://api.github.com")
        self.github_token = github_token or os.getenv("GITHUB_TOKEN")
        self._repository = repository or os.getenv("GITHUB_REPOSITORY")
        self.prov = prov or git.Git()

    def has_token(self) -> bool:
        return bool(self.github_token)

    def auth_headers(self, required: bool) -> dict[str, str]:
        """Get the authentication headers for GitHub.

        Raises an error if no token is available and required is True.
        """
        if not self.github_token:
            if required:
                raise ValueError("GITHUB_TOKEN is needed for this operation")
            return {}
        return {"Authorization": f"Token {self.github_token}"}

    def repository(self) -> str:
        if not self._repository:
            self._repository = str(self.prov.remote_slug("origin"))
        return self._repository

    def owner(self) -> str:
        return self.repository().split("/", 1)[0]

    def api(
            self,
            url: str,
            auth: bool = False,
            params: tuple[tuple[str, str | int], ...] = tuple(),
    ) -> Any:
        """Call the GitHub API with the given URL (GET only).

        Not cached: pull request state changes between calls of one run.
        """
        response = requests.get(
            f"{self.api_url}{url}",
            headers=self.auth_headers(required=auth),
            params=dict(params),
        )
        response.raise_for_status()
        return response.json()

    def api_post(self, url: str, json: Any) -> requests.Response:
        """POST to the GitHub API. Always requires a token."""
        return requests.post(
            f"{self.api_url}{url}",
            headers=self.auth_headers(required=True),
            json=json,
        )

    def open_prs(
        self, params: tuple[tuple[str, str | int], ...] = tuple()
    ) -> list[dict[str, Any]]:
        """All open (including draft) PRs, following pagination."""
        prs: list[dict[str, Any]] = []
        page = 1
        while True:
            batch = self.api(
                f"/repos/{self.repository()}/pulls",
                params=(
                    ("state", "open"),
                    ("per_page", PER_PAGE),
                    ("page", page),
                    *params,
                ),
            )
            prs.extend(batch)
            if len(batch) < PER_PAGE:
                return prs
            page += 1

    def find_open_pr(
        self,
        head: str,
        base: Optional[str] = None,
        title_pattern: Optional[str] = None,
    ) -> Optional[PullRequest]:
        """Find an open PR from branch head, optionally into base only.

        Without a base, a PR into any base matches.
        """
        params: tuple[tuple[str, str | int], ...] = (
            ("head", f"{self.owner()}:{head}"),
        )
        if base:
            params += (("base", base), )
        for pr in self.open_prs(params):
            if pr["head"]["ref"] != head:
                continue
            if base and pr["base"]["ref"] != base:
                continue
            if title_pattern and not re.search(title_pattern, pr["title"]):
                continue
            return PullRequest.fromJSON(pr)
        return None

    def create_pr(
        self,
        title: str,
        body: str,
        head: str,
        base: str,
        draft: bool = True,
        labels: tuple[str, ...] = (),
    ) -> PullRequest:
        """Create a pull request from head into base.

        Callers are expected to check with find_open_pr() first; an existing
        open PR for the same head and base raises DuplicatePullRequest.
        """
        existing = self.find_open_pr(head, base)
        if existing:
            raise DuplicatePullRequest(head, base, existing.html_url)
        response = self.api_post(
            f"/repos/{self.repository()}/pulls",
            json={
                "title": title,
                "body": body,
                "head": head,
                "base": base,
                "draft": draft,
            },
        )
        if (response.status_code == 422
                and "already exists" in response.text):
            raise DuplicatePullRequest(head, base)
        response.raise_for_status()
        pr = PullRequest.fromJSON(response.json())
        if labels:
            self.add_labels(pr.number, labels)
        return pr

    def add_labels(self, number: int, labels: tuple[str, ...]) -> None:
        """Add labels to an issue or pull request."""
        response = self.api_post(
            f"/repos/{self.repository()}/issues/{number}/labels",
            json={"labels": list(labels)},
        )
        response.raise_for_status()

    def release_pull_requests(self) -> list[ReleasePullRequest]:
        """Release branches with an open or draft "release: X.Y.Z" PR.

        Sorted by version, each branch listed once.
        """
        found: dict[str, ReleasePullRequest] = {}
        for pr in self.open_prs():
            version = release_version_from_title(str(pr["title"]))
            if version is None:
                continue
            found.setdefault(version.branch,
                             ReleasePullRequest(version.branch, version))
        return sorted(found.values(), key=lambda r: r.version)
