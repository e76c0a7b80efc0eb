#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
import unittest
from typing import Any
from unittest.mock import MagicMock, patch

from relsync import git
from relsync import github


def _pr(number: int,
        title: str,
        head: str,
        base: str = "main",
        draft: bool = False) -> dict[str, Any]:
    return {
        "title": title,
        "body": None,
        "number": number,
        "html_url": f"https://github.com/owner/repo/pull/{number}",
        "state": "open",
        "head": {
            "ref": head,
            "sha": "abc123"
        },
        "base": {
            "ref": base
        },
        "draft": draft,
    }


class TestReleaseTitles(unittest.TestCase):

    def test_release_version_from_title(self) -> None:
        for title in ("release: 7.36.0", "Release: 7.36.0 (#1234)",
                      "RELEASE:7.36.0"):
            self.assertEqual(github.release_version_from_title(title),
                             git.ReleaseVersion(7, 36, 0))

    def test_other_titles(self) -> None:
        for title in ("chore: release 7.36.0", "release: 7.36",
                      "feat: add release: 7.36.0"):
            self.assertIsNone(github.release_version_from_title(title))


class TestPullRequest(unittest.TestCase):

    def test_from_json(self) -> None:
        pr = github.PullRequest.fromJSON(
            _pr(7, "release: 1.0.0", "release/1.0.0", draft=True))
        self.assertEqual(pr.number, 7)
        self.assertEqual(pr.body, "")
        self.assertEqual(pr.head_ref, "release/1.0.0")
        self.assertEqual(pr.base_ref, "main")
        self.assertTrue(pr.draft)


class TestGitHubPullRequests(unittest.TestCase):

    def setUp(self) -> None:
        self.gh = github.GitHub(
            api_url="https://api.github.com",
            github_token="fake_github_token",  # nosec
            repository="owner/repo",
            prov=MagicMock(spec=git.Git),
        )

    def test_auth_headers(self) -> None:
        self.assertEqual(self.gh.auth_headers(required=True),
                         {"Authorization": "Token fake_github_token"})
        anonymous = github.GitHub(repository="owner/repo",
                                  prov=MagicMock(spec=git.Git))
        anonymous.github_token = None
        self.assertFalse(anonymous.has_token())
        self.assertEqual(anonymous.auth_headers(required=False), {})
        with self.assertRaises(ValueError):
            anonymous.auth_headers(required=True)

    def test_release_pull_requests_sorted_and_unique(self) -> None:
        prs = [
            _pr(1, "release: 3.1.0", "release/3.1.0", draft=True),
            _pr(2, "Release: 2.9.0 (#1200)", "release/2.9.0"),
            _pr(3, "feat: something", "feature/x"),
            _pr(4, "release: 10.0.0", "release/10.0.0"),
            _pr(5, "release:3.1.0", "release/3.1.0-copy"),
        ]
        with patch.object(self.gh, "api", return_value=prs):
            found = self.gh.release_pull_requests()
        self.assertEqual([r.branch for r in found], [
            "release/2.9.0",
            "release/3.1.0",
            "release/10.0.0",
        ])

    def test_open_prs_follows_pages(self) -> None:
        first = [
            _pr(i, f"PR {i}", f"branch-{i}") for i in range(github.PER_PAGE)
        ]
        second = [_pr(1000, "last", "branch-last")]
        with patch.object(self.gh, "api", side_effect=[first, second]) as api:
            prs = self.gh.open_prs()
        self.assertEqual(len(prs), github.PER_PAGE + 1)
        self.assertEqual(api.call_count, 2)
        self.assertIn(("page", 2), api.call_args.kwargs["params"])

    def test_find_open_pr(self) -> None:
        prs = [
            _pr(1, "chore: sync", "stable-sync-release-1.0.0", "release/2.0.0"),
            _pr(2, "chore: sync", "stable-sync-release-1.0.0", "release/1.0.0"),
        ]
        with patch.object(self.gh, "api", return_value=prs) as api:
            pr = self.gh.find_open_pr("stable-sync-release-1.0.0",
                                      base="release/1.0.0")
        self.assertIsNotNone(pr)
        assert pr is not None
        self.assertEqual(pr.number, 2)
        params = api.call_args.kwargs["params"]
        self.assertIn(("head", "owner:stable-sync-release-1.0.0"), params)
        self.assertIn(("base", "release/1.0.0"), params)

    def test_find_open_pr_none(self) -> None:
        with patch.object(self.gh, "api", return_value=[]):
            self.assertIsNone(self.gh.find_open_pr("stable-main-7.36.0", "main"))

    def test_create_pr(self) -> None:
        response = MagicMock()
        response.status_code = 201
        response.json.return_value = _pr(42, "chore: sync stable into x",
                                         "stable-sync-x", "x")
        with patch.object(self.gh, "api", return_value=[]), patch.object(
                self.gh, "api_post", return_value=response) as post:
            pr = self.gh.create_pr("chore: sync stable into x",
                                   "body",
                                   "stable-sync-x",
                                   "x",
                                   draft=False,
                                   labels=("sync", ))
        self.assertEqual(pr.number, 42)
        self.assertEqual(post.call_count, 2)
        url, = post.call_args_list[0].args
        self.assertEqual(url, "/repos/owner/repo/pulls")
        self.assertEqual(post.call_args_list[0].kwargs["json"]["draft"], False)
        self.assertEqual(post.call_args_list[1].args[0],
                         "/repos/owner/repo/issues/42/labels")

    def test_create_pr_existing(self) -> None:
        prs = [_pr(5, "chore: sync", "stable-sync-x", "x")]
        with patch.object(self.gh, "api", return_value=prs), patch.object(
                self.gh, "api_post") as post:
            with self.assertRaises(github.DuplicatePullRequest) as ctx:
                self.gh.create_pr("t", "b", "stable-sync-x", "x")
        self.assertIn("/pull/5", ctx.exception.html_url)
        post.assert_not_called()

    def test_create_pr_rejected_as_duplicate(self) -> None:
        response = MagicMock()
        response.status_code = 422
        response.text = ('{"message":"Validation Failed","errors":[{"message":'
                         '"A pull request already exists for owner:x."}]}')
        with patch.object(self.gh, "api", return_value=[]), patch.object(
                self.gh, "api_post", return_value=response):
            with self.assertRaises(github.DuplicatePullRequest):
                self.gh.create_pr("t", "b", "stable-sync-x", "x")
        response.raise_for_status.assert_not_called()


if __name__ == "__main__":
    unittest.main()
