#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
import os
import unittest
from unittest.mock import MagicMock, patch

from relsync import branches
from relsync import git
from relsync import github
from relsync import stage
from stable_sync import PRESERVED_FILES, Config, StableSync, parse_args, pr_title


def _config(repo_type: str = "mobile", **kwargs: object) -> Config:
    values: dict[str, object] = {
        "version": "7.36.0",
        "branch": "stable-main-7.36.0",
        "repo_type": repo_type,
        "stable_branch": "stable",
        "main_branch": "main",
        "remote": "origin",
        "pr": True,
        "label": [],
        "dryrun": False,
        "git_user_name": "",
        "git_user_email": "",
    }
    values.update(kwargs)
    return Config(**values)  # type: ignore


def _pr(number: int) -> github.PullRequest:
    return github.PullRequest(
        title=pr_title("7.36.0"),
        body="",
        number=number,
        html_url=f"https://github.com/owner/repo/pull/{number}",
        state="open",
        head_ref="stable-main-7.36.0",
        base_ref="main",
        draft=False,
    )


class TestParseArgs(unittest.TestCase):

    def test_defaults(self) -> None:
        with patch.dict(os.environ, {
                "REPO_TYPE": "extension",
                "BASE_BRANCH": "master"
        }):
            config = parse_args(["12.0.0"])
        self.assertEqual(config.branch, "stable-main-12.0.0")
        self.assertEqual(config.repo_type, "extension")
        self.assertEqual(config.stable_branch, "master")
        self.assertEqual(config.main_branch, "main")
        self.assertTrue(config.pr)

    def test_explicit_branch(self) -> None:
        config = parse_args(["12.0.0", "--branch", "my-sync", "--no-pr"])
        self.assertEqual(config.branch, "my-sync")
        self.assertFalse(config.pr)


class TestStableSync(unittest.TestCase):

    def setUp(self) -> None:
        self.prov = MagicMock(spec=git.Git)
        self.prov.ls_remote_heads.return_value = []
        self.prov.local_branch_exists.return_value = False
        self.prov.merge.return_value = True
        self.prov.is_merging.return_value = False
        self.prov.has_staged_changes.return_value = True
        self.repo = branches.BranchRepository(self.prov)
        self.gh = MagicMock(spec=github.GitHub)
        self.gh.find_open_pr.return_value = None
        self.gh.create_pr.return_value = _pr(10)

    def test_sync_branch_is_reset_to_stable_and_main_merged(self) -> None:
        pr = StableSync(_config(), self.repo, self.gh).run()
        self.assertEqual(pr, _pr(10))
        self.prov.create_branch.assert_called_once_with("stable-main-7.36.0")
        self.prov.reset.assert_called_once_with("origin/stable")
        self.prov.merge.assert_called_once_with(
            "origin/main", "Merge origin/main into stable-main-7.36.0")
        self.prov.commit.assert_called_once_with(
            "Restore preserved files from origin/stable", no_verify=True)
        self.prov.push.assert_called_once_with("origin",
                                               "stable-main-7.36.0",
                                               force=False)

    def test_preserved_files_come_from_stable(self) -> None:
        StableSync(_config(), self.repo, self.gh).run()
        self.prov.checkout_files.assert_called_once_with(
            "origin/stable", *PRESERVED_FILES["mobile"])
        self.prov.add_all.assert_called_once_with(("github-tools", ))

    def test_extension_preserves_fewer_files(self) -> None:
        StableSync(_config("extension"), self.repo, self.gh).run()
        self.prov.checkout_files.assert_called_once_with(
            "origin/stable", "CHANGELOG.md", "package.json")

    def test_conflicts_are_committed(self) -> None:
        self.prov.merge.return_value = False
        self.prov.is_merging.return_value = True
        self.prov.conflicted_files.return_value = ["app/index.js"]
        StableSync(_config(), self.repo, self.gh).run()
        self.prov.checkout_ours.assert_not_called()
        self.prov.commit.assert_called_once_with(
            "Merge origin/main into stable-main-7.36.0",
            no_verify=True,
            allow_empty=True,
        )
        self.gh.create_pr.assert_called_once()

    def test_main_already_in_stable_makes_no_commit(self) -> None:
        self.prov.has_staged_changes.return_value = False
        StableSync(_config(), self.repo, self.gh).run()
        self.prov.commit.assert_not_called()
        self.prov.push.assert_called_once()

    def test_merge_that_never_started_fails(self) -> None:
        self.prov.merge.return_value = False
        self.prov.is_merging.return_value = False
        with self.assertRaises(stage.InvalidState):
            StableSync(_config(), self.repo, self.gh).run()
        self.prov.commit.assert_not_called()
        self.prov.push.assert_not_called()

    def test_existing_remote_branch_is_force_pushed(self) -> None:
        self.prov.ls_remote_heads.return_value = [
            "abc\trefs/heads/stable-main-7.36.0"
        ]
        StableSync(_config(), self.repo, self.gh).run()
        self.prov.fetch_branch.assert_called_once_with("origin",
                                                       "stable-main-7.36.0")
        self.prov.push.assert_called_once_with("origin",
                                               "stable-main-7.36.0",
                                               force=True)

    def test_existing_pr_is_kept(self) -> None:
        self.gh.find_open_pr.return_value = _pr(3)
        pr = StableSync(_config(), self.repo, self.gh).run()
        self.assertEqual(pr, _pr(3))
        self.gh.find_open_pr.assert_called_once_with("stable-main-7.36.0",
                                                     "main")
        self.gh.create_pr.assert_not_called()

    def test_new_pr(self) -> None:
        StableSync(_config(label=["sync"]), self.repo, self.gh).run()
        args = self.gh.create_pr.call_args
        self.assertEqual(args.args[0],
                         "chore: sync stable to main for version 7.36.0")
        self.assertEqual(args.args[2:], ("stable-main-7.36.0", "main"))
        self.assertEqual(args.kwargs["labels"], ("sync", ))
        self.assertFalse(args.kwargs["draft"])

    def test_dryrun(self) -> None:
        pr = StableSync(_config(dryrun=True), self.repo, self.gh).run()
        self.assertIsNone(pr)
        self.prov.commit.assert_called_once()
        self.prov.push.assert_not_called()
        self.gh.create_pr.assert_not_called()

    def test_unknown_repo_type(self) -> None:
        with self.assertRaises(stage.InvalidState):
            StableSync(_config("desktop"), self.repo, self.gh).run()
        self.prov.reset.assert_not_called()


if __name__ == "__main__":
    unittest.main()
