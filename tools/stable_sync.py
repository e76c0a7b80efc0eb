#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
"""Prepare a stable-sync branch and open a PR for it.

The branch starts at the stable branch and gets the main branch merged into
it. Merge conflicts do not stop the script: they are committed as they are
for a human to resolve in the PR. Platform version files and the changelog
always keep their stable content.
"""
import argparse
import os
import sys
from dataclasses import dataclass
from typing import Optional

from relsync import branches
from relsync import git
from relsync import github
from relsync import stage

PRESERVED_FILES: dict[str, tuple[str, ...]] = {
    "mobile": (
        "CHANGELOG.md",
        "bitrise.yml",
        "android/app/build.gradle",
        "ios/MetaMask.xcodeproj/project.pbxproj",
        "package.json",
    ),
    "extension": (
        "CHANGELOG.md",
        "package.json",
    ),
}

SYNC_BRANCH_PREFIX = "stable-main"


@dataclass
class Config:
    version: str
    branch: str
    repo_type: str
    stable_branch: str
    main_branch: str
    remote: str
    pr: bool
    label: list[str]
    dryrun: bool
    git_user_name: str
    git_user_email: str


def parse_args(argv: Optional[list[str]] = None) -> Config:
    parser = argparse.ArgumentParser(description="""
    Create or update a stable-sync branch: reset it to the stable branch,
    merge the main branch into it, keep the stable version of the changelog
    and platform version files, push it and open a PR into main.
    """)
    parser.add_argument(
        "version",
        help="The semantic version of the sync, e.g. 7.36.0",
    )
    parser.add_argument(
        "--branch",
        help=f"The sync branch. Default: {SYNC_BRANCH_PREFIX}-<version>",
        default="",
    )
    parser.add_argument(
        "--repo-type",
        help="Repository type. Default: $REPO_TYPE or mobile",
        choices=sorted(PRESERVED_FILES),
        default=os.getenv("REPO_TYPE") or "mobile",
    )
    parser.add_argument(
        "--stable-branch",
        help="The stable branch. Default: $BASE_BRANCH or stable",
        default=os.getenv("BASE_BRANCH") or "stable",
    )
    parser.add_argument(
        "--main-branch",
        help="The trunk branch to merge and open the PR against. "
        "Default: main",
        default="main",
    )
    parser.add_argument(
        "--remote",
        help="The remote to fetch from and push to. Default: origin",
        default="origin",
    )
    parser.add_argument(
        "--pr",
        action=argparse.BooleanOptionalAction,
        help="Open a PR for the sync branch (default on).",
        default=True,
    )
    parser.add_argument(
        "--label",
        action="append",
        help="Label to add to a newly created PR (repeatable).",
        default=[],
    )
    parser.add_argument(
        "--dryrun",
        action=argparse.BooleanOptionalAction,
        help="Prepare the branch locally, but do not push or open a PR.",
        default=False,
    )
    parser.add_argument(
        "--git-user-name",
        help="Committer name to configure. Default: $GIT_AUTHOR_NAME",
        default=os.getenv("GIT_AUTHOR_NAME", ""),
    )
    parser.add_argument(
        "--git-user-email",
        help="Committer email to configure. Default: $GIT_AUTHOR_EMAIL",
        default=os.getenv("GIT_AUTHOR_EMAIL", ""),
    )
    config = Config(**vars(parser.parse_args(argv)))
    if not config.branch:
        config.branch = f"{SYNC_BRANCH_PREFIX}-{config.version}"
    return config


def pr_title(version: str) -> str:
    return f"chore: sync stable to main for version {version}"


def pr_body(config: Config) -> str:
    preserved = "\n".join(f"  - {f}"
                          for f in PRESERVED_FILES[config.repo_type])
    return f"""This PR syncs the {config.stable_branch} branch to {config.main_branch} for version {config.version}.

*Synchronization Process:*

- Fetches the latest changes from the remote repository
- Resets the branch to match the {config.stable_branch} branch
- Attempts to merge changes from {config.main_branch} into the branch
- Handles merge conflicts if they occur

*File Preservation:*

Preserves specific files from the {config.stable_branch} branch:
{preserved}

Indicates the next version candidate of {config.main_branch} to {config.version}"""


class StableSync:

    def __init__(
        self,
        config: Config,
        repo: branches.BranchRepository,
        gh: github.GitHub,
    ) -> None:
        self.config = config
        self.repo = repo
        self.gh = gh
        self.request = branches.SyncRequest(
            source_branch=config.stable_branch,
            dest_branch=config.main_branch,
            sync_branch=config.branch,
            preserved_files=PRESERVED_FILES.get(config.repo_type, ()),
        )

    def stage_branch(self) -> None:
        branch = self.request.sync_branch
        with stage.Stage("Sync branch", f"Preparing {branch}") as s:
            if self.config.git_user_name and self.config.git_user_email:
                self.repo.configure_identity(self.config.git_user_name,
                                             self.config.git_user_email)
            self.repo.checkout_or_create(branch)
            self.repo.fetch_all()
            stable = self.repo.remote_ref(self.request.source_branch)
            self.repo.reset_hard(stable)
            s.ok(f"{branch} reset to {stable}")

    def stage_merge(self) -> list[str]:
        """Merge main into the sync branch; returns the conflicted files."""
        main = self.repo.remote_ref(self.request.dest_branch)
        stable = self.repo.remote_ref(self.request.source_branch)
        message = f"Merge {main} into {self.request.sync_branch}"
        with stage.Stage("Merge", f"Merging {main}") as s:
            conflicts: list[str] = []
            if not self.repo.merge(main, message):
                if not self.repo.is_merging():
                    raise s.fail(f"git could not start merging {main}")
                conflicts = self.repo.conflicted_files()
                s.progress(f"Merge conflicts left for review in: "
                           f"{', '.join(conflicts)}")
            self.repo.restore_paths(stable, self.request.preserved_files)
            s.progress(f"Restored from {stable}: "
                       f"{', '.join(self.request.preserved_files)}")
            self.repo.stage_all(exclude=(branches.TOOLS_CHECKOUT_DIR, ))
            if self.repo.is_merging():
                self.repo.commit(message, no_verify=True, allow_empty=True)
            elif self.repo.has_staged_changes():
                # git already committed the clean merge.
                self.repo.commit(f"Restore preserved files from {stable}",
                                 no_verify=True)
            else:
                s.ok(f"{self.request.sync_branch} is up to date with {main}")
                return conflicts
            if conflicts:
                s.warn(f"Committed with {len(conflicts)} unresolved "
                       "conflict(s)")
            else:
                s.ok("Merged cleanly")
            return conflicts

    def stage_push(self) -> None:
        branch = self.request.sync_branch
        with stage.Stage("Push", f"Pushing {branch}") as s:
            if self.config.dryrun:
                s.skip("Dry run; not pushing changes")
                return
            if self.repo.remote_branch_exists(branch):
                # The branch was reset, so its history may have been rewritten.
                self.repo.push(branch, force=True)
                s.ok(f"Force-pushed {branch}")
            elif self.repo.push(branch):
                s.ok(f"Pushed new branch {branch}")
            else:
                s.ok(f"{branch} already on remote")

    def stage_pull_request(self) -> Optional[github.PullRequest]:
        branch = self.request.sync_branch
        base = self.request.dest_branch
        with stage.Stage("Pull request",
                         f"Opening a PR from {branch} into {base}") as s:
            if not self.config.pr:
                s.skip("PR creation disabled")
                return None
            if self.config.dryrun:
                s.skip("Dry run; not creating a pull request")
                return None
            existing = self.gh.find_open_pr(branch, base)
            if existing:
                s.ok(f"PR already exists: {existing.html_url}")
                return existing
            pr = self.gh.create_pr(
                pr_title(self.config.version),
                pr_body(self.config),
                branch,
                base,
                draft=False,
                labels=tuple(self.config.label),
            )
            s.ok(pr.html_url)
            return pr

    def run(self) -> Optional[github.PullRequest]:
        stage.require(
            self.config.repo_type in PRESERVED_FILES,
            f"Unknown repository type: {self.config.repo_type}",
        )
        self.stage_branch()
        self.stage_merge()
        self.stage_push()
        return self.stage_pull_request()


def main(config: Config) -> None:
    prov = git.Git()
    repo = branches.BranchRepository(prov, config.remote)
    try:
        StableSync(config, repo, github.GitHub(prov=prov)).run()
    except stage.InvalidState as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main(parse_args())
