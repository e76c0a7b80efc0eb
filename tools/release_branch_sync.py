#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
"""Open stable-sync PRs into newer release branches.

Runs after a release branch was merged into stable. Every release branch
with an open "release: X.Y.Z" PR that is newer than the merged one gets a
stable-sync-release-X-Y-Z branch at the tip of stable and a PR into it.
Nothing is merged here: conflicts show up in the PR and are resolved by the
release owners.
"""
import argparse
import enum
import os
import subprocess  # nosec
import sys
from dataclasses import dataclass
from typing import Optional

import requests
from relsync import branches
from relsync import git
from relsync import github
from relsync import stage


@dataclass
class Config:
    merged_release_branch: str
    repo_type: str
    stable_branch: str
    remote: str
    dryrun: bool
    git_user_name: str
    git_user_email: str


@dataclass(frozen=True)
class Skip:
    reason: str
    warning: bool = False


class SyncResult(enum.Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class SyncSummary:
    created: int = 0
    skipped: int = 0
    failed: int = 0

    def add(self, result: SyncResult) -> None:
        if result == SyncResult.CREATED:
            self.created += 1
        elif result == SyncResult.SKIPPED:
            self.skipped += 1
        else:
            self.failed += 1


def parse_args() -> Config:
    parser = argparse.ArgumentParser(description="""
    After a release branch was merged into stable, create a sync branch from
    stable for every newer active release branch and open a PR into it.
    """)
    parser.add_argument(
        "--merged-release-branch",
        help="The release branch that was merged into stable, e.g. "
        "release/7.36.0. Default: $MERGED_RELEASE_BRANCH",
        default=os.getenv("MERGED_RELEASE_BRANCH", ""),
    )
    parser.add_argument(
        "--repo-type",
        help="Repository type, for information only. Default: $REPO_TYPE",
        default=os.getenv("REPO_TYPE", ""),
    )
    parser.add_argument(
        "--stable-branch",
        help="The stable branch to sync from. Default: stable",
        default="stable",
    )
    parser.add_argument(
        "--remote",
        help="The remote to fetch from and push to. Default: origin",
        default="origin",
    )
    parser.add_argument(
        "--dryrun",
        action=argparse.BooleanOptionalAction,
        help="Report what would be synced, but do not create branches or PRs.",
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
    return Config(**vars(parser.parse_args()))


def pr_title(release_branch: str) -> str:
    return f"chore: sync stable into {release_branch}"


def pr_body(stable_branch: str, release_branch: str,
            merged_release_branch: str) -> str:
    return f"""## Summary

This PR syncs the latest changes from `{stable_branch}` into `{release_branch}`.

## Why is this needed?

A release branch (`{merged_release_branch}`) was merged into `{stable_branch}`. This PR brings those changes (hotfixes, etc.) into `{release_branch}`.

## Action Required

**Please review and resolve any merge conflicts manually.**

If there are conflicts, they will appear in this PR. Resolve them to ensure the release branch has all the latest fixes from {stable_branch}."""


class ReleaseBranchSync:

    def __init__(
        self,
        config: Config,
        repo: branches.BranchRepository,
        gh: github.GitHub,
    ) -> None:
        self.config = config
        self.repo = repo
        self.gh = gh

    def stage_validate(self) -> git.ReleaseVersion:
        with stage.Stage("Validate input", "Check the environment") as s:
            branch = self.config.merged_release_branch
            if not branch:
                raise s.fail("MERGED_RELEASE_BRANCH is not set")
            version = git.parse_release_branch(branch)
            if version is None:
                raise s.fail(f"{branch} is not a valid release branch "
                             "(expected format: release/X.Y.Z)")
            if not self.gh.has_token():
                raise s.fail("GITHUB_TOKEN is not set")
            s.ok(f"Merged version: {version}, repository type: "
                 f"{self.config.repo_type or 'not set'}")
            return version

    def stage_discover(self) -> list[str]:
        with stage.Stage("Discover",
                         "Find release branches with open release PRs") as s:
            if self.config.git_user_name and self.config.git_user_email:
                self.repo.configure_identity(self.config.git_user_name,
                                             self.config.git_user_email)
            self.repo.fetch_all()
            found = [pr.branch for pr in self.gh.release_pull_requests()]
            if not found:
                s.warn("No open or draft PRs titled 'release: X.Y.Z'")
            else:
                s.ok(f"Active release branches: {', '.join(found)}")
            return found

    def skip_reason(self, release_branch: str,
                    merged_version: git.ReleaseVersion,
                    sync_branch: str) -> Optional[Skip]:
        """Why release_branch needs no sync PR, or None if it needs one.

        The checks run in order and the first match wins.
        """
        version = git.parse_release_branch(release_branch)
        if version is None:
            return Skip("does not match release/X.Y.Z")
        if release_branch == self.config.merged_release_branch:
            return Skip("just merged into stable")
        if version.is_older_than(merged_version):
            return Skip("older than merged release "
                        f"{self.config.merged_release_branch}")
        if not self.repo.remote_branch_exists(release_branch):
            return Skip(f"does not exist on {self.repo.remote}",
                        warning=True)
        if self.gh.find_open_pr(sync_branch, base=release_branch):
            return Skip("sync PR already exists")
        if not self.repo.commits_ahead(self.config.stable_branch,
                                       release_branch):
            return Skip("already up-to-date with stable")
        return None

    def create_sync(self, request: branches.SyncRequest) -> github.PullRequest:
        """Put the sync branch at the tip of stable and open the PR."""
        self.repo.force_create(request.sync_branch,
                               self.repo.remote_ref(request.source_branch))
        self.repo.push(request.sync_branch, force=True)
        return self.gh.create_pr(
            pr_title(request.dest_branch),
            pr_body(request.source_branch, request.dest_branch,
                    self.config.merged_release_branch),
            request.sync_branch,
            request.dest_branch,
            draft=False,
        )

    def stage_branch(self, release_branch: str,
                     merged_version: git.ReleaseVersion,
                     parent: stage.Stage,
                     failures: list[str]) -> SyncResult:
        request = branches.SyncRequest.for_release(self.config.stable_branch,
                                                   release_branch)
        with stage.Stage(release_branch,
                         f"Syncing {request.source_branch} via "
                         f"{request.sync_branch}",
                         failures=failures,
                         parent=parent) as s:
            try:
                skip = self.skip_reason(release_branch, merged_version,
                                        request.sync_branch)
                if skip is not None:
                    if skip.warning:
                        s.warn(f"Skipping: {skip.reason}")
                    else:
                        s.skip(skip.reason)
                    return SyncResult.SKIPPED
                if self.config.dryrun:
                    s.skip("Dry run; not creating the sync branch")
                    return SyncResult.SKIPPED
                pr = self.create_sync(request)
            except (
                    subprocess.CalledProcessError,
                    requests.RequestException,
                    stage.InvalidState,
                    github.DuplicatePullRequest,
            ) as e:
                s.fail(f"{type(e).__name__}: {e}")
                return SyncResult.FAILED
            s.ok(f"Created {pr.html_url}")
            return SyncResult.CREATED

    def run(self) -> SyncSummary:
        merged_version = self.stage_validate()
        summary = SyncSummary()
        release_branches = self.stage_discover()
        failures: list[str] = []
        with stage.Stage("Sync", "Open stable-sync PRs") as s:
            for release_branch in release_branches:
                summary.add(
                    self.stage_branch(release_branch, merged_version, s,
                                      failures))
            for failure in failures:
                s.progress(f"Failed: {failure}")
            message = (f"{summary.created} created, {summary.skipped} "
                       f"skipped, {summary.failed} failed")
            if summary.failed:
                s.warn(message)
            else:
                s.ok(message)
        return summary


def main(config: Config) -> None:
    prov = git.Git()
    repo = branches.BranchRepository(prov, config.remote)
    try:
        summary = ReleaseBranchSync(config, repo, github.GitHub(prov=prov)).run()
    except stage.InvalidState as e:
        print(f"Error: {e.message}", file=sys.stderr)
        sys.exit(1)
    if summary.failed:
        sys.exit(1)


if __name__ == "__main__":
    main(parse_args())
