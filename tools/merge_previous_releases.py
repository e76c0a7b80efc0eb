#!/usr/bin/env python3
# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
"""Merge all older release branches into a newly created one.

Runs when a release branch (e.g. release/2.1.2) is created. Every older
release/X.Y.Z branch is merged into it, oldest first. Conflicts are resolved
in favour of the new branch. The first failed merge aborts the run before
anything is pushed. The older branches are left untouched.
"""
import argparse
import os
import sys
from dataclasses import dataclass

from relsync import branches
from relsync import git
from relsync import stage

RELEASE_BRANCH_GLOB = f"{git.RELEASE_BRANCH_PREFIX}/*"


@dataclass
class Config:
    new_release_branch: str
    remote: str
    dryrun: bool
    git_user_name: str
    git_user_email: str


@dataclass
class MergeSummary:
    merged: int = 0
    skipped: int = 0
    pushed: bool = False


def parse_args() -> Config:
    parser = argparse.ArgumentParser(description="""
    Merge all older release branches into a new release branch, favouring the
    new branch on conflicts. Meant to run in a GitHub Actions workflow when a
    release branch is created.
    """)
    parser.add_argument(
        "--new-release-branch",
        help="The newly created release branch, e.g. release/2.1.2. "
        "Default: $NEW_RELEASE_BRANCH",
        default=os.getenv("NEW_RELEASE_BRANCH", ""),
    )
    parser.add_argument(
        "--remote",
        help="The remote to fetch from and push to. Default: origin",
        default="origin",
    )
    parser.add_argument(
        "--dryrun",
        action=argparse.BooleanOptionalAction,
        help="Merge locally, but do not push.",
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


def merge_commit_message(source: str, dest: str) -> str:
    return f"Merge {source} into {dest}"


def older_release_branches(
    candidates: list[branches.BranchDescriptor],
    new_version: git.ReleaseVersion,
) -> list[str]:
    """Release branches strictly older than new_version, oldest first.

    Names that are not release/X.Y.Z (e.g. release candidates) are dropped.
    """
    older = [(b.version, b.name) for b in candidates
             if b.version is not None and b.version.is_older_than(new_version)]
    return [name for _, name in sorted(older)]


class ReleaseMerger:

    def __init__(self, config: Config, repo: branches.BranchRepository) -> None:
        self.config = config
        self.repo = repo

    def stage_validate(self) -> git.ReleaseVersion:
        with stage.Stage("Validate input",
                         "Parse the new release branch name") as s:
            branch = self.config.new_release_branch
            if not branch:
                raise s.fail("NEW_RELEASE_BRANCH is not set")
            version = git.parse_release_branch(branch)
            if version is None:
                raise s.fail(f"{branch} is not a valid release branch "
                             "(expected format: release/X.Y.Z)")
            s.ok(f"Parsed version: {version}")
            return version

    def stage_discover(self, version: git.ReleaseVersion) -> list[str]:
        with stage.Stage("Discover",
                         "Find release branches older than "
                         f"{self.config.new_release_branch}") as s:
            if self.config.git_user_name and self.config.git_user_email:
                self.repo.configure_identity(self.config.git_user_name,
                                             self.config.git_user_email)
            self.repo.fetch_all()
            candidates = self.repo.list_remote_branches(RELEASE_BRANCH_GLOB)
            s.progress(f"Found {len(candidates)} release branches: "
                       f"{', '.join(b.name for b in candidates)}")
            older = older_release_branches(candidates, version)
            if not older:
                s.ok("No older release branches found")
            else:
                s.ok(f"Oldest to newest: {', '.join(older)}")
            return older

    def stage_checkout(self) -> None:
        with stage.Stage("Checkout", "Switch to the new release branch") as s:
            branch = self.config.new_release_branch
            if self.repo.current_branch() == branch:
                s.ok(f"Already on {branch}")
                return
            self.repo.checkout(branch)
            s.ok(f"Switched to {branch}")

    def stage_merge(self, source: str) -> branches.MergeOutcome:
        dest = self.config.new_release_branch
        with stage.Stage("Merge", f"Merging {source} into {dest}") as s:
            outcome = self.repo.merge_favoring_destination(
                source,
                dest,
                merge_commit_message(source, dest),
                exclude=(branches.TOOLS_CHECKOUT_DIR, ),
                keep_unstaged=(".gitignore", ),
            )
            if outcome.status == branches.MergeStatus.FAILED:
                raise s.fail(f"Failed to merge {source}: {outcome.error}")
            if outcome.status == branches.MergeStatus.SKIPPED_ALREADY_MERGED:
                s.skip(f"{source} is already merged into {dest}")
            elif outcome.conflict_files_resolved:
                s.ok(f"Merged {source} "
                     f"({outcome.conflict_files_resolved} conflict(s) "
                     f"resolved by keeping {dest})")
            else:
                s.ok(f"Merged {source}")
            return outcome

    def stage_push(self, summary: MergeSummary) -> None:
        branch = self.config.new_release_branch
        with stage.Stage("Push", f"Pushing {branch}") as s:
            if not summary.merged:
                s.skip("No new merges were made "
                       "(all branches were already merged)")
            elif self.config.dryrun:
                s.skip("Dry run; not pushing changes")
            else:
                summary.pushed = self.repo.push(branch)
                if summary.pushed:
                    s.ok(f"Pushed {branch} to {self.repo.remote}")
                else:
                    s.ok(f"{self.repo.remote} already had these commits")

    def run(self) -> MergeSummary:
        version = self.stage_validate()
        summary = MergeSummary()
        older = self.stage_discover(version)
        if not older:
            print("Nothing to merge.", flush=True)
            return summary

        self.stage_checkout()
        for source in older:
            outcome = self.stage_merge(source)
            if outcome.status == branches.MergeStatus.MERGED:
                summary.merged += 1
            else:
                summary.skipped += 1

        self.stage_push(summary)
        print(f"Merge complete: {summary.merged} merged, "
              f"{summary.skipped} skipped (already merged). "
              "All source branches remain open.",
              flush=True)
        return summary


def main(config: Config) -> None:
    repo = branches.BranchRepository(git.Git(), config.remote)
    try:
        ReleaseMerger(config, repo).run()
    except stage.InvalidState as e:
        print(f"Fatal error: {e.message}", file=sys.stderr)
        print("Aborting to prevent pushing partial merges.", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main(parse_args())
