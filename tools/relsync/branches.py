# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
import enum
import subprocess  # nosec
from dataclasses import dataclass
from typing import Optional

from relsync import git
from relsync import stage

SYNC_BRANCH_PREFIX = "stable-sync"
# Checkout of this tooling inside the product repository. Never committed.
TOOLS_CHECKOUT_DIR = "github-tools"


@dataclass(frozen=True)
class BranchDescriptor:
    name: str
    exists_remotely: Optional[bool] = None

    @property
    def version(self) -> Optional[git.ReleaseVersion]:
        return git.parse_release_branch(self.name)


class MergeStatus(enum.Enum):
    MERGED = "merged"
    SKIPPED_ALREADY_MERGED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class MergeOutcome:
    source_branch: str
    dest_branch: str
    status: MergeStatus
    conflict_files_resolved: int = 0
    error: str = ""


@dataclass(frozen=True)
class SyncRequest:
    """Commits of source_branch that should reach dest_branch through a PR.

    sync_branch starts at source_branch and is the head of the PR into
    dest_branch. If dest_branch is merged into the sync branch first,
    preserved_files keep their source_branch content.
    """

    source_branch: str
    dest_branch: str
    sync_branch: str
    preserved_files: tuple[str, ...] = ()

    @staticmethod
    def for_release(source_branch: str,
                    dest_branch: str,
                    preserved_files: tuple[str, ...] = ()) -> "SyncRequest":
        return SyncRequest(
            source_branch=source_branch,
            dest_branch=dest_branch,
            sync_branch=sync_branch_name(dest_branch),
            preserved_files=preserved_files,
        )


def sync_branch_name(dest_branch: str) -> str:
    """stable-sync-release-1.2.3 for release/1.2.3."""
    return f"{SYNC_BRANCH_PREFIX}-{dest_branch.replace('/', '-')}"


class BranchRepository:
    """Branch operations on one working tree and its remote."""

    def __init__(self, prov: git.Git, remote: str = "origin") -> None:
        self.prov = prov
        self.remote = remote

    def remote_ref(self, branch: str) -> str:
        return f"{self.remote}/{branch}"

    def configure_identity(self, name: str, email: str) -> None:
        self.prov.configure_user(name, email)

    def fetch_all(self) -> None:
        self.prov.fetch(self.remote)

    def list_remote_branches(self, pattern: str) -> list[BranchDescriptor]:
        """List remote branches matching a glob, e.g. "release/*"."""
        return [
            BranchDescriptor(name, exists_remotely=True)
            for name in self.prov.remote_branches(self.remote, pattern)
        ]

    def remote_branch_exists(self, branch: str) -> bool:
        return any(
            line.endswith(f"refs/heads/{branch}")
            for line in self.prov.ls_remote_heads(self.remote, branch))

    def current_branch(self) -> str:
        return self.prov.current_branch()

    def is_ancestor(self, branch: str, of_branch: str) -> bool:
        """Check whether branch's tip is already in of_branch's history."""
        return self.prov.is_ancestor(branch, of_branch)

    def commits_ahead(self, branch: str, of_branch: str) -> int:
        """Count the commits on remote branch that remote of_branch lacks."""
        return self.prov.count_commits(self.remote_ref(of_branch),
                                       self.remote_ref(branch))

    def checkout(self, branch: str) -> None:
        self.prov.checkout(branch)

    def checkout_or_create(self,
                           branch: str,
                           base: Optional[str] = None) -> None:
        """Check out branch, creating it if it exists neither here nor remotely.

        A new branch starts from a freshly pulled base, or from HEAD if no
        base is given.
        """
        if self.remote_branch_exists(branch):
            self.prov.fetch_branch(self.remote, branch)
            self.prov.checkout(branch)
        elif self.prov.local_branch_exists(branch):
            self.prov.checkout(branch)
        else:
            if base:
                self.prov.checkout(base)
                self.prov.pull(self.remote, base)
            self.prov.create_branch(branch)

    def force_create(self, branch: str, base: str) -> None:
        """(Re)create branch at base, throwing away any local state."""
        self.prov.checkout(base, force=True)
        self.prov.clean()
        if self.prov.local_branch_exists(branch):
            self.prov.delete_branch(branch)
        self.prov.create_branch(branch, base)

    def reset_hard(self, ref: str) -> None:
        self.prov.reset(ref)

    def merge(self, ref: str, message: str) -> bool:
        """Plain merge; False leaves the conflicts in the working tree."""
        return self.prov.merge(ref, message)

    def is_merging(self) -> bool:
        return self.prov.is_merging()

    def conflicted_files(self) -> list[str]:
        return self.prov.conflicted_files()

    def stage_all(self, exclude: tuple[str, ...] = ()) -> None:
        self.prov.add_all(exclude)

    def has_staged_changes(self) -> bool:
        return self.prov.has_staged_changes()

    def commit(self,
               message: str,
               no_verify: bool = False,
               allow_empty: bool = False) -> None:
        self.prov.commit(message, no_verify=no_verify, allow_empty=allow_empty)

    def merge_favoring_destination(
        self,
        source_branch: str,
        dest_branch: str,
        message: str,
        exclude: tuple[str, ...] = (),
        keep_unstaged: tuple[str, ...] = (),
    ) -> MergeOutcome:
        """Merge the remote source branch into HEAD (dest_branch).

        Conflicting paths keep the destination's content. If git cannot apply
        that automatically with "-X ours", each conflicted file is checked
        out from our side and the merge is committed explicitly. Paths in
        exclude are never staged, paths in keep_unstaged are unstaged again.
        """
        source_ref = self.remote_ref(source_branch)
        if self.prov.is_ancestor(source_ref, "HEAD"):
            return MergeOutcome(source_branch, dest_branch,
                                MergeStatus.SKIPPED_ALREADY_MERGED)

        if self.prov.merge(source_ref, message, strategy_option="ours"):
            return MergeOutcome(source_branch, dest_branch, MergeStatus.MERGED)

        if not self.prov.is_merging():
            return MergeOutcome(
                source_branch,
                dest_branch,
                MergeStatus.FAILED,
                error=f"git could not start merging {source_ref}",
            )

        conflicts = self.prov.conflicted_files()
        for path in conflicts:
            print(f"Conflict in {path}: keeping the {dest_branch} version",
                  flush=True)
            try:
                self.prov.checkout_ours(path)
                self.prov.add(path)
            except subprocess.CalledProcessError:
                # No version on our side: the destination deleted it.
                self.prov.remove(path)

        self.prov.add_all(exclude)
        if keep_unstaged:
            self.prov.unstage(*keep_unstaged)

        try:
            self.prov.commit(message, no_verify=True, allow_empty=True)
        except subprocess.CalledProcessError as e:
            return MergeOutcome(
                source_branch,
                dest_branch,
                MergeStatus.FAILED,
                len(conflicts),
                error=str(e),
            )
        return MergeOutcome(source_branch, dest_branch, MergeStatus.MERGED,
                            len(conflicts))

    def restore_paths(self, from_branch: str, paths: tuple[str, ...]) -> None:
        """Overwrite paths with their from_branch content and stage them."""
        if not paths:
            return
        self.prov.checkout_files(from_branch, *paths)
        self.prov.add(*paths)

    def push(self, branch: str, force: bool = False) -> bool:
        """Push branch to the remote.

        Returns False if the remote rejected the push but its branch already
        contains the local HEAD, which happens when another run pushed the
        same commits first. Any other failed push raises InvalidState.
        """
        try:
            self.prov.push(self.remote, branch, force=force)
            return True
        except subprocess.CalledProcessError as e:
            if not self.remote_branch_exists(branch):
                raise stage.InvalidState(
                    f"Failed to push {branch} and it does not exist on "
                    f"{self.remote}") from e
            self.prov.fetch_branch(self.remote, branch)
            if not self.prov.is_ancestor("HEAD", self.remote_ref(branch)):
                raise stage.InvalidState(
                    f"Push of {branch} was rejected and {self.remote} does "
                    "not contain the local commits") from e
            print(f"Push of {branch} rejected; {self.remote} already has "
                  "these commits",
                  flush=True)
            return False
