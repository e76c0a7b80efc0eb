# SPDX-License-Identifier: GPL-3.0-or-later
# Copyright © 2024-2026 The TokTok team
import re
import subprocess  # nosec
from dataclasses import dataclass
from typing import Any
from typing import Optional

RELEASE_BRANCH_PREFIX = "release"
RELEASE_BRANCH_REGEX = re.compile(
    rf"^{RELEASE_BRANCH_PREFIX}/([0-9]+)\.([0-9]+)\.([0-9]+)$")
VERSION_REGEX = re.compile(r"^([0-9]+)\.([0-9]+)\.([0-9]+)$")


@dataclass(frozen=True)
class RepoSlug:
    owner: str
    name: str

    def __str__(self) -> str:
        return f"{self.owner}/{self.name}"


@dataclass(frozen=True)
class ReleaseVersion:
    major: int
    minor: int
    patch: int

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @property
    def branch(self) -> str:
        return f"{RELEASE_BRANCH_PREFIX}/{self}"

    def is_older_than(self, other: "ReleaseVersion") -> bool:
        return compare_versions(self, other) < 0

    def __lt__(self, other: Any) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return compare_versions(self, other) < 0

    def __le__(self, other: Any) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return compare_versions(self, other) <= 0

    def __gt__(self, other: Any) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return compare_versions(self, other) > 0

    def __ge__(self, other: Any) -> bool:
        if not isinstance(other, ReleaseVersion):
            return NotImplemented
        return compare_versions(self, other) >= 0


def compare_versions(a: ReleaseVersion, b: ReleaseVersion) -> int:
    """Compare two versions numerically, returning -1, 0 or 1."""
    ka = (a.major, a.minor, a.patch)
    kb = (b.major, b.minor, b.patch)
    if ka < kb:
        return -1
    if ka > kb:
        return 1
    return 0


def parse_release_branch(branch: str) -> Optional[ReleaseVersion]:
    """Parse a release/X.Y.Z branch name.

    Anything else, including release candidates like release/1.2.3-rc.1,
    returns None.
    """
    match = RELEASE_BRANCH_REGEX.fullmatch(branch)
    if not match:
        return None
    return ReleaseVersion(
        major=int(match.group(1)),
        minor=int(match.group(2)),
        patch=int(match.group(3)),
    )


def parse_version(version: str) -> ReleaseVersion:
    """Parse a bare X.Y.Z version string."""
    match = VERSION_REGEX.fullmatch(version)
    if not match:
        raise ValueError(f"Could not parse version: {version}")
    return ReleaseVersion(
        major=int(match.group(1)),
        minor=int(match.group(2)),
        patch=int(match.group(3)),
    )


class Git:
    """A provider for Git commands.

    All commands run inside the given working tree (or the current directory
    if none is given), so several providers can work on separate clones in
    the same process.
    """

    def __init__(self, root: Optional[str] = None) -> None:
        self.cwd = root

    def _run_output(self, args: list[str]) -> str:
        return (subprocess.check_output(  # nosec
            ["git"] + args, cwd=self.cwd).strip().decode("utf-8"))

    def _run_call(self, args: list[str]) -> None:
        subprocess.check_call(["git"] + args, cwd=self.cwd)  # nosec

    def _run_status(self, args: list[str]) -> int:
        return subprocess.run(  # nosec
            ["git"] + args, cwd=self.cwd, check=False).returncode

    def _run_quiet_status(self, args: list[str]) -> int:
        return subprocess.run(  # nosec
            ["git"] + args,
            cwd=self.cwd,
            check=False,
            stdout=subprocess.DEVNULL,
            stderr=subprocess.DEVNULL,
        ).returncode

    def configure_user(self, name: str, email: str) -> None:
        """Set the committer identity for this repository."""
        self._run_call(["config", "user.name", name])
        self._run_call(["config", "user.email", email])

    def fetch(self, *remotes: str) -> None:
        """Fetch branches from one or more remotes, pruning deleted ones."""
        self._run_call(["fetch", "--quiet", "--prune", "--multiple", *remotes])

    def fetch_branch(self, remote: str, branch: str) -> None:
        """Fetch a single branch from a remote."""
        self._run_call(["fetch", "--quiet", remote, branch])

    def pull(self, remote: str, branch: str) -> None:
        """Pull a branch from a remote into the current branch."""
        self._run_call(["pull", "--quiet", "--no-rebase", remote, branch])

    def remote_slug(self, remote: str) -> RepoSlug:
        """Get the GitHub slug of a remote."""
        url = self._run_output(["remote", "get-url", remote])
        match = re.search(r"[:/]([^/]+)/([^./]+)(?:\.git)?$", url)
        if not match:
            raise ValueError(f"Could not parse remote URL: {url}")
        return RepoSlug(match.group(1), match.group(2))

    def remote_branches(self, remote: str, pattern: str = "*") -> list[str]:
        """List remote-tracking branches matching a pattern.

        The remote prefix is stripped, so "origin/release/1.0.0" is returned
        as "release/1.0.0".
        """
        lines = self._run_output([
            "branch",
            "--remotes",
            "--list",
            "--no-column",
            "--format=%(refname:short)",
            f"{remote}/{pattern}",
        ]).splitlines()
        prefix = f"{remote}/"
        return [
            line.strip()[len(prefix):] for line in lines
            if line.strip().startswith(prefix)
        ]

    def ls_remote_heads(self, remote: str, branch: str) -> list[str]:
        """List the refs a remote has for the given branch name."""
        return self._run_output(
            ["ls-remote", "--heads", remote,
             f"refs/heads/{branch}"]).splitlines()

    def local_branch_exists(self, branch: str) -> bool:
        return self._run_quiet_status(
            ["show-ref", "--verify", "--quiet", f"refs/heads/{branch}"]) == 0

    def is_ancestor(self, commit: str, of: str) -> bool:
        """Check whether commit is contained in the history of of.

        Unknown refs count as "not an ancestor".
        """
        return self._run_quiet_status(
            ["merge-base", "--is-ancestor", commit, of]) == 0

    def current_branch(self) -> str:
        """Get the current branch name (empty on a detached HEAD)."""
        return self._run_output(["branch", "--show-current"])

    def count_commits(self, base: str, head: str) -> int:
        """Count the commits reachable from head but not from base."""
        return int(self._run_output(["rev-list", "--count", f"{base}..{head}"]))

    def checkout(self, branch: str, force: bool = False) -> None:
        """Checkout a branch."""
        args = ["checkout", "--quiet"]
        if force:
            args.append("--force")
        self._run_call(args + [branch])

    def create_branch(self, branch: str, base: Optional[str] = None) -> None:
        """Create a branch from a base branch (or HEAD) and check it out."""
        args = ["checkout", "--quiet", "-b", branch]
        if base:
            args.append(base)
        self._run_call(args)

    def delete_branch(self, branch: str) -> None:
        """Force-delete a local branch."""
        self._run_call(["branch", "--quiet", "-D", branch])

    def clean(self) -> None:
        """Remove untracked files and directories."""
        self._run_call(["clean", "--quiet", "-fd"])

    def reset(self, ref: str) -> None:
        """Hard-reset the current branch to a specific commit."""
        self._run_call(["reset", "--quiet", "--hard", ref])

    def merge(self,
              ref: str,
              message: str,
              strategy_option: Optional[str] = None) -> bool:
        """Merge ref into the current branch.

        Returns False if the merge stopped, e.g. because of conflicts. The
        working tree is then left in the merging state.
        """
        args = ["merge", "--no-edit", "-m", message]
        if strategy_option:
            args.extend(["-X", strategy_option])
        return self._run_status(args + [ref]) == 0

    def is_merging(self) -> bool:
        """Check whether a merge is in progress (MERGE_HEAD exists)."""
        return self._run_quiet_status(
            ["rev-parse", "--quiet", "--verify", "MERGE_HEAD"]) == 0

    def conflicted_files(self) -> list[str]:
        """List the files with unresolved merge conflicts."""
        return [
            f for f in self._run_output(
                ["diff", "--name-only", "--diff-filter=U"]).splitlines() if f
        ]

    def has_staged_changes(self) -> bool:
        """Check whether the index differs from HEAD."""
        return self._run_quiet_status(["diff", "--cached", "--quiet"]) != 0

    def checkout_ours(self, *files: str) -> None:
        """Resolve conflicted files by taking the current branch's version."""
        self._run_call(["checkout", "--ours", "--", *files])

    def checkout_files(self, ref: str, *files: str) -> None:
        """Overwrite files in the working tree and index with ref's version."""
        self._run_call(["checkout", ref, "--", *files])

    def add(self, *files: str) -> None:
        """Add files to the index."""
        self._run_call(["add", "--", *files])

    def remove(self, *files: str) -> None:
        """Remove files from the working tree and the index."""
        self._run_call(["rm", "--quiet", "--", *files])

    def add_all(self, exclude: tuple[str, ...] = ()) -> None:
        """Add all changes to the index, except for the excluded paths."""
        self._run_call(
            ["add", "--all", "--", ".", *(f":!{p}" for p in exclude)])

    def unstage(self, *files: str) -> None:
        """Remove files from the index, keeping the working tree copies.

        Files that are not in the index or in HEAD are ignored.
        """
        self._run_quiet_status(["reset", "--quiet", "HEAD", "--", *files])

    def commit(self,
               message: str,
               no_verify: bool = False,
               allow_empty: bool = False) -> None:
        """Commit the index."""
        args = ["commit", "--quiet", "--message", message]
        if no_verify:
            args.append("--no-verify")
        if allow_empty:
            args.append("--allow-empty")
        self._run_call(args)

    def push(self,
             remote: str,
             branch: str,
             force: bool = False,
             set_upstream: bool = True) -> None:
        """Push a branch to a remote."""
        args = ["push", "--quiet"]
        if force:
            args.append("--force")
        if set_upstream:
            args.append("--set-upstream")
        self._run_call(args + [remote, branch])
