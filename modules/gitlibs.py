"""Git library module for infragraph.

This module fetches stack definitions kept in git repositories. Supports
SSH and HTTPS URLs, an optional "//subfolder" suffix selecting a directory
inside the repository and an optional "?ref=" tag or branch.

    git::https://github.com/acme/platform.git//stacks/gcp?ref=v1.2.0
    git@github.com:acme/platform.git//stacks/gcp
    https://github.com/acme/platform//stacks/gcp
"""

import logging
import os
import shutil
import stat
from typing import List, Optional, Tuple

import click
import git
from git import RemoteProgress
from tqdm import tqdm

import modules.helpers as helpers
from modules.exceptions import ConfigError

logger = logging.getLogger(__name__)


class CloneProgress(RemoteProgress):
    """Progress bar for git clone operations.

    Displays a progress bar using tqdm during git repository cloning.
    """

    def __init__(self) -> None:
        super().__init__()
        self.pbar = tqdm(leave=False)

    def update(
        self,
        op_code: int,
        cur_count: int,
        max_count: Optional[int] = None,
        message: str = "",
    ) -> None:
        """Update progress bar with current clone status.

        Args:
            op_code: Git operation code
            cur_count: Current progress count
            max_count: Maximum progress count
            message: Optional status message
        """
        self.pbar.total = max_count
        self.pbar.n = cur_count
        self.pbar.refresh()


def is_git_source(source: str) -> bool:
    """True for sources that should be cloned rather than read or downloaded."""
    if source.startswith(("git::", "git@", "ssh://")):
        return True
    repo_url, _ = helpers.extract_subfolder_from_repo(source.split("?ref=")[0])
    return repo_url.endswith(".git") or helpers.check_for_domain(repo_url)


def get_clone_url(source_url: str) -> Tuple[str, str, str]:
    """Split a git source into clone URL, subfolder and tag.

    Args:
        source_url: Git source in any supported form

    Returns:
        Tuple of (git_url, subfolder, git_tag)

    Examples:
        >>> get_clone_url("git::https://github.com/acme/infra.git//gcp?ref=v1")
        ('https://github.com/acme/infra.git', 'gcp', 'v1')
    """
    git_tag = ""
    address = source_url
    if "?ref=" in address:
        address, git_tag = address.split("?ref=", 1)
    if address.startswith("git::"):
        address = address[len("git::") :]

    if address.startswith("git@"):
        # Normalize GitHub and GitLab SCP-style URLs
        address = address.replace("git@github.com/", "git@github.com:", 1)
        address = address.replace("git@gitlab.com/", "git@gitlab.com:", 1)
        repo_url, _, subfolder = address.partition("//")
    else:
        if "://" not in address:
            address = "https://" + address
        repo_url, subfolder = helpers.extract_subfolder_from_repo(address)
    return repo_url, subfolder.strip("/"), git_tag


def _remove_readonly(func, path, exc_info):
    os.chmod(path, stat.S_IWRITE)
    func(path)


def clone_files(source_url: str, tempdir: str) -> str:
    """Clone a git repository into tempdir and return the stack directory.

    Args:
        source_url: Git source, optionally with //subfolder and ?ref=tag
        tempdir: Directory the clone is placed under

    Returns:
        Path of the subfolder (or repository root) inside the clone

    Raises:
        ConfigError: If git cannot clone the repository or the subfolder is missing
    """
    git_url, subfolder, git_tag = get_clone_url(source_url)
    codepath = os.path.join(tempdir, helpers.safe_dirname(git_url))
    click.echo(click.style(f"\nCloning {git_url}..", fg="white", bold=True))

    if os.path.exists(codepath):
        shutil.rmtree(codepath, onerror=_remove_readonly)
    os.makedirs(codepath, exist_ok=True)

    options: List[str] = ["--depth 1"]
    if git_tag:
        options.append("--branch " + git_tag)

    try:
        git.Repo.clone_from(
            git_url,
            str(codepath),
            multi_options=options,
            progress=CloneProgress(),
        )
    except git.GitCommandError as e:
        shutil.rmtree(codepath, ignore_errors=True)
        raise ConfigError(
            f"Unable to clone repository {git_url}. Check the URL, credentials "
            f"and that it is reachable with the git CLI",
            context={"git": e.stderr.strip() if e.stderr else e.status},
        ) from e

    stack_dir = os.path.join(codepath, subfolder) if subfolder else codepath
    if not os.path.isdir(stack_dir):
        raise ConfigError(
            f"Folder '{subfolder}' not found in repository {git_url}",
            context={"source": source_url},
        )
    logger.debug(f"Cloned {git_url} ({git_tag or 'default branch'}) to {codepath}")
    return stack_dir
