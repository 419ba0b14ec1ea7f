"""Obtain diff text from a git repository.

The analysis engine never calls this itself; the CLI uses it when no diff
file is given.
"""

import logging
from pathlib import Path
from typing import Union

import git

from ..exceptions import SourceError

logger = logging.getLogger(__name__)


def diff_from_repository(root: Union[str, Path], rev: str = "HEAD", staged: bool = False) -> str:
    """Unified diff of the working tree (or the index with ``staged``) against ``rev``.

    Raises:
        SourceError: If ``root`` is not inside a git repository or git fails.
    """
    root = Path(root)
    try:
        repo = git.Repo(root, search_parent_directories=True)
    except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
        raise SourceError(str(root), "not a git repository") from e

    args = ["--no-color", "--no-ext-diff", "--unified=3"]
    if staged:
        args.append("--cached")
    args.append(rev)
    try:
        diff_text = repo.git.diff(*args)
    except git.GitCommandError as e:
        raise SourceError(str(root), (e.stderr or str(e)).strip()) from e
    finally:
        repo.close()

    logger.debug("git diff %s produced %d bytes", " ".join(args), len(diff_text))
    # GitPython strips the trailing newline
    return diff_text + "\n" if diff_text else ""
