"""
Output Path Sandbox
===================

Decides whether a diagram may be written to a given path. Only ``.svg``
and ``.png`` files are allowed, and only inside the current working
directory plus any directories listed in ``PLANTUML_ALLOWED_DIRS``
(colon-separated, or ``*`` to allow any directory).

The check works on path strings only; it never touches the filesystem.
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional

logger = logging.getLogger(__name__)

ALLOWED_DIRS_ENV = "PLANTUML_ALLOWED_DIRS"
WILDCARD = "*"
ALLOWED_EXTENSIONS = ('.svg', '.png')


def _normalize(path: str, cwd: str) -> str:
    normalized = os.path.normpath(os.path.join(cwd, path))
    # POSIX normpath keeps a leading "//"
    if normalized.startswith('//'):
        normalized = '/' + normalized.lstrip('/')
    return normalized


@dataclass(frozen=True)
class PathDecision:
    """Result of a sandbox check. ``reason`` is set when denied."""

    allowed: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class AllowListPolicy:
    """Directory policy: the raw ``PLANTUML_ALLOWED_DIRS`` value plus cwd."""

    raw: Optional[str] = None
    cwd: Optional[str] = None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "AllowListPolicy":
        """Build a policy from the environment as it is right now."""
        env = os.environ if environ is None else environ
        return cls(raw=env.get(ALLOWED_DIRS_ENV), cwd=os.getcwd())

    @property
    def working_dir(self) -> str:
        return _normalize(self.cwd or os.getcwd(), os.getcwd())

    @property
    def unrestricted(self) -> bool:
        return self.raw == WILDCARD

    def resolve(self, path: str) -> str:
        return _normalize(path, self.working_dir)

    def directories(self) -> list:
        """Allowed directories, cwd first. Empty list when unrestricted."""
        if self.unrestricted:
            return []

        dirs = [self.working_dir]
        if self.raw:
            for entry in self.raw.split(':'):
                entry = entry.strip()
                if entry:
                    dirs.append(self.resolve(entry))
        return dirs


def _is_within(path: str, directory: str) -> bool:
    if path == directory:
        return True
    return path.startswith(directory + os.sep)


def is_path_allowed(file_path: str, policy: Optional[AllowListPolicy] = None) -> PathDecision:
    """Check whether a diagram may be written to ``file_path``.

    The extension check always applies, wildcard mode included. Directory
    containment is a plain prefix comparison on normalized absolute paths.

    Args:
        file_path: Candidate output path, absolute or relative to cwd
        policy: Directory policy; read from the environment when omitted

    Returns:
        PathDecision with a reason naming the failed rule when denied
    """
    if policy is None:
        policy = AllowListPolicy.from_env()

    resolved = policy.resolve(file_path)

    ext = os.path.splitext(resolved)[1].lower()
    if ext not in ALLOWED_EXTENSIONS:
        reason = f'Invalid extension "{ext or "(none)"}". Only .svg and .png are allowed.'
        logger.debug("Denied %s: %s", resolved, reason)
        return PathDecision(allowed=False, reason=reason)

    if policy.unrestricted:
        return PathDecision(allowed=True)

    allowed_dirs = policy.directories()
    for directory in allowed_dirs:
        if _is_within(resolved, directory):
            return PathDecision(allowed=True)

    reason = f'Path "{resolved}" is outside allowed directories. Allowed: {", ".join(allowed_dirs)}'
    logger.debug("Denied %s: %s", resolved, reason)
    return PathDecision(allowed=False, reason=reason)
