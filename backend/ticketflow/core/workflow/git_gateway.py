"""
Git Gateway
===========

Narrow interface over the version-control tool.

Every call takes the working directory explicitly and reports failure through
the result instead of raising, so callers decide what is fatal and what is a
warning.
"""

import shlex
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import structlog

from ticketflow.core.config import Settings, get_settings

logger = structlog.get_logger()


@dataclass
class GitResult:
    """Outcome of one git invocation."""
    success: bool
    output: str = ""
    error: str = ""
    command: str = ""


# ==========================================================================
# Gateway Interface
# ==========================================================================

class GitGateway(ABC):
    """Abstract interface for git access."""

    @abstractmethod
    def run(self, command: str, working_dir: str) -> GitResult:
        """Run a shell-level read-only command (log, diff, rev-parse)."""
        pass

    @abstractmethod
    def branch_exists(self, name: str, working_dir: str) -> bool:
        """True if a local branch with this exact name exists."""
        pass

    @abstractmethod
    def checkout(self, name: str, working_dir: str) -> GitResult:
        """Switch to an existing branch."""
        pass

    @abstractmethod
    def create_branch(self, name: str, working_dir: str) -> GitResult:
        """Create a branch from the current HEAD and switch to it."""
        pass

    @abstractmethod
    def is_repository(self, working_dir: str) -> bool:
        """True if `working_dir` is inside a git work tree."""
        pass


# ==========================================================================
# Subprocess Implementation
# ==========================================================================

class SubprocessGitGateway(GitGateway):
    """
    Real gateway backed by the git binary.

    Branch operations pass an argument list (no shell), so branch names are
    never interpreted by a shell. `run` uses the shell because callers rely
    on `||` fallbacks and redirections.
    """

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()

    def _execute(
        self,
        args: list[str] | str,
        working_dir: str,
        shell: bool = False,
    ) -> GitResult:
        command = args if isinstance(args, str) else shlex.join(args)
        try:
            proc = subprocess.run(
                args,
                cwd=working_dir,
                shell=shell,
                capture_output=True,
                text=True,
                timeout=self.settings.GIT_COMMAND_TIMEOUT_SECONDS,
            )
        except subprocess.TimeoutExpired:
            logger.warning("Git command timed out", command=command, cwd=working_dir)
            return GitResult(
                success=False,
                error=f"Timed out after {self.settings.GIT_COMMAND_TIMEOUT_SECONDS}s",
                command=command,
            )
        except OSError as e:
            # Missing binary or missing working directory
            return GitResult(success=False, error=str(e), command=command)

        return GitResult(
            success=proc.returncode == 0,
            output=proc.stdout.strip(),
            error=proc.stderr.strip(),
            command=command,
        )

    def run(self, command: str, working_dir: str) -> GitResult:
        return self._execute(command, working_dir, shell=True)

    def is_repository(self, working_dir: str) -> bool:
        return self._execute([self.settings.GIT_BINARY, "rev-parse", "--git-dir"], working_dir).success

    def branch_exists(self, name: str, working_dir: str) -> bool:
        result = self._execute(
            [self.settings.GIT_BINARY, "show-ref", "--verify", "--quiet", f"refs/heads/{name}"],
            working_dir,
        )
        return result.success

    def checkout(self, name: str, working_dir: str) -> GitResult:
        return self._execute([self.settings.GIT_BINARY, "checkout", name], working_dir)

    def create_branch(self, name: str, working_dir: str) -> GitResult:
        result = self._execute([self.settings.GIT_BINARY, "checkout", "-b", name], working_dir)
        if result.success:
            logger.info("Branch created", branch=name, cwd=working_dir)
        return result
