"""Git operations subpackage.

This subpackage provides abstractions over git operations with support for
testing via fakes.
"""

from kira.core.git.abc import Git
from kira.core.git.real import RealGit

__all__ = ["Git", "RealGit"]
