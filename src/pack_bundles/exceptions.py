from dataclasses import dataclass
from pathlib import Path


@dataclass(frozen=True)
class PackBundlesError(Exception):
    """Base exception for errors in the pack_bundles module."""

    def __str__(self) -> str:
        return str(getattr(self, "message", self.__class__.__name__))


@dataclass(frozen=True)
class SourceDirectoryError(PackBundlesError):
    """Raised when the source directory is missing or not a directory."""

    folder: Path
    message: str = "The source directory does not exist."


@dataclass(frozen=True)
class SettingsError(PackBundlesError):
    """Raised when configuration values or a configuration file are invalid."""

    message: str


@dataclass(frozen=True)
class GitCommandError(PackBundlesError):
    """Raised when a git command fails."""

    command: str
    returncode: int
    stdout: str
    stderr: str
    message: str = "git command failed."


@dataclass(frozen=True)
class NotAGitRepositoryError(PackBundlesError):
    """Raised when the specified directory is not inside a Git working tree."""

    folder: Path
    message: str = "The specified directory is not a Git repository."


@dataclass(frozen=True)
class NormalizationError(PackBundlesError):
    """Raised when a single file cannot be normalized; fatal to the whole run."""

    file: Path
    reason: str
    message: str = "A file could not be normalized."
