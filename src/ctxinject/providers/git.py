"""Git repository summary provider (GitPython)."""

import asyncio
from dataclasses import dataclass, field
from pathlib import Path

import git
import structlog

from ctxinject.config import settings
from ctxinject.context.models import Source, SourceMetadata, SourceType
from ctxinject.context.tokens import estimate_tokens

from .base import FetchResult, RepositoryNotFoundError, SourceProvider

logger = structlog.get_logger(__name__)

README_NAMES = ("README.md", "readme.md", "README.txt", "README")


@dataclass
class FileNode:
    """A file in a repository tree."""

    name: str


@dataclass
class DirectoryNode:
    """A directory in a repository tree; children are keyed by name."""

    name: str
    children: dict[str, "TreeNode"] = field(default_factory=dict)

    def directories(self) -> list["DirectoryNode"]:
        return [c for c in self.children.values() if isinstance(c, DirectoryNode)]

    def files(self) -> list[FileNode]:
        return [c for c in self.children.values() if isinstance(c, FileNode)]


TreeNode = DirectoryNode | FileNode


def build_tree(paths: list[str]) -> DirectoryNode:
    """Build a directory tree from slash-separated repository paths."""
    root = DirectoryNode(name="")
    for file_path in paths:
        parts = [part for part in file_path.split("/") if part]
        if not parts:
            continue
        current = root
        for part in parts[:-1]:
            child = current.children.get(part)
            if not isinstance(child, DirectoryNode):
                child = DirectoryNode(name=part)
                current.children[part] = child
            current = child
        current.children.setdefault(parts[-1], FileNode(name=parts[-1]))
    return root


def render_tree(node: DirectoryNode, indent: str = "") -> str:
    """Render a tree as indented lines, directories before files."""
    lines: list[str] = []
    for directory in node.directories():
        lines.append(f"{indent}{directory.name}/\n")
        lines.append(render_tree(directory, indent + "  "))
    for file_node in node.files():
        lines.append(f"{indent}{file_node.name}\n")
    return "".join(lines)


@dataclass
class RepositorySummary:
    """Facts gathered from a repository."""

    path: str
    branch: str
    commit: str
    structure: str
    recent_commits: str
    modified_files: list[str]
    readme: str | None

    def render(self) -> str:
        parts = [
            f"Git Repository: {self.path}\n",
            f"Branch: {self.branch}\n",
            f"Commit: {self.commit}\n\n",
        ]
        if self.readme:
            parts.append(f"README:\n{self.readme}\n\n")
        parts.append(f"Repository Structure:\n{self.structure}\n\n")
        if self.modified_files:
            parts.append("Modified Files:\n")
            parts.extend(f"- {name}\n" for name in self.modified_files)
            parts.append("\n")
        parts.append(f"Recent Commits:\n{self.recent_commits}\n")
        return "".join(parts)


class GitProvider(SourceProvider):
    """Summarize a git repository: branch, README, layout, status, history."""

    source_type = SourceType.GIT

    def __init__(
        self,
        max_tree_files: int | None = None,
        recent_commits: int | None = None,
        readme_max_chars: int | None = None,
    ) -> None:
        self._max_tree_files = max_tree_files or settings.providers.git_tree_max_files
        self._recent_commits = recent_commits or settings.providers.git_recent_commits
        self._readme_max_chars = (
            readme_max_chars or settings.providers.readme_max_chars
        )

    async def fetch(self, source: Source) -> FetchResult:
        """Summarize the repository at ``source.path`` (default: cwd).

        Raises:
            RepositoryNotFoundError: If the path is not a git repository
        """
        repo_path = source.path or str(Path.cwd())
        loop = asyncio.get_running_loop()
        summary = await loop.run_in_executor(None, self._summarize_sync, repo_path)

        content = summary.render()
        metadata = SourceMetadata(
            git_branch=summary.branch,
            git_commit=summary.commit,
            tokens=estimate_tokens(content),
        )
        logger.debug(
            "repository_summarized",
            path=repo_path,
            branch=summary.branch,
            modified=len(summary.modified_files),
        )
        return FetchResult(content=content, metadata=metadata)

    def _summarize_sync(self, repo_path: str) -> RepositorySummary:
        try:
            repo = git.Repo(repo_path)
        except (git.InvalidGitRepositoryError, git.NoSuchPathError) as e:
            raise RepositoryNotFoundError(
                f"Not a valid git repository: {repo_path}"
            ) from e

        try:
            return RepositorySummary(
                path=repo_path,
                branch=self._branch(repo),
                commit=self._commit(repo),
                structure=self._structure(repo),
                recent_commits=self._log(repo),
                modified_files=self._modified_files(repo),
                readme=self._readme(repo),
            )
        finally:
            repo.close()

    def _branch(self, repo: git.Repo) -> str:
        try:
            return repo.active_branch.name
        except TypeError:
            # Detached HEAD
            return "HEAD"

    def _commit(self, repo: git.Repo) -> str:
        try:
            return repo.head.commit.hexsha
        except ValueError:
            # No commits yet
            return ""

    def _structure(self, repo: git.Repo) -> str:
        try:
            listing = repo.git.ls_tree("-r", "--name-only", "HEAD")
        except git.GitCommandError:
            return "Unable to retrieve repository structure"
        files = [line for line in listing.splitlines() if line.strip()]
        return render_tree(build_tree(files[: self._max_tree_files]))

    def _log(self, repo: git.Repo) -> str:
        try:
            log = repo.git.log("--oneline", "-n", str(self._recent_commits))
        except git.GitCommandError:
            return "No recent commits available"
        return log or "No recent commits available"

    def _modified_files(self, repo: git.Repo) -> list[str]:
        try:
            status = repo.git.status("--porcelain")
        except git.GitCommandError:
            return []
        return [line[3:] for line in status.splitlines() if line.strip()]

    def _readme(self, repo: git.Repo) -> str | None:
        if repo.working_tree_dir is None:
            return None
        root = Path(repo.working_tree_dir)
        for name in README_NAMES:
            readme_path = root / name
            if not readme_path.is_file():
                continue
            text = readme_path.read_text(encoding="utf-8", errors="replace")
            if len(text) > self._readme_max_chars:
                return text[: self._readme_max_chars] + "..."
            return text
        return None
