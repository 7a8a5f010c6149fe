"""Local file provider."""

import asyncio
import hashlib
import io
import json
import mimetypes
import re
import stat
from fnmatch import fnmatch
from pathlib import Path

import aiofiles
import aiofiles.os
import structlog
from pypdf import PdfReader
from pypdf.errors import PdfReadError

from ctxinject.config import settings
from ctxinject.context.models import Source, SourceMetadata, SourceType
from ctxinject.context.tokens import estimate_tokens

from .base import (
    ExcludedPathError,
    FetchResult,
    FileTooLargeError,
    SourceFetchError,
    SourceNotFoundError,
    SourceProvider,
    UnsupportedFileTypeError,
)

logger = structlog.get_logger(__name__)

SUPPORTED_EXTENSIONS = frozenset({
    ".ts", ".tsx", ".js", ".jsx", ".json",
    ".py", ".java", ".cpp", ".c", ".h", ".rs", ".go",
    ".html", ".css", ".scss", ".less",
    ".md", ".txt", ".yml", ".yaml", ".toml",
    ".sh", ".bash", ".zsh", ".fish",
    ".sql", ".graphql", ".proto",
    ".vue", ".svelte", ".astro",
    ".pdf",
})

# Extension to language mapping
EXTENSION_MAP = {
    ".ts": "typescript",
    ".tsx": "typescript",
    ".js": "javascript",
    ".jsx": "javascript",
    ".py": "python",
    ".java": "java",
    ".cpp": "cpp",
    ".c": "c",
    ".rs": "rust",
    ".go": "go",
    ".rb": "ruby",
    ".php": "php",
    ".swift": "swift",
    ".kt": "kotlin",
    ".scala": "scala",
    ".r": "r",
    ".m": "matlab",
    ".sql": "sql",
    ".sh": "bash",
}

# Languages where // starts a line comment
_SLASH_COMMENT_EXTENSIONS = frozenset({".ts", ".js", ".java"})
_SLASH_COMMENT = re.compile(r"(^|\s)//[^\n]*$", re.MULTILINE)


def is_excluded(path: Path, patterns: list[str]) -> bool:
    """Return True if path matches any glob pattern.

    Patterns are matched against the full path, any path suffix (so that
    ``node_modules/**`` excludes nested ``node_modules`` directories) and the
    file name.
    """
    posix = path.as_posix()
    for pattern in patterns:
        if (
            fnmatch(posix, pattern)
            or fnmatch(posix, f"*/{pattern}")
            or fnmatch(path.name, pattern)
        ):
            return True
    return False


def process_file_content(content: str, extension: str) -> str:
    """Normalize file content for context injection.

    JSON is pretty-printed (left as-is when it does not parse) and line
    comments are stripped from C-style sources.
    """
    if extension == ".json":
        try:
            return json.dumps(json.loads(content), indent=2)
        except json.JSONDecodeError:
            return content

    if extension in _SLASH_COMMENT_EXTENSIONS:
        return _SLASH_COMMENT.sub(r"\1", content).strip()

    return content


def _extract_pdf_text(data: bytes) -> str:
    reader = PdfReader(io.BytesIO(data))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


class FileProvider(SourceProvider):
    """Load text (and PDF) files from the local filesystem."""

    source_type = SourceType.FILE

    def __init__(
        self,
        max_file_size: int | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> None:
        """
        Initialize provider.

        Args:
            max_file_size: Size cap in bytes (default: settings.providers)
            exclude_patterns: Glob patterns to refuse (default: settings.context)
        """
        self._max_file_size = (
            max_file_size
            if max_file_size is not None
            else settings.providers.max_file_size
        )
        self._exclude_patterns = (
            exclude_patterns
            if exclude_patterns is not None
            else list(settings.context.exclude_patterns)
        )

    async def fetch(self, source: Source) -> FetchResult:
        """Load a file source.

        Raises:
            ExcludedPathError: If the path matches an exclude pattern
            SourceNotFoundError: If the path is missing or not a regular file
            FileTooLargeError: If the file exceeds the size cap
            UnsupportedFileTypeError: If the extension is not supported
            SourceFetchError: If a PDF cannot be parsed
        """
        if not source.path:
            raise SourceNotFoundError(f"File source '{source.name}' has no path")

        path = Path(source.path).expanduser()

        if is_excluded(path, self._exclude_patterns):
            raise ExcludedPathError(f"Path is excluded by pattern: {path}")

        try:
            file_stat = await aiofiles.os.stat(path)
        except FileNotFoundError as e:
            raise SourceNotFoundError(f"File not found: {path}") from e

        if not stat.S_ISREG(file_stat.st_mode):
            raise SourceNotFoundError(f"Path is not a file: {path}")

        if file_stat.st_size > self._max_file_size:
            raise FileTooLargeError(str(path), file_stat.st_size, self._max_file_size)

        extension = path.suffix.lower()
        if extension not in SUPPORTED_EXTENSIONS:
            raise UnsupportedFileTypeError(f"Unsupported file type: {extension}")

        async with aiofiles.open(path, "rb") as f:
            data = await f.read()

        if extension == ".pdf":
            loop = asyncio.get_running_loop()
            try:
                content = await loop.run_in_executor(None, _extract_pdf_text, data)
            except PdfReadError as e:
                raise SourceFetchError(f"Cannot read PDF {path}: {e}") from e
        else:
            content = data.decode("utf-8", errors="replace")

        processed = process_file_content(content, extension)
        mime_type, _ = mimetypes.guess_type(path.name)

        metadata = SourceMetadata(
            mime_type=mime_type or "text/plain",
            language=EXTENSION_MAP.get(extension),
            encoding="utf-8",
            size=file_stat.st_size,
            hash=hashlib.sha256(data).hexdigest(),
            tokens=estimate_tokens(processed),
        )

        logger.debug(
            "file_loaded",
            path=str(path),
            size=file_stat.st_size,
            tokens=metadata.tokens,
        )
        return FetchResult(content=processed, metadata=metadata)
