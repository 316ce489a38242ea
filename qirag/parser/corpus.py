"""Corpus directory traversal."""

from pathlib import Path


SUPPORTED_EXTENSIONS = {".txt", ".md", ".markdown"}


def _is_hidden(path: Path, root: Path) -> bool:
    return any(part.startswith(".") for part in path.relative_to(root).parts)


def iter_corpus_files(corpus_path: Path) -> list[Path]:
    """List supported files under a corpus directory, sorted by path.

    Hidden files and anything inside hidden directories are skipped.
    """
    corpus_path = Path(corpus_path)
    files = [
        path
        for path in corpus_path.rglob("*")
        if path.is_file()
        and path.suffix.lower() in SUPPORTED_EXTENSIONS
        and not _is_hidden(path, corpus_path)
    ]
    return sorted(files)

