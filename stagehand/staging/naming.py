"""Content-addressed names for staged artifacts."""

from pathlib import Path

# Directories are staged as zip archives under this extension
DIRECTORY_EXTENSION = "jar"


def split_name(path: Path) -> tuple[str, str]:
    """
    Split the base name of `path` into (stem, extension).

    Only the last dot counts and a leading dot is part of the stem:
    "a.tar.gz" -> ("a.tar", "gz"), ".env" -> (".env", "").
    """
    name = Path(path).name
    dot = name.rfind(".")
    if dot <= 0:
        return name, ""
    return name[:dot], name[dot + 1:]


def unique_content_name(path: Path, content_hash: str, is_directory: bool) -> str:
    """
    Return a unique name for an artifact with a given content hash.

    Directory components are removed. Example:

        dir="a/b/c/d",      hash="f000" => d-f000.jar
        file="a/b/c/d.txt", hash="f000" => d-f000.txt
        file="a/b/c/d",     hash="f000" => d-f000
    """
    stem, extension = split_name(path)
    if is_directory:
        return f"{stem}-{content_hash}.{DIRECTORY_EXTENSION}"
    if not extension:
        return f"{stem}-{content_hash}"
    return f"{stem}-{content_hash}.{extension}"
