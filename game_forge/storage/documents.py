"""Reference documents for prompt context, stored as markdown files."""

from pathlib import Path

from .core import documents_dir, slugify


def list_documents() -> list[dict[str, str]]:
    docs: list[dict[str, str]] = []
    for path in sorted(documents_dir().glob("*.md")):
        docs.append({"name": path.stem, "text": path.read_text()})
    return docs


def save_document(name: str, text: str) -> Path:
    path = documents_dir() / f"{slugify(name)}.md"
    path.write_text(text)
    return path


def delete_document(name: str) -> bool:
    path = documents_dir() / f"{slugify(name)}.md"
    if not path.is_file():
        return False
    path.unlink()
    return True
