"""Key-value persistence and the saved-articles library."""
from __future__ import annotations

import copy
import logging
import os
import re
import tempfile
import uuid
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Tuple

import yaml

logger = logging.getLogger(__name__)

_FRONT_MATTER_DELIMITER = "---"
_TITLE_PATTERN = re.compile(r"^#\s+(.*?)(\n|$)")

SAVED_ARTICLES_KEY = "saved_articles"

ChangeCallback = Callable[[str, Any], None]


class KeyValueStore(Protocol):
    """Opaque-key storage with change notifications."""

    def get(self, key: str, default: Any = None) -> Any:
        ...

    def set(self, key: str, value: Any) -> None:
        ...

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        ...


class MemoryStore:
    """In-process store; values are deep-copied on the way in and out."""

    def __init__(self, initial: Optional[Dict[str, Any]] = None) -> None:
        self._data: Dict[str, Any] = copy.deepcopy(initial) if initial else {}
        self._listeners: Dict[str, List[ChangeCallback]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        if key not in self._data:
            return default
        return copy.deepcopy(self._data[key])

    def set(self, key: str, value: Any) -> None:
        self._data[key] = copy.deepcopy(value)
        self._write()
        self._notify(key, value)

    def subscribe(self, key: str, callback: ChangeCallback) -> Callable[[], None]:
        listeners = self._listeners.setdefault(key, [])
        listeners.append(callback)

        def unsubscribe() -> None:
            if callback in listeners:
                listeners.remove(callback)

        return unsubscribe

    def _write(self) -> None:
        pass

    def _notify(self, key: str, value: Any) -> None:
        for callback in list(self._listeners.get(key, ())):
            callback(key, copy.deepcopy(value))


class YamlFileStore(MemoryStore):
    """Store persisted as one YAML mapping, rewritten whole on every ``set``."""

    def __init__(self, path: Path) -> None:
        self.path = Path(path).expanduser()
        super().__init__(self._load())

    def reload(self) -> None:
        """Re-read the file and notify subscribers of keys that changed."""
        fresh = self._load()
        changed = [key for key in set(fresh) | set(self._data) if fresh.get(key) != self._data.get(key)]
        self._data = fresh
        for key in changed:
            self._notify(key, fresh.get(key))

    def _load(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}
        try:
            data = yaml.safe_load(self.path.read_text(encoding="utf-8"))
        except (OSError, yaml.YAMLError) as exc:
            logger.warning("Ignoring unreadable store %s: %s", self.path, exc)
            return {}
        if not isinstance(data, dict):
            logger.warning("Ignoring store %s: top level is not a mapping", self.path)
            return {}
        return data

    def _write(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        text = yaml.safe_dump(self._data, sort_keys=True, allow_unicode=True)
        fd, tmp_name = tempfile.mkstemp(prefix=".state-", suffix=".yaml", dir=str(self.path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(text)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


@dataclass(frozen=True)
class SavedArticle:
    """A page kept in the reading library, optionally with its summary."""

    id: str
    title: str
    url: str
    saved_at: str
    summary: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SavedArticle":
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            url=str(data.get("url") or ""),
            saved_at=str(data.get("saved_at") or ""),
            summary=data.get("summary") or None,
        )


def title_from_summary(summary: Optional[str], fallback: str) -> str:
    """Use the summary's leading ``# `` heading as a title when there is one."""
    if summary:
        match = _TITLE_PATTERN.match(summary)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return fallback


class Library:
    """Saved articles, newest first, at most one entry per URL."""

    def __init__(self, store: KeyValueStore) -> None:
        self._store = store

    def items(self) -> List[SavedArticle]:
        raw = self._store.get(SAVED_ARTICLES_KEY, []) or []
        articles = []
        for entry in raw:
            try:
                articles.append(SavedArticle.from_dict(entry))
            except (KeyError, TypeError):
                logger.warning("Skipping malformed saved article entry: %r", entry)
        return articles

    def is_saved(self, url: str) -> bool:
        return any(article.url == url for article in self.items())

    def save(self, url: str, title: str, summary: Optional[str] = None) -> SavedArticle:
        """Add an article, or return the existing entry for the same URL."""
        articles = self.items()
        for article in articles:
            if article.url == url:
                return article

        article = SavedArticle(
            id=str(uuid.uuid4()),
            title=title_from_summary(summary, title),
            url=url,
            saved_at=datetime.now(timezone.utc).isoformat(),
            summary=summary or None,
        )
        self._write([article, *articles])
        return article

    def delete(self, article_id: str) -> bool:
        articles = self.items()
        kept = [article for article in articles if article.id != article_id]
        if len(kept) == len(articles):
            return False
        self._write(kept)
        return True

    def get(self, article_id: str) -> Optional[SavedArticle]:
        for article in self.items():
            if article.id == article_id:
                return article
        return None

    def _write(self, articles: List[SavedArticle]) -> None:
        self._store.set(SAVED_ARTICLES_KEY, [asdict(article) for article in articles])


def write_article(markdown_path: Path, article: SavedArticle) -> Path:
    """Persist an article as Markdown with YAML front matter."""
    markdown_path = Path(markdown_path)
    markdown_path.parent.mkdir(parents=True, exist_ok=True)
    metadata = {key: value for key, value in asdict(article).items() if key != "summary"}
    front_matter = yaml.safe_dump(metadata, sort_keys=True, allow_unicode=True).strip()
    body = article.summary or ""
    body = body if body.endswith("\n") else f"{body}\n"
    sections = [f"{_FRONT_MATTER_DELIMITER}\n{front_matter}\n{_FRONT_MATTER_DELIMITER}", "", body]
    markdown_path.write_text("\n".join(sections), encoding="utf-8")
    return markdown_path


def load_article(markdown_path: Path) -> SavedArticle:
    """Read an exported article back into a ``SavedArticle``."""
    metadata, body = _split_front_matter(Path(markdown_path).read_text(encoding="utf-8"))
    metadata["summary"] = body.strip() or None
    return SavedArticle.from_dict(metadata)


def _split_front_matter(content: str) -> Tuple[Dict[str, Any], str]:
    lines = content.splitlines()
    if not lines or lines[0].strip() != _FRONT_MATTER_DELIMITER:
        raise ValueError("Article file has no front matter")

    for idx in range(1, len(lines)):
        if lines[idx].strip() == _FRONT_MATTER_DELIMITER:
            front_matter_text = "\n".join(lines[1:idx]).strip()
            metadata = yaml.safe_load(front_matter_text) if front_matter_text else {}
            if not isinstance(metadata, dict):
                raise ValueError("Article front matter must deserialize to a mapping")
            return metadata, "\n".join(lines[idx + 1:])

    raise ValueError("Article front matter is not terminated")
