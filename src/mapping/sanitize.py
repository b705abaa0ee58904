"""Санитизация значений перед записью в хранилище.

Правило выбирается по имени целевого поля:
- bool → "1"/"0", массивы и объекты → канонический JSON;
- "url" в имени → только http(s) URL, иначе пустая строка;
- description/benefits/consider/prospects → HTML с безопасным набором тегов;
- остальные строки → plain text без разметки.
"""
import html
import json
import re
from html.parser import HTMLParser
from typing import Any
from urllib.parse import urlsplit

HTML_FIELD_MARKERS = ("description", "benefits", "consider", "prospects")

ALLOWED_TAGS = frozenset({
    "a", "b", "br", "em", "h2", "h3", "h4", "i", "li", "ol", "p", "strong", "u", "ul",
})
VOID_TAGS = frozenset({"br"})
ALLOWED_ATTRS = {"a": frozenset({"href", "title"})}
# Содержимое этих тегов выкидывается целиком
DROP_CONTENT_TAGS = frozenset({"script", "style", "iframe", "object", "embed"})

_WHITESPACE_RE = re.compile(r"\s+")


def is_safe_url(value: str) -> bool:
    """Только абсолютные http(s) URL с хостом."""
    try:
        parts = urlsplit(value)
    except ValueError:
        return False
    return parts.scheme in ("http", "https") and bool(parts.netloc)


class _SafeHtmlParser(HTMLParser):
    """Пропускает разрешённые теги/атрибуты, экранирует текст."""

    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []
        self._drop_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in DROP_CONTENT_TAGS:
            self._drop_depth += 1
            return
        if self._drop_depth or tag not in ALLOWED_TAGS:
            return
        allowed = ALLOWED_ATTRS.get(tag, frozenset())
        rendered = ""
        for name, value in attrs:
            if name not in allowed or value is None:
                continue
            if name == "href" and not is_safe_url(value):
                continue
            rendered += f' {name}="{html.escape(value, quote=True)}"'
        self.parts.append(f"<{tag}{rendered}>")

    def handle_endtag(self, tag: str) -> None:
        if tag in DROP_CONTENT_TAGS:
            self._drop_depth = max(0, self._drop_depth - 1)
            return
        if self._drop_depth or tag not in ALLOWED_TAGS or tag in VOID_TAGS:
            return
        self.parts.append(f"</{tag}>")

    def handle_data(self, data: str) -> None:
        if not self._drop_depth:
            self.parts.append(html.escape(data, quote=False))


class _TextParser(HTMLParser):
    def __init__(self) -> None:
        super().__init__(convert_charrefs=True)
        self.parts: list[str] = []
        self._drop_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, str | None]]) -> None:
        if tag in DROP_CONTENT_TAGS:
            self._drop_depth += 1
        else:
            self.parts.append(" ")

    def handle_endtag(self, tag: str) -> None:
        if tag in DROP_CONTENT_TAGS:
            self._drop_depth = max(0, self._drop_depth - 1)
        else:
            self.parts.append(" ")

    def handle_data(self, data: str) -> None:
        if not self._drop_depth:
            self.parts.append(data)


def sanitize_html(value: str) -> str:
    """HTML → HTML только с разрешёнными тегами."""
    parser = _SafeHtmlParser()
    parser.feed(value)
    parser.close()
    return "".join(parser.parts).strip()


def sanitize_text(value: str) -> str:
    """Убрать разметку и схлопнуть пробелы."""
    parser = _TextParser()
    parser.feed(value)
    parser.close()
    return _WHITESPACE_RE.sub(" ", "".join(parser.parts)).strip()


def sanitize_value(target: str, value: Any) -> Any:
    """Привести значение к безопасному виду по имени целевого поля."""
    if value is None:
        return None
    if isinstance(value, bool):
        return "1" if value else "0"
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True, ensure_ascii=False)
    if isinstance(value, (int, float)):
        return value

    text = str(value)
    lowered = target.lower()
    if "url" in lowered:
        candidate = text.strip()
        return candidate if is_safe_url(candidate) else ""
    if any(marker in lowered for marker in HTML_FIELD_MARKERS):
        return sanitize_html(text)
    return sanitize_text(text)
