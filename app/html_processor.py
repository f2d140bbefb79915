"""
HTML ingestion: parse an uploaded export, pull out searchable text, copy
every local media file it references into managed storage and point the
markup at the copies.

Flow for one document:
1. Parse with BeautifulSoup's lenient html.parser (broken markup still yields a tree).
2. Text: visible strings under <body> as rendered (inline tags do not split
   words), no script/style, whitespace collapsed.
3. References, category by category: img, video source, audio source, a.
   Network URLs, in-page anchors and links to other HTML pages are left alone.
4. Each reference that resolves to an existing file is copied under a unique
   name and its src/href rewritten to /uploads/<name>. Missing files are
   logged and skipped; the reference keeps its original value.
5. The mutated tree is serialized back to HTML.
"""
import logging
import re
from pathlib import Path, PurePosixPath
from urllib.parse import unquote

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction

from app.models import MediaRecord, MediaType, ProcessedHtml
from app.storage import (
    AUDIO_EXTENSIONS,
    HTML_EXTENSIONS,
    IMAGE_EXTENSIONS,
    VIDEO_EXTENSIONS,
    copy_into_storage,
    ensure_storage_dir,
    public_path,
)

logger = logging.getLogger(__name__)

# scheme: (two chars or more so C:\ paths are not URLs) or protocol-relative //
_NETWORK_URL = re.compile(r"^(?:[a-zA-Z][a-zA-Z0-9+.\-]+:|//)")

_NON_VISIBLE_TAGS = frozenset({"script", "style", "template", "noscript"})
# Text on either side of these never belongs to the same word
_BLOCK_TAGS = frozenset({
    "address", "article", "aside", "blockquote", "br", "dd", "div", "dl", "dt",
    "figcaption", "figure", "footer", "h1", "h2", "h3", "h4", "h5", "h6",
    "header", "hr", "li", "main", "nav", "ol", "p", "pre", "section", "table",
    "td", "th", "tr", "ul",
})
_NON_TEXT_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)
_KNOWN_EXTENSIONS = IMAGE_EXTENSIONS | VIDEO_EXTENSIONS | AUDIO_EXTENSIONS | HTML_EXTENSIONS

# (css selector, attribute, fixed type); None means classify by extension
_REFERENCE_CATEGORIES = (
    ("img[src]", "src", MediaType.IMAGE),
    ("video source[src]", "src", MediaType.VIDEO),
    ("audio source[src]", "src", MediaType.AUDIO),
    ("a[href]", "href", None),
)


def _extension(reference: str) -> str:
    """Suffix of the cleaned path (a.jpg?v=2), else of the reference as written (song#1.mp3)."""
    ext = PurePosixPath(_strip_url_parts(reference)).suffix.lower()
    if ext in _KNOWN_EXTENSIONS:
        return ext
    return PurePosixPath(reference.strip()).suffix.lower()


def classify_extension(reference: str) -> MediaType | None:
    """Media type for a linked file; None for HTML pages (never media)."""
    ext = _extension(reference)
    if ext in IMAGE_EXTENSIONS:
        return MediaType.IMAGE
    if ext in VIDEO_EXTENSIONS:
        return MediaType.VIDEO
    if ext in AUDIO_EXTENSIONS:
        return MediaType.AUDIO
    if ext in HTML_EXTENSIONS:
        return None
    return MediaType.OTHER


def is_local_reference(value: str | None, *, anchor: bool = False) -> bool:
    if not value or not value.strip():
        return False
    value = value.strip()
    if _NETWORK_URL.match(value):
        return False
    if anchor and value.startswith("#"):
        return False
    return True


def _strip_url_parts(reference: str) -> str:
    """Drop ?query and #fragment, decode %XX escapes."""
    path = re.split(r"[?#]", reference.strip(), maxsplit=1)[0]
    return unquote(path)


def _resolve(path: Path, base_dir: Path) -> Path:
    if path.is_absolute():
        return path
    return (base_dir / path).resolve()


def resolve_reference(reference: str, base_dir: Path) -> Path:
    """
    The reference taken literally when that names a file (a file may really be
    called a%20b.jpg), otherwise with ?query/#fragment dropped and escapes decoded.
    """
    literal = _resolve(Path(reference.strip()), base_dir)
    if literal.is_file():
        return literal
    return _resolve(Path(_strip_url_parts(reference)), base_dir)


def _collect_text(node, pieces: list[str]) -> None:
    for child in node.children:
        if isinstance(child, NavigableString):
            if not isinstance(child, _NON_TEXT_STRINGS):
                pieces.append(str(child))
            continue
        if child.name in _NON_VISIBLE_TAGS:
            continue
        block = child.name in _BLOCK_TAGS
        if block:
            pieces.append(" ")
        _collect_text(child, pieces)
        if block:
            pieces.append(" ")


def extract_text(soup: BeautifulSoup) -> str:
    """
    Visible text, concatenated as rendered: inline markup (<b>, <span>) never
    splits a word, block elements are separated by a space. Whitespace collapsed.
    """
    pieces: list[str] = []
    _collect_text(soup.body or soup, pieces)
    return " ".join("".join(pieces).split())


def _iter_references(soup: BeautifulSoup):
    """Yield (tag, attribute, media type) for every candidate, category order."""
    for selector, attr, fixed_type in _REFERENCE_CATEGORIES:
        anchor = fixed_type is None
        for tag in soup.select(selector):
            value = tag.get(attr)
            if not is_local_reference(value, anchor=anchor):
                continue
            media_type = fixed_type or classify_extension(value)
            if media_type is None:
                continue
            yield tag, attr, media_type


def extract_media_references(raw_html: str) -> list[str]:
    """
    Distinct local media references in discovery order, without touching disk.
    Links are only counted when their extension is a known media type.
    """
    soup = BeautifulSoup(raw_html, "html.parser")
    refs: list[str] = []
    for tag, attr, media_type in _iter_references(soup):
        if attr == "href" and media_type is MediaType.OTHER:
            continue
        value = tag[attr]
        if value not in refs:
            refs.append(value)
    return refs


class HTMLProcessor:
    """
    Stateless between calls: each process() owns its parse tree. The only
    shared resource is upload_dir, where unique names keep writers apart.
    """

    def __init__(self, upload_dir: str | Path, url_prefix: str = "/uploads"):
        self.upload_dir = Path(upload_dir)
        self.url_prefix = url_prefix

    def process(self, raw_html: str, source_path: str | Path) -> ProcessedHtml:
        if not isinstance(raw_html, str):
            raise TypeError(f"raw_html must be str, not {type(raw_html).__name__}")
        ensure_storage_dir(self.upload_dir)

        soup = BeautifulSoup(raw_html, "html.parser")
        text_content = extract_text(soup)
        base_dir = Path(source_path).resolve().parent

        media: list[MediaRecord] = []
        for tag, attr, media_type in _iter_references(soup):
            record = self._copy_reference(tag[attr], media_type, base_dir)
            if record is None:
                continue
            tag[attr] = public_path(record.path, self.url_prefix)
            media.append(record)

        logger.info(
            "HTML processed",
            extra={"source": str(source_path), "media_count": len(media), "text_chars": len(text_content)},
        )
        return ProcessedHtml(rewritten_html=str(soup), text_content=text_content, media=media)

    def _copy_reference(self, reference: str, media_type: MediaType, base_dir: Path) -> MediaRecord | None:
        try:
            source = resolve_reference(reference, base_dir)
            if not source.is_file():
                logger.warning("Media file not found", extra={"reference": reference, "resolved": str(source)})
                return None
            target = copy_into_storage(source, self.upload_dir)
            size = target.stat().st_size
        except (OSError, ValueError):
            logger.warning(
                "Error copying media reference",
                extra={"reference": reference},
                exc_info=True,
            )
            return None
        return MediaRecord(type=media_type, path=str(target), original_name=source.name, size=size)
