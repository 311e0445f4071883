"""Deterministic storage keys for cached artifacts.

Key layout::

    book:<book_token>:<kind>                          book-scoped artifact
    book:<book_token>:chapter:<kind>:<entity_id>      chapter/group-scoped artifact

The book token only ever contains ASCII letters, digits, CJK ideographs and
underscores, so it can never contain the ``:`` separator. Kinds come from a
fixed vocabulary without ``:``. The entity id is always the last segment and
is taken verbatim, which keeps encode/decode lossless for any entity id.
"""

import re

from pydantic import BaseModel, ConfigDict

from bookdigest.core.schemas_artifacts import ArtifactKind

KEY_PREFIX = "book"
SEPARATOR = ":"
ENTITY_SEGMENT = "chapter"
EMPTY_TOKEN_FALLBACK = "untitled"

_EXTENSION_RE = re.compile(r"\.[^/.]+$")
_UNSAFE_CHARS_RE = re.compile(r"[^a-zA-Z0-9\u4e00-\u9fa5]")
_TOKEN_RE = re.compile(r"[a-zA-Z0-9\u4e00-\u9fa5_]+")

_KINDS_BY_VALUE = {kind.value: kind for kind in ArtifactKind}


class ArtifactKey(BaseModel):
    """(book token, kind, entity id) tuple behind every storage key."""

    model_config = ConfigDict(frozen=True)

    book_token: str
    kind: ArtifactKind
    entity_id: str | None = None

    @classmethod
    def for_book(
        cls, book: str, kind: ArtifactKind, entity_id: str | None = None
    ) -> "ArtifactKey":
        """Build a key from a book filename (or an already sanitized token)."""
        return cls(book_token=sanitize_book_token(book), kind=kind, entity_id=entity_id)

    def encode(self) -> str:
        return encode_key(self.book_token, self.kind, self.entity_id)


def sanitize_book_token(filename: str) -> str:
    """
    Turn a book filename into a key-safe token.

    Strips the extension and replaces everything that is not an ASCII
    letter, digit or CJK ideograph with ``_``. Sanitizing a token again
    returns it unchanged.

    Args:
        filename: Source filename, e.g. "My Book.epub"

    Returns:
        Book token, e.g. "My_Book"
    """
    stem = _EXTENSION_RE.sub("", filename)
    token = _UNSAFE_CHARS_RE.sub("_", stem)
    return token or EMPTY_TOKEN_FALLBACK


def is_book_token(value: str) -> bool:
    return bool(_TOKEN_RE.fullmatch(value))


def encode_key(book_token: str, kind: ArtifactKind, entity_id: str | None = None) -> str:
    """
    Encode an artifact key.

    Args:
        book_token: Sanitized book token (see sanitize_book_token)
        kind: Artifact kind
        entity_id: Chapter or group id; required for chapter-scoped kinds and
            forbidden for book-scoped ones

    Returns:
        Storage key string

    Raises:
        ValueError: If the token is not sanitized or the entity id does not
            match the kind's scope
    """
    kind = ArtifactKind(kind)
    if not is_book_token(book_token):
        raise ValueError(f"Not a sanitized book token: {book_token!r}")

    if kind.is_entity_scoped:
        if not entity_id:
            raise ValueError(f"Artifact kind {kind.value} requires an entity id")
        return SEPARATOR.join((KEY_PREFIX, book_token, ENTITY_SEGMENT, kind.value, entity_id))

    if entity_id is not None:
        raise ValueError(f"Artifact kind {kind.value} is book-scoped and takes no entity id")
    return SEPARATOR.join((KEY_PREFIX, book_token, kind.value))


def decode_key(key: str) -> ArtifactKey | None:
    """
    Decode a storage key produced by encode_key.

    Args:
        key: Any string found in the store

    Returns:
        The decoded ArtifactKey, or None for keys outside this scheme
    """
    prefix = KEY_PREFIX + SEPARATOR
    if not key.startswith(prefix):
        return None

    book_token, sep, rest = key[len(prefix):].partition(SEPARATOR)
    if not sep or not is_book_token(book_token):
        return None

    entity_prefix = ENTITY_SEGMENT + SEPARATOR
    if rest.startswith(entity_prefix):
        kind_value, sep, entity_id = rest[len(entity_prefix):].partition(SEPARATOR)
        kind = _KINDS_BY_VALUE.get(kind_value)
        if not sep or kind is None or not kind.is_entity_scoped or not entity_id:
            return None
        return ArtifactKey(book_token=book_token, kind=kind, entity_id=entity_id)

    kind = _KINDS_BY_VALUE.get(rest)
    if kind is None or kind.is_entity_scoped:
        return None
    return ArtifactKey(book_token=book_token, kind=kind)
