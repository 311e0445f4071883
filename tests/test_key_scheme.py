"""Tests for artifact key encoding, decoding and book token sanitizing."""

import pytest

from bookdigest.core.key_scheme import (
    ArtifactKey,
    decode_key,
    encode_key,
    sanitize_book_token,
)
from bookdigest.core.schemas_artifacts import ENTITY_SCOPED_KINDS, ArtifactKind

BOOK_KINDS = [kind for kind in ArtifactKind if kind not in ENTITY_SCOPED_KINDS]
ENTITY_IDS = ["c1", "Intro", "1jcxy8", "Chapter 1: The Beginning", "a:b:c", "第一章"]


class TestSanitizeBookToken:
    def test_strips_extension_and_replaces_unsafe_chars(self):
        assert sanitize_book_token("My Book.epub") == "My_Book"

    def test_only_last_extension_is_stripped(self):
        assert sanitize_book_token("archive.v2.pdf") == "archive_v2"

    def test_cjk_characters_are_kept(self):
        assert sanitize_book_token("三体 第一部.epub") == "三体_第一部"

    def test_sanitizing_a_token_is_stable(self):
        token = sanitize_book_token("War & Peace (1869).epub")
        assert sanitize_book_token(token) == token

    def test_empty_stem_falls_back(self):
        assert sanitize_book_token(".epub") == "untitled"
        assert sanitize_book_token("") == "untitled"

    def test_token_never_contains_separator(self):
        assert ":" not in sanitize_book_token("Part:One.epub")


class TestKeyRoundTrip:
    @pytest.mark.parametrize("kind", BOOK_KINDS)
    def test_book_scoped_round_trip(self, kind):
        key = encode_key("My_Book", kind)
        assert decode_key(key) == ArtifactKey(book_token="My_Book", kind=kind)

    @pytest.mark.parametrize("kind", sorted(ENTITY_SCOPED_KINDS, key=lambda k: k.value))
    @pytest.mark.parametrize("entity_id", ENTITY_IDS)
    def test_entity_scoped_round_trip(self, kind, entity_id):
        key = encode_key("My_Book", kind, entity_id)
        decoded = decode_key(key)
        assert decoded == ArtifactKey(book_token="My_Book", kind=kind, entity_id=entity_id)

    def test_for_book_sanitizes_filename(self):
        key = ArtifactKey.for_book("My Book.epub", ArtifactKind.SUMMARY, "c1")
        assert key.encode() == "book:My_Book:chapter:summary:c1"

    def test_book_and_chapter_keys_never_collide(self):
        # A book literally named "chapter" must not look like a chapter-scoped key
        book_key = encode_key("chapter", ArtifactKind.CONNECTIONS)
        decoded = decode_key(book_key)
        assert decoded.entity_id is None
        assert decoded.kind == ArtifactKind.CONNECTIONS


class TestEncodeValidation:
    def test_entity_scoped_kind_requires_entity_id(self):
        with pytest.raises(ValueError):
            encode_key("My_Book", ArtifactKind.SUMMARY)

    def test_book_scoped_kind_rejects_entity_id(self):
        with pytest.raises(ValueError):
            encode_key("My_Book", ArtifactKind.CONNECTIONS, "c1")

    def test_unsanitized_token_is_rejected(self):
        with pytest.raises(ValueError):
            encode_key("My Book", ArtifactKind.CONNECTIONS)


class TestDecodeForeignKeys:
    @pytest.mark.parametrize(
        "key",
        [
            "",
            "settings",
            "book:",
            "book:My_Book",
            "book:My_Book:unknown_kind",
            "book:My_Book:summary",
            "book:My_Book:chapter:connections:c1",
            "book:My_Book:chapter:summary",
            "book:My_Book:chapter:summary:",
            "book:My Book:connections",
            "other:My_Book:connections",
        ],
    )
    def test_foreign_keys_decode_to_none(self, key):
        assert decode_key(key) is None
