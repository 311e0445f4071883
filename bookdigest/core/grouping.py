"""Deterministic grouping of chapters into processing units.

Chapters sharing a user-assigned tag are summarized together as one group;
untagged chapters each form their own group. Group ids feed the artifact
keys, so they must be identical for identical tagging across processes.
"""

from collections.abc import Iterable, Mapping

from bookdigest.core.schemas_artifacts import Chapter, ChapterGroup

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _to_int32(value: int) -> int:
    value &= 0xFFFFFFFF
    return value - 0x100000000 if value & 0x80000000 else value


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36_DIGITS[remainder])
    return "".join(reversed(digits))


def hash_string(value: str) -> str:
    """
    Lightweight 32-bit string hash rendered in base 36.

    Iterates UTF-16 code units with ``h = h * 31 + unit`` wrapped to a signed
    32-bit integer, then renders ``abs(h)``. The result depends only on the
    input string, never on process state (unlike the builtin ``hash``).

    Args:
        value: String to hash

    Returns:
        Base-36 digest, e.g. hash_string("c1_c2")
    """
    encoded = value.encode("utf-16-le")
    h = 0
    for i in range(0, len(encoded), 2):
        unit = int.from_bytes(encoded[i:i + 2], "little")
        h = _to_int32(_to_int32(h << 5) - h + unit)
    return _to_base36(abs(h))


def _tag_of(chapter: Chapter, tags: Mapping[str, str] | None) -> str | None:
    tag = tags.get(chapter.id) if tags is not None else chapter.tag
    return tag or None


def group_chapters(
    chapters: Iterable[Chapter],
    tags: Mapping[str, str] | None = None,
) -> list[ChapterGroup]:
    """
    Partition chapters into processing groups.

    Groups are ordered by the first occurrence of each tag (or untagged
    chapter) in ``chapters``. The first time a tag is seen, every chapter
    carrying it is pulled into that group regardless of position; later
    chapters with the same tag are skipped.

    Tagged group ids hash the sorted member ids joined with ``_``. Untagged
    groups use the chapter title as id, so two untagged chapters with the
    same title share cache entries.

    Args:
        chapters: Chapters in reading order
        tags: chapter id -> tag. When None, each chapter's own ``tag`` is used.

    Returns:
        Ordered list of ChapterGroup
    """
    chapters = list(chapters)
    groups: list[ChapterGroup] = []
    seen_tags: set[str] = set()

    for chapter in chapters:
        tag = _tag_of(chapter, tags)

        if tag is None:
            # An untitled chapter falls back to its id so the key stays encodable
            group_id = chapter.title or chapter.id
            groups.append(ChapterGroup(group_id=group_id, tag=None, chapters=[chapter]))
            continue

        if tag in seen_tags:
            continue
        seen_tags.add(tag)

        members = [ch for ch in chapters if _tag_of(ch, tags) == tag]
        group_id = hash_string("_".join(sorted(ch.id for ch in members)))
        groups.append(ChapterGroup(group_id=group_id, tag=tag, chapters=members))

    return groups
