"""Prompt builders for each generation stage."""

from bookdigest.core.schemas_artifacts import BookCategory

LANGUAGE_NAMES = {
    "en": "English",
    "zh": "Chinese",
    "ja": "Japanese",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "ru": "Russian",
}

MINDMAP_FORMAT = """Return a single JSON object in this format and nothing else:
{
  "nodeData": {
    "id": "root",
    "topic": "<central topic>",
    "children": [
      {"id": "1", "topic": "<branch>", "children": [{"id": "1-1", "topic": "<detail>"}]}
    ]
  },
  "arrows": [],
  "summaries": []
}
Keep topics short (2-8 words). Use 3-8 branches with up to 3 levels of depth.
"""


def language_instruction(language: str) -> str:
    name = LANGUAGE_NAMES.get(language, language)
    return f"Write the entire response in {name}."


def _with_custom(prompt: str, custom_prompt: str | None) -> str:
    if custom_prompt and custom_prompt.strip():
        return f"{prompt}\n\nAdditional requirements: {custom_prompt.strip()}"
    return prompt


def chapter_summary_prompt(
    title: str,
    content: str,
    category: BookCategory,
    custom_prompt: str = "",
    use_custom_only: bool = False,
) -> str:
    """Summary prompt for one chapter group; a custom-only prompt replaces the defaults."""
    chapter_block = f"Chapter title: {title}\n\nChapter content:\n{content}"

    if use_custom_only and custom_prompt.strip():
        return f"{chapter_block}\n\n{custom_prompt.strip()}"

    if category == BookCategory.FICTION:
        instructions = f"""Summarize this chapter in fluent prose using this markdown layout:

## Chapter summary: {title}

### Characters and relationships
[Every character that matters in this chapter and how they relate]

### What happens
[Main plot events in order, key conflicts and turning points, important dialogue
and emotional shifts, and any symbolic or thematic elements]"""
    else:
        instructions = f"""Summarize this chapter in fluent prose using this markdown layout:

## Chapter summary: {title}

### Main ideas
[The chapter's main arguments with the cases or findings that support them]

### Key concepts
[Key concepts, each with a short explanation]

### Notable quotes
[A few insightful sentences quoted from the text]

### Practical application
[Advice for applying the ideas, tied closely to this chapter]"""

    return _with_custom(f"{chapter_block}\n\n{instructions}", custom_prompt)


def connections_prompt(chapter_summaries: str, category: BookCategory) -> str:
    focus = (
        "how plot lines, characters and themes develop from chapter to chapter"
        if category == BookCategory.FICTION
        else "how the ideas build on, support or contrast with each other"
    )
    return f"""Analyze the connections between the following chapters, focusing on {focus}.
Use markdown headings and keep each point concrete.

{chapter_summaries}"""


def overall_summary_prompt(book_title: str, chapter_info: str, category: BookCategory) -> str:
    angle = (
        "the story arc, the main characters' development and the central themes"
        if category == BookCategory.FICTION
        else "the core thesis, the key ideas and what a reader should take away"
    )
    return f"""Write an overall summary of the book "{book_title}" covering {angle}.
Base it on these chapter summaries:

{chapter_info}"""


def character_relationship_prompt(chapter_summaries: str, category: BookCategory) -> str:
    extra = (
        "Use solid arrows (-->) for primary relationships and dotted arrows (-.->) "
        "for relationships that change over the story."
        if category == BookCategory.FICTION
        else "Identify between 3 and 10 core people."
    )
    return f"""Draw a character relationship graph in mermaid syntax (graph TD or graph LR)
from the chapters below. Label every edge with the relationship. {extra}
Output only the mermaid code.

{chapter_summaries}"""


def chapter_mindmap_prompt(content: str, custom_prompt: str = "") -> str:
    prompt = f"Build a mind map of this chapter.\n\n{MINDMAP_FORMAT}\nChapter content:\n{content}"
    return _with_custom(prompt, custom_prompt)


def combined_mindmap_prompt(book_title: str, chapters_content: str, custom_prompt: str = "") -> str:
    prompt = (
        f"Build one complete mind map for the whole book \"{book_title}\", "
        f"integrating every chapter below.\n\n{MINDMAP_FORMAT}\n"
        f"Chapter content:\n{chapters_content}"
    )
    return _with_custom(prompt, custom_prompt)


def mindmap_arrows_prompt(mind_map_json: str) -> str:
    return f"""Find meaningful cross-links between nodes on different branches of this mind map.
Return a JSON object {{"arrows": [{{"id": "<unique>", "label": "<relation>",
"from": "<node id>", "to": "<node id>"}}]}} using only node ids that exist.

Mind map:
{mind_map_json}"""


def connection_test_prompt() -> str:
    return 'Reply with exactly "connection ok".'
