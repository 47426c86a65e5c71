"""Prompt templates for chapter writing and its context artefacts."""

from __future__ import annotations


CHAPTER_SYSTEM_PROMPT = """
You are the lead author of a long-running serialized web novel. Each request asks for exactly one chapter.
Stay consistent with the story bible, the rolling synopsis and the recent chapter summaries. Never repeat a
previous chapter, never skip ahead past the current arc outline, and always emit valid JSON that matches the
provided schema.
""".strip()


CHAPTER_PROMPT = """
Write chapter {number} of the novel "{title}".

Story parameters:
- Genre: {genre}
- Style: {style}
- Protagonist: {protagonist}
- Premise: {premise}
- Target length: about {target_word_count} words

World bible:
{bible}

Story so far (rolling synopsis):
{synopsis}

Recent chapters:
{recent_summaries}

Current arc outline:
{arc_outline}

{finale_note}

Requirements:
1. Continue directly from the most recent chapter; resolve or escalate its cliffhanger.
2. Give the chapter a short, evocative title without the word "Chapter" or its number.
3. Return JSON with "title" and "content" fields only.
""".strip()


CHAPTER_FALLBACK_PROMPT = """
Write chapter {number} of the {genre} novel "{title}".
Premise: {premise}
Previously: {last_summary}
Return JSON with a short "title" and the full chapter text in "content" (about {target_word_count} words).
""".strip()


FINALE_NOTE = (
    "This is the final arc of the story. Resolve every open conflict and bring the main threads to a close; "
    "do not introduce new mysteries."
)


SUMMARY_SYSTEM_PROMPT = "You condense novel chapters into structured continuity notes. Respond with JSON only."


SUMMARY_PROMPT = """
Summarise chapter {number} titled "{chapter_title}".

Chapter text:
{content}

Return JSON with:
- "title": the chapter title,
- "summary": 3-5 sentences covering what happened and what changed,
- "characters": names of the characters who appear,
- "cliffhanger": the unresolved hook the chapter ends on, or null,
- "open_threads": plot threads still unresolved after this chapter.
""".strip()


SYNOPSIS_PROMPT = """
Update the rolling synopsis of "{title}" through chapter {number}.

Previous synopsis (through chapter {previous_chapter}):
{previous}

Chapter summaries since then:
{summaries}

Return JSON with a single "text" field holding the updated synopsis (at most 600 words).
""".strip()


ARC_OUTLINE_PROMPT = """
Plan arc {arc_number} of "{title}" covering chapters {first_chapter}-{last_chapter}.
The story has reached chapter {current} of a planned {target}.

Rolling synopsis:
{synopsis}

Open threads:
{open_threads}

{finale_note}

Return JSON with a single "text" field: a chapter-by-chapter beat outline for the arc.
""".strip()


BIBLE_PROMPT = """
Write the world bible for "{title}" ({genre}) based on the chapters so far.

Premise: {premise}
Previous bible (may be empty):
{previous}

Chapter summaries:
{summaries}

Return JSON with a single "text" field describing the setting, power system or rules, factions, main characters
with their goals and relationships, and recurring motifs.
""".strip()
