"""
Turns raw model output into titled sections for display.

The model tends to answer in markdown: bold lenses, quoted phrases and
numbered lists. None of that renders in the journal, so it is stripped
before the text is regrouped into short paragraphs.
"""

import re
from dataclasses import dataclass
from typing import List

SECTION_TITLES = ("Interpretation", "Symbolism", "Reflection")
FALLBACK_TITLE = "Analysis"
SENTENCES_PER_PARAGRAPH = 2

# "1. ", "12.\n" - list markers wherever they appear. "8.5" has no
# whitespace after the period and is left alone.
_NUMERAL_MARKER = re.compile(r"\d+\.\s+")
# A period ends a sentence unless a digit follows it.
_SENTENCE_BOUNDARY = re.compile(r"\.(?!\d)")


@dataclass
class DisplaySection:
    title: str
    content: str


def clean_text(raw: str) -> str:
    """Strip quotes, emphasis markers and numeral list markers."""
    if not raw:
        return ""
    text = raw.replace('"', "")
    text = text.replace("**", "").replace("*", "")
    previous = None
    while text != previous:
        previous = text
        text = _NUMERAL_MARKER.sub("", text)
    return text.strip()


def split_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


def _group_paragraphs(sentences: List[str]) -> List[str]:
    groups = [
        sentences[i:i + SENTENCES_PER_PARAGRAPH]
        for i in range(0, len(sentences), SENTENCES_PER_PARAGRAPH)
    ]
    paragraphs = []
    for idx, group in enumerate(groups):
        paragraph = ". ".join(group)
        if idx < len(groups) - 1:
            paragraph += "."
        paragraphs.append(paragraph)
    return paragraphs


def _build_sections(cleaned: str) -> List[DisplaySection]:
    paragraphs = _group_paragraphs(split_sentences(cleaned))

    if len(paragraphs) < 2:
        return [DisplaySection(title=FALLBACK_TITLE, content=cleaned)]

    titled = paragraphs[:len(SECTION_TITLES)]
    overflow = paragraphs[len(SECTION_TITLES):]
    if overflow:
        titled[-1] = " ".join([titled[-1]] + overflow)

    return [
        DisplaySection(title=title, content=content)
        for title, content in zip(SECTION_TITLES, titled)
    ]


def normalize(raw: str) -> List[DisplaySection]:
    """
    Clean raw analysis text and split it into display sections.

    Sentences are paired into paragraphs and the first three paragraphs get
    the fixed titles in SECTION_TITLES. Anything past the third paragraph is
    appended to the last titled section rather than discarded. Output with
    fewer than two paragraphs comes back as a single "Analysis" section
    holding the whole cleaned text.

    Rejoining a sentence that ends in a digit ("I was 5" + ". ") forms a new
    list marker, so the text is regrouped until the output cleans to itself.
    Each round removes at least one digit.
    """
    sections = _build_sections(clean_text(raw))
    plain = to_plain_text(sections)
    while clean_text(plain) != plain:
        sections = _build_sections(clean_text(plain))
        plain = to_plain_text(sections)
    return sections


def to_plain_text(sections: List[DisplaySection]) -> str:
    return "\n\n".join(section.content for section in sections)
