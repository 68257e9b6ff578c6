"""
Complexity classification.

Maps a user message to a task category with an ordered list of regex
signatures, falling back to word count when nothing matches.
"""

import re
from enum import Enum
from typing import List, Pattern, Tuple


class Category(str, Enum):
    """Task category of a message."""
    WEBSITE = "website"
    CODE = "code"
    COMPLEX = "complex"
    ANALYSIS = "analysis"
    TRANSLATE = "translate"
    SIMPLE = "simple"


def _compile(*patterns: str) -> List[Pattern]:
    return [re.compile(p, re.IGNORECASE) for p in patterns]


# Evaluated top to bottom; the first category with a matching signature wins
SIGNATURES: List[Tuple[Category, List[Pattern]]] = [
    (Category.WEBSITE, _compile(
        r"\b(create|build|make|write|implement|design|cr[ée]er?|faire)\b.*\b(site|website|landing.?page|web.?page|homepage|page web)\b",
        r"\b(website|site web|landing.?page)\b",
    )),
    (Category.CODE, _compile(
        r"\b(code|function|script|program|debug|error|bug|fix)\b",
        r"\b(javascript|typescript|python|java|html|css|sql|api|json|react|node)\b",
        r"```[\s\S]*```",
        r"\b(build|make|write|implement|cr[ée]er?)\b.*\b(app|component)\b",
    )),
    (Category.COMPLEX, _compile(
        r"\b(architect\w*|design|strategy|plan|roadmap)\b",
        r"\b(research|investigate|deep.dive)\b",
        r"step.by.step",
        r"\b(complex|difficult|challenging|optimi[sz]e)\b",
        r"\b(refactor|rewrite|migrate)\b",
    )),
    (Category.ANALYSIS, _compile(
        r"\b(analy[sz]e|explain|compare|evaluate|review)\b",
        r"\b(summari[sz]e|summary|digest|r[ée]sum[ée])\b",
        r"\b(data|report|chart|graph|spreadsheet)\b",
    )),
    (Category.TRANSLATE, _compile(
        r"tradui[st]|translate",
        r"\ben (fran[çc]ais|anglais|espagnol|allemand)\b",
        r"\bto (french|english|spanish|german)\b",
    )),
    (Category.SIMPLE, _compile(
        r"^(hi|hello|hey|bonjour|salut|coucou)\b",
        r"^(yes|no|ok|okay|sure|oui|non|d'accord)\b",
        r"^thanks?\b|\bthank you\b|\bmerci\b",
        r"how are you|[çc]a va|comment vas",
    )),
]

# Word-count fallback, checked from the longest breakpoint down
LENGTH_BREAKPOINTS: List[Tuple[int, Category]] = [
    (200, Category.COMPLEX),
    (100, Category.ANALYSIS),
    (50, Category.CODE),
]


def classify_complexity(message: str) -> Category:
    """Classify a message into a task category.

    Pure and deterministic. Empty or whitespace-only messages are simple.

    Args:
        message: Raw user message

    Returns:
        The first category whose signature matches, else a category
        chosen by word count
    """
    text = (message or "").strip()
    if not text:
        return Category.SIMPLE

    for category, patterns in SIGNATURES:
        if any(pattern.search(text) for pattern in patterns):
            return category

    word_count = len(text.split())
    for breakpoint, category in LENGTH_BREAKPOINTS:
        if word_count > breakpoint:
            return category

    return Category.SIMPLE
