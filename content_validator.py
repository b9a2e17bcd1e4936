#!/usr/bin/env python3
"""
Content integrity validator for AI-rewritten LaTeX resumes

When the LLM is asked to fix a compile error it sometimes "fixes" it by
throwing most of the resume away. These deterministic checks compare a
candidate against the document it was derived from and reject rewrites that
look gutted:

1. Length ratio        - candidate must keep at least 60% of the characters
2. Section markers     - candidate must keep at least 50% of \\section{ headings
3. Bullet markers      - candidate must keep at least 40% of \\item entries
                         (only checked when the original has more than 5)
4. Document envelope   - candidate must contain \\begin{document} and \\end{document}

The first failing check wins. The function is pure.
"""

import re
from dataclasses import dataclass
from typing import Optional

import config

SECTION_RE = re.compile(r'\\section\s*\{')
ITEM_RE = re.compile(r'\\item')


@dataclass(frozen=True)
class ValidationVerdict:
    is_valid: bool
    reason: Optional[str] = None


def count_sections(latex: str) -> int:
    return len(SECTION_RE.findall(latex))


def count_items(latex: str) -> int:
    return len(ITEM_RE.findall(latex))


def validate_fixed_latex(original: str, fixed: str) -> ValidationVerdict:
    """
    Decide whether a rewritten resume plausibly preserved the original content.

    Args:
        original: The document as it stood before the rewrite
        fixed: The candidate rewrite returned by the LLM

    Returns:
        ValidationVerdict with a human-readable reason when invalid
    """
    length_ratio = len(fixed) / len(original) if original else 1.0
    if length_ratio < config.CONTENT_LENGTH_RATIO:
        return ValidationVerdict(
            is_valid=False,
            reason=(f"Fixed LaTeX is only {round(length_ratio * 100)}% of original length "
                    f"({len(fixed)} vs {len(original)} chars). This indicates content was stripped."),
        )

    original_sections = count_sections(original)
    fixed_sections = count_sections(fixed)
    if original_sections > 0 and fixed_sections < original_sections * config.SECTION_RETENTION_RATIO:
        return ValidationVerdict(
            is_valid=False,
            reason=(f"Fixed LaTeX has {fixed_sections} sections but original had "
                    f"{original_sections}. Content was stripped."),
        )

    original_items = count_items(original)
    fixed_items = count_items(fixed)
    if original_items > config.MIN_ITEMS_FOR_ITEM_CHECK and fixed_items < original_items * config.ITEM_RETENTION_RATIO:
        return ValidationVerdict(
            is_valid=False,
            reason=(f"Fixed LaTeX has {fixed_items} bullet points but original had "
                    f"{original_items}. Content was stripped."),
        )

    if config.BEGIN_DOCUMENT_MARKER not in fixed or config.END_DOCUMENT_MARKER not in fixed:
        return ValidationVerdict(
            is_valid=False,
            reason='Fixed LaTeX is missing \\begin{document} or \\end{document}.',
        )

    return ValidationVerdict(is_valid=True)
