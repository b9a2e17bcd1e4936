#!/usr/bin/env python3
"""
Response decoder for LLM resume rewrites

The model is asked either for a JSON object {"latex": "...", "summary": "..."}
or, in the fix/condense/expand sub-flows, for the raw LaTeX document. Replies
arrive wrapped in code fences, as valid JSON, as JSON cut off mid-string when
the model hits its token limit, or as plain LaTeX. parse_ai_response handles
all of these and never raises; the worst case is the trimmed raw text.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Optional, Tuple

import config

DEFAULT_SUMMARY = '• Resume modified successfully'

# Accepted names for the document field of the JSON envelope
DOCUMENT_FIELDS = ('latex', 'document')

FENCE_OPEN_RE = re.compile(r'^```[A-Za-z]*[ \t]*\n?')
DOCUMENT_KEY_RE = re.compile(r'(["\'])(?:latex|document)\1\s*:\s*(["\'])')
SUMMARY_RE = re.compile(r'"summary"\s*:\s*"((?:[^"\\]|\\.)*)"', re.DOTALL)

SIMPLE_ESCAPES = {
    'n': '\n',
    't': '\t',
    'r': '\r',
    '"': '"',
    "'": "'",
    '/': '/',
    '\\': '\\',
}


@dataclass
class DecodedResponse:
    latex: str
    summary: str


def strip_code_fences(text: str) -> str:
    """Remove a leading ```/```json/```latex fence and a trailing ``` fence."""
    cleaned = text.strip()
    if cleaned.startswith('```'):
        cleaned = FENCE_OPEN_RE.sub('', cleaned, count=1)
    if cleaned.endswith('```'):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def unescape_json_string(value: str) -> str:
    """
    Manual JSON string unescape for text json.loads refuses.

    A backslash consumes the next character. Unknown escapes and a trailing
    lone backslash are kept as-is.
    """
    out = []
    i = 0
    while i < len(value):
        ch = value[i]
        if ch == '\\' and i + 1 < len(value):
            nxt = value[i + 1]
            if nxt in SIMPLE_ESCAPES:
                out.append(SIMPLE_ESCAPES[nxt])
                i += 2
                continue
            out.append(ch)
            i += 1
            continue
        out.append(ch)
        i += 1
    return ''.join(out)


def _unescape(value: str) -> str:
    try:
        decoded = json.loads(f'"{value}"', strict=False)
        if isinstance(decoded, str):
            return decoded
    except ValueError:
        pass
    return unescape_json_string(value)


def scan_string_value(text: str, start: int, quote: str) -> Tuple[str, bool]:
    """
    Scan a JSON string value starting right after its opening quote.

    The value ends at a quote that is followed (after optional whitespace) by
    a comma, a closing brace, or the end of the text. Escaped characters are
    skipped pairwise so \\" and \\\\ are handled correctly.

    Returns:
        (raw escaped value, terminated) - terminated is False when the text
        ran out first, which happens with truncated replies
    """
    i = start
    length = len(text)
    while i < length:
        ch = text[i]
        if ch == '\\':
            i += 2
            continue
        if ch == quote:
            rest = text[i + 1:].lstrip()
            if not rest or rest[0] in ',}':
                return text[start:i], True
        i += 1
    return text[start:], False


def extract_latex_from_json(text: str) -> Optional[str]:
    """Pull the document field out of malformed or truncated JSON."""
    match = DOCUMENT_KEY_RE.search(text)
    if not match:
        return None

    raw_value, _ = scan_string_value(text, match.end(), match.group(2))
    latex = _unescape(raw_value)
    if latex and config.DOCUMENT_START_MARKER in latex:
        return latex
    return None


def extract_summary(text: str) -> Optional[str]:
    match = SUMMARY_RE.search(text)
    if not match:
        return None
    return _unescape(match.group(1))


def _coerce_summary(value: Any) -> str:
    if isinstance(value, str) and value.strip():
        return value
    if isinstance(value, list) and value:
        return '\n'.join(str(v) for v in value)
    return DEFAULT_SUMMARY


def parse_ai_response(response: str) -> DecodedResponse:
    """
    Decode an LLM reply into (latex, summary).

    Order of attempts:
    1. strict JSON with a string "latex" (or "document") field
    2. tolerant scan of a truncated/malformed JSON envelope
    3. the whole fence-stripped reply as raw LaTeX
    """
    cleaned = strip_code_fences(response or '')

    try:
        parsed = json.loads(cleaned, strict=False)
    except ValueError:
        parsed = None

    if isinstance(parsed, dict):
        for field in DOCUMENT_FIELDS:
            value = parsed.get(field)
            if isinstance(value, str) and value:
                return DecodedResponse(latex=value, summary=_coerce_summary(parsed.get('summary')))

    extracted = extract_latex_from_json(cleaned)
    if extracted:
        return DecodedResponse(latex=extracted, summary=extract_summary(cleaned) or DEFAULT_SUMMARY)

    return DecodedResponse(latex=cleaned, summary=DEFAULT_SUMMARY)
