#!/usr/bin/env python3
"""
Prompts for the one-page resume pipeline

Two reply modes are used:
- JSON mode (initial / follow-up): {"latex": "...", "summary": "..."}
- Raw-document mode (fix / condense / expand): the full LaTeX document only
"""

from typing import Dict, List, Optional

import config

# -------------------
# SYSTEM PROMPTS
# -------------------

FACT_RULES = """
ABSOLUTE RULES - NEVER VIOLATE THESE:
1. NEVER change the person's name or contact information
2. NEVER change company names, job titles, employment dates, schools, degrees or graduation dates
3. NEVER invent, fabricate, or add information that is not in the resume
4. You are MODIFYING the given resume, NOT creating a new one
""".strip()

LATEX_SAFETY_RULES = """
LATEX SAFETY RULES:
- Do NOT add new LaTeX commands or packages
- Do NOT remove \\usepackage declarations, \\documentclass, \\newcommand or \\renewcommand definitions
- Keep all \\begin{} and \\end{} pairs intact
- Preserve special characters and escaping (\\&, \\%, etc.)
- Only modify the TEXT CONTENT inside existing commands
""".strip()

INITIAL_SYSTEM_PROMPT = f"""
You are an expert resume writer and LaTeX specialist. Modify an existing LaTeX resume so it better matches a job description.

{FACT_RULES}

WHAT YOU CAN MODIFY:
- Rephrase and reorder bullet points to match the job's keywords
- Condense or remove less relevant bullet points and older experience
- Adjust the summary/objective to target the job

ONE-PAGE CONSTRAINT:
The resume MUST fit on exactly ONE PAGE. A slightly short resume is much better than one that overflows to page 2. When in doubt, cut.

{LATEX_SAFETY_RULES}

OUTPUT FORMAT:
Return ONLY a JSON object, no markdown:
{{
  "latex": "<the complete modified LaTeX code, from \\\\documentclass to \\\\end{{document}}>",
  "summary": "<2-4 bullet points (• character) describing the changes>"
}}
""".strip()

FOLLOWUP_SYSTEM_PROMPT = f"""
You are an expert resume writer and LaTeX specialist. The resume has already been tailored and the user is asking for additional changes.

{FACT_RULES}

CONSTRAINTS:
- Apply ONLY the changes the user requests
- The resume MUST still fit on exactly ONE PAGE

{LATEX_SAFETY_RULES}

OUTPUT FORMAT:
Return ONLY a JSON object, no markdown:
{{
  "latex": "<the complete modified LaTeX code, from \\\\documentclass to \\\\end{{document}}>",
  "summary": "<1-3 bullet points (• character) describing what you changed>"
}}
""".strip()

FIX_SYSTEM_PROMPT = f"""
You are an expert LaTeX specialist. Your task is to fix, condense or expand LaTeX resume code.

{FACT_RULES}
5. NEVER strip the resume down to a template - every section, job entry and bullet point must survive unless you are explicitly asked to condense

OUTPUT REQUIREMENTS:
- Return the COMPLETE document from \\documentclass to \\end{{document}}
- Return ONLY raw LaTeX: no JSON, no explanations, no markdown code blocks
- Never return just the preamble or just a fragment

{LATEX_SAFETY_RULES}
""".strip()

# -------------------
# USER PROMPT BUILDERS
# -------------------


def build_initial_user_prompt(resume: str, job_offer: str, custom_instructions: str = '') -> str:
    custom_section = ''
    if custom_instructions and custom_instructions.strip():
        custom_section = f"Additional instructions from the user:\n{custom_instructions}\n\n"

    return f"""Here is the candidate's ACTUAL LaTeX resume that you must modify:

{resume}

Here is the job offer they are applying to:

{job_offer}

{custom_section}IMPORTANT:
- Preserve the real name, employers, schools and dates - never use placeholders
- The output must fit on exactly ONE page

Return a JSON object with "latex" and "summary" fields."""


def build_follow_up_prompt(current_latex: str, original_latex: str, job_description: str,
                           chat_history: List[Dict[str, str]], instruction: str,
                           custom_instructions: str = '') -> str:
    history_section = ''
    recent = (chat_history or [])[-config.CHAT_HISTORY_LIMIT:]
    if recent:
        lines = []
        for msg in recent:
            prefix = 'User' if msg.get('role') == 'user' else 'AI'
            lines.append(f"{prefix}: {msg.get('content', '')}")
        history_section = "\nRECENT CONVERSATION:\n" + '\n'.join(lines) + '\n\n'

    custom_section = ''
    if custom_instructions and custom_instructions.strip():
        custom_section = f"\nINITIAL CUSTOM INSTRUCTIONS:\n{custom_instructions}\n\n"

    original_section = ''
    if original_latex and original_latex != current_latex:
        original_section = f"""
ORIGINAL RESUME (before any AI modifications):
{original_latex}

If the user asks to restore something, take it from this original version.

"""

    return f"""You are modifying this resume for the following job:
{job_description}
{custom_section}{history_section}{original_section}CURRENT RESUME LATEX:
{current_latex}

USER'S NEW REQUEST:
{instruction}

Only change what the user asks for. The resume must still fit on ONE page."""


def relevant_log_lines(logs: str, limit: int = 10) -> str:
    """Compiler log lines that mention an error or an undefined control sequence."""
    lines = [
        line for line in (logs or '').split('\n')
        if 'error:' in line or 'Error' in line or 'Undefined' in line
    ]
    return '\n'.join(lines[:limit])


def build_compile_error_fix_prompt(latex: str, error: str, logs: str,
                                   original_resume: Optional[str] = None) -> str:
    original_section = ''
    if original_resume:
        original_section = f"""
ORIGINAL RESUME FOR REFERENCE:
Every job entry, education item, skill and bullet point below MUST appear in your fixed output.

{original_resume}

=== END OF ORIGINAL RESUME ===
"""

    low = int(len(latex) * 0.9)
    high = int(len(latex) * 1.1)

    return f"""The LaTeX code failed to compile with the following error:

ERROR: {error}

Relevant log output:
{relevant_log_lines(logs)}

Common causes: undefined commands, a removed package, a broken \\begin{{}}/\\end{{}} pair, unmatched braces.
{original_section}
Fix ONLY the syntax errors. Stripping content is NOT a valid fix.
The broken document is {len(latex)} characters; your fix should be around {low}-{high} characters.

Broken LaTeX:
{latex}

Return ONLY the complete fixed LaTeX code from \\documentclass to \\end{{document}}."""


def cut_target(overflow_percentage: int) -> int:
    return min(overflow_percentage + config.CUT_TARGET_BUFFER, config.CUT_TARGET_CAP)


def build_retry_prompt(page_count: int, current_latex: str, overflow=None) -> str:
    """
    Condensation request after the resume overflowed.

    Args:
        page_count: Measured page count (>= 2)
        current_latex: The overflowing document
        overflow: Optional OverflowAnalysis for precise guidance
    """
    overflow_section = ''
    if overflow is not None:
        target = cut_target(overflow.overflow_percentage)
        overflow_section = f"""
PRECISE CUT TARGET:
- The overflow is ~{overflow.overflow_percentage}% of the content ({overflow.overflow_lines} lines / {overflow.overflow_words} words on page 2+)
- Cut about {target}% of the content, and never more than {target + 5}%
- Over-cutting leaves wasted blank space
"""

    return f"""The resume overflowed to {page_count} pages. It MUST fit on exactly ONE page.

The attached images are the rendered pages: the first is page 1, the rest are the overflow that must disappear.
{overflow_section}
Where to cut, in priority order:
1. Orphan lines - bullets whose last line holds only 1-3 words
2. Near-full lines - condense by 2-3 words so the bullet loses a line
3. Low-value bullets - remove whole bullets only as a last resort

Keep all factual information (names, employers, titles, dates). Fix any LaTeX errors while condensing.

Current LaTeX that needs to be shortened:
{current_latex}

Return ONLY the complete modified LaTeX document."""


def build_expand_prompt(current_latex: str, page_fill, job_description: str) -> str:
    """Expansion request when page 1 has too much blank space at the bottom."""
    blank = page_fill.blank_percentage
    return f"""The resume fits on one page, but about {blank}% of the page is blank at the bottom.

The attached image is the rendered page.

UNDERFLOW ANALYSIS:
- Roughly {round(blank / 3)}-{round(blank / 2)} bullet points worth of content can be added
- Adding more than {round(blank / 8)} new lines in total will probably overflow
- The page must NOT overflow to page 2; leaving some space is better than overflowing

JOB DESCRIPTION (for what to emphasize):
{job_description}

Prefer filling bullets whose last line is half empty. Only elaborate on existing content - never invent experience, jobs or sections.

Current LaTeX to expand:
{current_latex}

Return ONLY the complete expanded LaTeX document."""
