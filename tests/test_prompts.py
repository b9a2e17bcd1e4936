"""
Tests for prompt builders: each one must carry the data the model needs.
"""

from pdf_utils import OverflowAnalysis, PageFillAnalysis
from prompts import (
    build_compile_error_fix_prompt,
    build_expand_prompt,
    build_initial_user_prompt,
    build_retry_prompt,
    cut_target,
    relevant_log_lines,
)


class TestPrompts:
    def test_cut_target_is_buffered_and_capped(self):
        assert cut_target(8) == 13
        assert cut_target(25) == 30
        assert cut_target(60) == 30

    def test_relevant_log_lines_filters_and_limits(self):
        logs = "\n".join(["noise"] + [f"error: line {i}" for i in range(15)] + ["! Undefined control sequence"])
        lines = relevant_log_lines(logs).split('\n')
        assert len(lines) == 10
        assert all('error:' in line for line in lines)

    def test_fix_prompt_has_error_reference_and_length_band(self):
        prompt = build_compile_error_fix_prompt('x' * 1000, 'tectonic exited with code 1',
                                                'error: Missing } inserted', original_resume='ORIGINAL')
        assert 'tectonic exited with code 1' in prompt
        assert 'error: Missing } inserted' in prompt
        assert 'ORIGINAL' in prompt
        assert '900-1100' in prompt

    def test_retry_prompt_with_overflow(self):
        overflow = OverflowAnalysis(overflow_lines=4, overflow_words=37, total_lines=80,
                                    total_words=600, overflow_percentage=6)
        prompt = build_retry_prompt(2, 'DOC', overflow)
        assert 'overflowed to 2 pages' in prompt
        assert '37 words' in prompt
        assert 'Cut about 11%' in prompt

    def test_retry_prompt_without_overflow(self):
        assert 'PRECISE CUT TARGET' not in build_retry_prompt(3, 'DOC')

    def test_expand_prompt_estimates(self):
        fill = PageFillAnalysis(page_height=792, content_bottom=594, blank_space=198, blank_percentage=24)
        prompt = build_expand_prompt('DOC', fill, 'Backend role')
        assert '24%' in prompt
        assert '8-12 bullet points' in prompt
        assert 'more than 3 new lines' in prompt
        assert 'Backend role' in prompt

    def test_initial_prompt_custom_instructions(self):
        assert 'Keep my GitHub link' in build_initial_user_prompt('R', 'J', 'Keep my GitHub link')
        assert 'Additional instructions' not in build_initial_user_prompt('R', 'J', '   ')
