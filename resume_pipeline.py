#!/usr/bin/env python3
"""
One-page resume pipeline: the compile -> measure -> rewrite convergence loop

The pipeline follows this flow:
Draft (LLM) → Compile → [Fix compile errors (LLM, integrity-checked)] → Count pages
    → 1 page:  optionally expand once if the page is mostly empty → done
    → 2+ pages: small overflow on the first attempt → ask the user
                otherwise condense (LLM, with page screenshots) → compile again

The LLM is treated as an unreliable oracle; the only enforced constraint is the
page count measured on the compiled PDF. Progress is reported through an
`emit(event)` callback so the loop does not care how updates are transported
(SSE, CLI output, tests).

Each run is strictly sequential. Blocking compiler and poppler calls run in a
worker thread so other runs on the same event loop keep going.
"""

import asyncio
import sys
import threading
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Union

import config
from ai_client import AIClientError, AIMessage, create_ai_client
from audit_log import generate_request_id, log_conversation, log_operation
from content_validator import validate_fixed_latex
from pdf_utils import (
    CompileResult,
    PdfToolError,
    analyze_overflow,
    analyze_page_fill,
    compile_latex,
    get_page_count,
    pdf_to_images,
    save_temp_pdf,
)
from performance_monitor import get_performance_monitor
from prompts import (
    FIX_SYSTEM_PROMPT,
    FOLLOWUP_SYSTEM_PROMPT,
    INITIAL_SYSTEM_PROMPT,
    build_compile_error_fix_prompt,
    build_expand_prompt,
    build_follow_up_prompt,
    build_initial_user_prompt,
    build_retry_prompt,
)
from response_decoder import parse_ai_response

TERMINAL_EVENT_TYPES = ('complete', 'overflow_choice', 'error', 'cancelled')

EmitFn = Callable[[Dict[str, Any]], None]


class PipelineCancelled(Exception):
    """The caller abandoned the run; raised at the next checkpoint."""


@dataclass
class ResumeRequest:
    resume: str = ''
    job_offer: str = ''
    custom_instructions: str = ''
    api_key: str = ''
    provider: str = ''
    model: str = ''
    is_follow_up: bool = False
    follow_up_instruction: str = ''
    chat_history: List[Dict[str, str]] = field(default_factory=list)
    original_resume: str = ''
    force_condense: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ResumeRequest':
        """Build from a JSON payload (camelCase or snake_case keys)."""
        def pick(snake: str, camel: str, default=None):
            if snake in data:
                return data[snake]
            return data.get(camel, default)

        return cls(
            resume=pick('resume', 'resume', '') or '',
            job_offer=pick('job_offer', 'jobOffer', '') or '',
            custom_instructions=pick('custom_instructions', 'customInstructions', '') or '',
            api_key=pick('api_key', 'apiKey', '') or '',
            provider=pick('provider', 'provider', '') or '',
            model=pick('model', 'model', '') or '',
            is_follow_up=bool(pick('is_follow_up', 'isFollowUp', False)),
            follow_up_instruction=pick('follow_up_instruction', 'followUpInstruction', '') or '',
            chat_history=list(pick('chat_history', 'chatHistory', []) or []),
            original_resume=pick('original_resume', 'originalResume', '') or '',
            force_condense=bool(pick('force_condense', 'forceCondense', False)),
        )


@dataclass
class LoopState:
    latex: str = ''
    summary: str = ''
    page_count: int = 0
    attempt: int = 0
    pdf_path: str = ''


def validate_request(request: ResumeRequest) -> Optional[str]:
    """Return an error message for an unusable request, or None."""
    if not request.resume:
        return 'Resume is required'
    if not request.is_follow_up and not request.job_offer:
        return 'Job offer is required'
    if request.is_follow_up and not request.follow_up_instruction:
        return 'Follow-up instruction is required'
    if not request.api_key:
        return 'API key is required'
    if not request.provider or not request.model:
        return 'Provider and model are required'

    model_config = config.get_model_by_id(request.model)
    if request.provider == 'lmstudio':
        # LM Studio serves whatever model is loaded locally
        if model_config and model_config['provider'] != 'lmstudio':
            return 'Invalid model for the selected provider'
    elif not model_config or model_config['provider'] != request.provider:
        return 'Invalid model for the selected provider'
    return None


class ResumePipeline:
    """One convergence run. State is local to the instance."""

    def __init__(self, request: ResumeRequest, emit: EmitFn, ai_client=None,
                 cancel_event: Optional[threading.Event] = None,
                 request_id: Optional[str] = None):
        self.request = request
        self.emit = emit
        self.ai_client = ai_client
        self.cancel_event = cancel_event
        self.request_id = request_id or generate_request_id()
        self.reference_resume = request.original_resume or request.resume
        self.state = LoopState()
        self.monitor = get_performance_monitor()

    # -------------------
    # Plumbing
    # -------------------

    def _status(self, message: str):
        self.emit({'type': 'status', 'message': message})

    def _checkpoint(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise PipelineCancelled()

    def _finish(self, event: Dict[str, Any]) -> Dict[str, Any]:
        self.emit(event)
        return event

    def _fail(self, message: str) -> Dict[str, Any]:
        print(f"❌ Pipeline {self.request_id} failed: {message}", file=sys.stderr)
        return self._finish({'type': 'error', 'message': message})

    def _complete(self, summary: Optional[str] = None) -> Dict[str, Any]:
        state = self.state
        print(f"✅ Pipeline {self.request_id} complete: {state.page_count} page(s) "
              f"after {state.attempt} attempt(s)", file=sys.stderr)
        return self._finish({
            'type': 'complete',
            'latex': state.latex,
            'summary': state.summary if summary is None else summary,
            'page_count': state.page_count,
            'attempts': state.attempt,
            'pdf_path': state.pdf_path,
        })

    async def _chat(self, kind: str, messages: List[AIMessage]) -> str:
        self._checkpoint()
        try:
            with self.monitor.track(f'llm_{kind}'):
                return await self.ai_client.chat(messages)
        except AIClientError as e:
            log_operation(self.request_id, f'ai_{kind}_response', 'error', error=str(e))
            raise

    async def _measure(self, operation: str, func: Callable, *args):
        self._checkpoint()
        with self.monitor.track(operation):
            return await asyncio.to_thread(func, *args)

    async def _compile(self, latex: str, details: str) -> CompileResult:
        self._checkpoint()
        self.emit({'type': 'compiling'})
        with self.monitor.track('latex_compile'):
            result = await asyncio.to_thread(compile_latex, latex)
        log_operation(
            self.request_id,
            'latex_compile',
            'success' if result.success else 'error',
            details=details,
            error=None if result.success else result.error,
        )
        return result

    # -------------------
    # States
    # -------------------

    async def run(self) -> Dict[str, Any]:
        request = self.request
        log_operation(
            self.request_id, 'request_received',
            details=f"Type: {'followup' if request.is_follow_up else 'initial'}, "
                    f"Provider: {request.provider}, Model: {request.model}",
        )

        try:
            error = validate_request(request)
            if error:
                return self._fail(error)

            if self.ai_client is None:
                self.ai_client = create_ai_client(request.provider, request.api_key, request.model)

            await self._draft()
            return await self._converge()

        except PipelineCancelled:
            log_operation(self.request_id, 'cancelled', details=f'Attempts: {self.state.attempt}')
            print(f"⚠️  Pipeline {self.request_id} cancelled by caller", file=sys.stderr)
            return self._finish({'type': 'cancelled', 'attempts': self.state.attempt})
        except AIClientError as e:
            return self._fail(f'AI Error: {e}')
        except Exception as e:
            log_operation(self.request_id, 'unhandled_error', 'error', error=str(e))
            return self._fail(str(e) or type(e).__name__)

    async def _draft(self):
        request = self.request
        if request.is_follow_up:
            kind = 'followup'
            self._status('Processing your feedback...')
            messages = [
                AIMessage('system', FOLLOWUP_SYSTEM_PROMPT),
                AIMessage('user', build_follow_up_prompt(
                    request.resume,
                    self.reference_resume,
                    request.job_offer,
                    request.chat_history,
                    request.follow_up_instruction,
                    request.custom_instructions,
                )),
            ]
        else:
            kind = 'initial'
            self._status('Analyzing job description...')
            self._status('Generating modified resume...')
            messages = [
                AIMessage('system', INITIAL_SYSTEM_PROMPT),
                AIMessage('user', build_initial_user_prompt(
                    request.resume, request.job_offer, request.custom_instructions)),
            ]

        response = await self._chat(kind, messages)
        decoded = parse_ai_response(response)
        self.state.latex = decoded.latex
        self.state.summary = decoded.summary

        log_conversation(
            self.request_id, kind,
            {
                'resume': request.resume,
                'jobDescription': request.job_offer,
                'customInstructions': request.custom_instructions,
                'followUpInstruction': request.follow_up_instruction,
                'chatHistory': request.chat_history,
            },
            {'rawResponse': response, 'parsedLatex': decoded.latex, 'parsedSummary': decoded.summary},
        )
        log_operation(self.request_id, f'ai_{kind}_response', details=f'Summary: {decoded.summary[:100]}')

    async def _converge(self) -> Dict[str, Any]:
        state = self.state

        while state.attempt < config.MAX_RETRY_ATTEMPTS:
            self._checkpoint()
            state.attempt += 1
            self.emit({'type': 'attempt', 'current': state.attempt, 'max': config.MAX_RETRY_ATTEMPTS})

            result = await self._compile(state.latex, f'Attempt {state.attempt}')
            if not result.success:
                result, fix_attempts = await self._fix_compile_errors(result)
                if not result.success:
                    return self._compile_failed(result, fix_attempts)

            state.pdf_path = await asyncio.to_thread(save_temp_pdf, result.pdf_bytes, 'resume', state.attempt)
            state.page_count = await self._measure('page_count', get_page_count, result.pdf_bytes)
            self._status(f"PDF compiled: {state.page_count} page{'s' if state.page_count != 1 else ''}")

            if state.page_count == 1:
                if state.attempt == 1:
                    await self._try_expand(result.pdf_bytes)
                log_operation(self.request_id, 'complete', details=f'Pages: 1, Attempts: {state.attempt}')
                return self._complete()

            if state.attempt >= config.MAX_RETRY_ATTEMPTS:
                log_operation(self.request_id, 'complete_max_retries',
                              details=f'Pages: {state.page_count}, Attempts: {state.attempt}')
                return self._complete(
                    f"{state.summary}\n• Warning: the resume still spans {state.page_count} pages "
                    f"after {state.attempt} attempts - please review and trim it manually"
                )

            self._status(f'Resume overflowed to {state.page_count} pages. Analyzing overflow...')
            overflow = await self._measure('overflow_analysis', analyze_overflow, result.pdf_bytes, state.page_count)

            if (state.attempt == 1
                    and overflow.overflow_percentage <= config.SMALL_OVERFLOW_THRESHOLD
                    and not self.request.force_condense):
                log_operation(self.request_id, 'small_overflow_choice',
                              details=f'Small overflow detected: {overflow.overflow_percentage}%')
                return self._finish({
                    'type': 'overflow_choice',
                    'latex': state.latex,
                    'summary': state.summary,
                    'page_count': state.page_count,
                    'overflow_percentage': overflow.overflow_percentage,
                    'attempts': state.attempt,
                    'pdf_path': state.pdf_path,
                })

            self._status(f'Overflow: ~{overflow.overflow_percentage}% ({overflow.overflow_words} words). '
                         'Asking AI to condense...')
            await self._condense(result.pdf_bytes, overflow)

        # Unreachable while MAX_RETRY_ATTEMPTS >= 1
        return self._complete()

    async def _fix_compile_errors(self, result: CompileResult):
        """
        Ask the LLM to repair a compile error, at most MAX_COMPILE_FIX_ATTEMPTS times.

        Each candidate is checked against the document as it stood before the
        first fix. A candidate that looks gutted is discarded, the snapshot is
        restored, and no further fixes are attempted.

        Returns:
            (last CompileResult, number of fix attempts made)
        """
        state = self.state
        snapshot = state.latex
        fix_attempt = 0

        while not result.success and fix_attempt < config.MAX_COMPILE_FIX_ATTEMPTS:
            fix_attempt += 1
            self._status(f'LaTeX error detected. Asking AI to fix '
                         f'(attempt {fix_attempt}/{config.MAX_COMPILE_FIX_ATTEMPTS})...')

            messages = [
                AIMessage('system', FIX_SYSTEM_PROMPT),
                AIMessage('user', build_compile_error_fix_prompt(
                    state.latex, result.error or 'Unknown error', result.logs, self.reference_resume)),
            ]
            response = await self._chat('fix', messages)
            candidate = parse_ai_response(response).latex

            log_conversation(
                self.request_id, 'fix',
                {
                    'latexBeforeFix': state.latex,
                    'compileError': result.error,
                    'compileLogs': result.logs,
                    'fixAttempt': fix_attempt,
                },
                {'rawResponse': response, 'parsedLatex': candidate},
            )

            verdict = validate_fixed_latex(snapshot, candidate)
            if not verdict.is_valid:
                log_operation(self.request_id, 'latex_fix_validation_failed', 'error',
                              details=f'Fix attempt {fix_attempt}/{config.MAX_COMPILE_FIX_ATTEMPTS}',
                              error=verdict.reason)
                print(f"⚠️  Rejected LaTeX fix: {verdict.reason}", file=sys.stderr)
                self._status('Fix attempt stripped content. Rejecting and keeping original...')
                state.latex = snapshot
                break

            state.latex = candidate
            result = await self._compile(state.latex, f'Fix attempt {fix_attempt}')

        return result, fix_attempt

    def _compile_failed(self, result: CompileResult, fix_attempts: int) -> Dict[str, Any]:
        state = self.state
        state.page_count = 0
        state.pdf_path = ''
        log_operation(self.request_id, 'latex_compile_final', 'error',
                      error=f'Failed after {fix_attempts} fix attempts: {result.error}')
        return self._complete(
            f"• LaTeX compilation failed after {fix_attempts} fix attempts\n"
            f"• Error: {result.error or 'Unknown error'}\n"
            "• Please review and fix the code manually"
        )

    async def _try_expand(self, pdf_bytes: bytes):
        """One-shot expansion when page 1 has too much blank space."""
        state = self.state
        try:
            page_fill = await self._measure('page_fill_analysis', analyze_page_fill, pdf_bytes)
        except PdfToolError as e:
            print(f"⚠️  Page fill analysis failed, skipping expansion: {e}", file=sys.stderr)
            return
        if page_fill.blank_percentage <= config.UNDERFLOW_THRESHOLD:
            return

        self._status(f'Resume has ~{page_fill.blank_percentage}% unused space. Expanding content...')
        try:
            page_images = await self._measure('rasterize', pdf_to_images, pdf_bytes)
        except PdfToolError as e:
            self._status('Could not expand content. Using current version.')
            print(f"⚠️  Rasterizing for expansion failed: {e}", file=sys.stderr)
            return

        messages = [
            AIMessage('system', FIX_SYSTEM_PROMPT),
            AIMessage('user', build_expand_prompt(state.latex, page_fill, self.request.job_offer),
                      images=page_images),
        ]
        try:
            response = await self._chat('expand', messages)
        except AIClientError:
            self._status('Could not expand content. Using current version.')
            return

        candidate = parse_ai_response(response).latex
        log_conversation(
            self.request_id, 'expand',
            {
                'latexBeforeFix': state.latex,
                'blankPercentage': page_fill.blank_percentage,
                'jobDescription': self.request.job_offer,
            },
            {'rawResponse': response, 'parsedLatex': candidate},
        )

        expanded = await self._compile(candidate, 'Expansion')
        if not expanded.success:
            self._status('Expanded version failed to compile. Keeping original version.')
            return

        try:
            expanded_pages = await self._measure('page_count', get_page_count, expanded.pdf_bytes)
        except PdfToolError as e:
            self._status('Could not measure expanded version. Keeping original version.')
            print(f"⚠️  Page count of expanded PDF failed: {e}", file=sys.stderr)
            return
        if expanded_pages != 1:
            self._status('Expansion caused overflow. Keeping original version.')
            return

        state.latex = candidate
        state.pdf_path = await asyncio.to_thread(save_temp_pdf, expanded.pdf_bytes, 'resume_expanded', state.attempt)
        state.summary = state.summary + '\n• Expanded to fill page'
        self._status('Content expanded successfully!')

    async def _condense(self, pdf_bytes: bytes, overflow):
        state = self.state
        page_images = await self._measure('rasterize', pdf_to_images, pdf_bytes)

        messages = [
            AIMessage('system', FIX_SYSTEM_PROMPT),
            AIMessage('user', build_retry_prompt(state.page_count, state.latex, overflow),
                      images=page_images),
        ]
        response = await self._chat('retry', messages)
        candidate = parse_ai_response(response).latex

        log_conversation(
            self.request_id, 'retry',
            {
                'latexBeforeFix': state.latex,
                'pageCount': state.page_count,
                'overflowPercentage': overflow.overflow_percentage,
                'overflowWords': overflow.overflow_words,
            },
            {'rawResponse': response, 'parsedLatex': candidate},
        )
        log_operation(self.request_id, 'overflow_retry',
                      details=f'Retry attempt {state.attempt}, overflow was {state.page_count} pages')
        state.latex = candidate


async def run_resume_pipeline(request: Union[ResumeRequest, Dict[str, Any]], emit: EmitFn,
                              ai_client=None, cancel_event: Optional[threading.Event] = None,
                              request_id: Optional[str] = None) -> Dict[str, Any]:
    """
    Run one convergence loop and return its terminal event.

    Args:
        request: ResumeRequest or a JSON payload accepted by ResumeRequest.from_dict
        emit: Callback receiving every progress and terminal event
        ai_client: Optional client with `async chat(messages) -> str`;
            built from the request's provider/model/api_key when omitted
        cancel_event: When set, the run stops at the next checkpoint
        request_id: Id used in the audit log (generated when omitted)

    Returns:
        The terminal event ('complete', 'overflow_choice', 'error' or 'cancelled')
    """
    if isinstance(request, dict):
        request = ResumeRequest.from_dict(request)
    pipeline = ResumePipeline(request, emit, ai_client=ai_client,
                              cancel_event=cancel_event, request_id=request_id)
    return await pipeline.run()
