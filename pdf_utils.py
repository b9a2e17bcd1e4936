#!/usr/bin/env python3
"""
PDF utilities for LaTeX resume compilation and measurement

This module provides utilities for:
1. Compiling LaTeX source to PDF (tectonic or pdflatex) in an isolated temp dir
2. Counting pages with pdfinfo
3. Rasterizing pages to base64 PNGs with pdftoppm for vision models
4. Measuring overflow (content past page 1) with pdftotext -layout
5. Measuring underflow (blank space at the bottom of page 1) with pdftotext -bbox
6. Saving per-attempt PDF artifacts

Compile failures are reported as data (CompileResult.success = False) and are
never raised. Measurement failures raise PdfToolError, since a compiled PDF
should always be measurable.
"""

import base64
import binascii
import html
import re
import shutil
import subprocess
import sys
import tempfile
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import config


class PdfToolError(RuntimeError):
    """Raised when a poppler tool fails or its output cannot be parsed."""


@dataclass
class CompileResult:
    success: bool
    pdf_bytes: Optional[bytes] = None
    error: str = ''
    logs: str = ''
    engine_missing: bool = False


@dataclass
class OverflowAnalysis:
    overflow_lines: int
    overflow_words: int
    total_lines: int
    total_words: int
    overflow_percentage: int  # 0-100


@dataclass
class PageFillAnalysis:
    page_height: float
    content_bottom: float
    blank_space: float
    blank_percentage: int  # 0-100


# -------------------
# Temp file handling
# -------------------

def _remove_path(path: Path):
    """Best-effort removal of a temp file or directory. Never raises."""
    try:
        if path.is_dir():
            shutil.rmtree(path, ignore_errors=True)
        elif path.exists():
            path.unlink()
    except OSError as e:
        print(f"Warning: Could not clean up {path}: {e}", file=sys.stderr)


def _write_temp_pdf(pdf_bytes: bytes, prefix: str) -> Path:
    fd, name = tempfile.mkstemp(prefix=prefix, suffix='.pdf')
    with open(fd, 'wb') as f:
        f.write(pdf_bytes)
    return Path(name)


def _run_tool(cmd: List[str], timeout: int = config.PDF_TOOL_TIMEOUT_S) -> str:
    """Run a poppler tool and return its stdout, raising PdfToolError on failure."""
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except FileNotFoundError as e:
        raise PdfToolError(f"{cmd[0]} not found - install poppler-utils") from e
    except subprocess.TimeoutExpired as e:
        raise PdfToolError(f"{cmd[0]} timed out after {timeout}s") from e

    if result.returncode != 0:
        raise PdfToolError(f"{cmd[0]} failed ({result.returncode}): {result.stderr.strip()}")
    return result.stdout


# -------------------
# Compilation
# -------------------

def build_compile_command(engine: str, tex_path: Path, output_dir: Path) -> List[str]:
    """Command line for the configured LaTeX engine."""
    if engine == 'pdflatex':
        return [
            'pdflatex',
            '-interaction=nonstopmode',
            '-halt-on-error',
            f'-output-directory={output_dir}',
            tex_path.name,
        ]
    return ['tectonic', '-X', 'compile', str(tex_path), '--outdir', str(output_dir), '--keep-logs']


def _read_log_file(log_path: Path) -> str:
    try:
        return log_path.read_text(encoding='utf-8', errors='replace')
    except OSError:
        return ''


def compile_latex(latex_content: str, images: Optional[List[Dict[str, str]]] = None,
                  timeout: int = config.COMPILE_TIMEOUT_S,
                  engine: Optional[str] = None) -> CompileResult:
    """
    Compile LaTeX source to PDF in a freshly created working directory.

    The working directory is unique per call, so concurrent runs never collide,
    and it is removed on every exit path.

    Args:
        latex_content: Complete LaTeX document source
        images: Optional uploaded assets, each {'filename': ..., 'data': <base64>}
        timeout: Wall-clock limit for the compiler in seconds
        engine: 'tectonic' or 'pdflatex' (defaults to config.LATEX_ENGINE)

    Returns:
        CompileResult with the PDF bytes on success, or the error message and
        the last MAX_LOG_CHARS characters of diagnostics on failure
    """
    if not isinstance(latex_content, str):
        raise TypeError(f"LaTeX source must be a string, got {type(latex_content).__name__}")

    engine = engine or config.LATEX_ENGINE
    work_dir = Path(tempfile.mkdtemp(prefix='latex_'))
    tex_path = work_dir / 'resume.tex'
    pdf_path = work_dir / 'resume.pdf'
    log_path = work_dir / 'resume.log'

    try:
        for image in images or []:
            if not isinstance(image, dict):
                return CompileResult(success=False, error="Invalid image asset: expected {'filename', 'data'}")
            filename = Path(image.get('filename') or '').name
            if filename and image.get('data'):
                try:
                    data = base64.b64decode(image['data'], validate=True)
                except (binascii.Error, ValueError, TypeError):
                    return CompileResult(success=False, error=f"Invalid image asset {filename}: data is not valid base64")
                (work_dir / filename).write_bytes(data)

        tex_path.write_text(latex_content, encoding='utf-8')

        try:
            result = subprocess.run(
                build_compile_command(engine, tex_path, work_dir),
                capture_output=True,
                text=True,
                cwd=str(work_dir),
                timeout=timeout,
            )
        except FileNotFoundError:
            return CompileResult(
                success=False,
                error=f'{engine} is not installed on the server',
                logs=f'Install {engine} and make sure it is on PATH',
                engine_missing=True,
            )
        except subprocess.TimeoutExpired as e:
            partial = _decode_stream(e.stdout) + _decode_stream(e.stderr)
            logs = partial or _read_log_file(log_path)
            print(f"❌ LaTeX compilation timed out after {timeout}s", file=sys.stderr)
            return CompileResult(
                success=False,
                error=f'Compilation timed out after {timeout} seconds',
                logs=logs[-config.MAX_LOG_CHARS:],
            )

        logs = (result.stdout or '') + (result.stderr or '')

        if result.returncode == 0 and pdf_path.exists():
            pdf_bytes = pdf_path.read_bytes()
            if pdf_bytes:
                print(f"✅ PDF compiled successfully ({len(pdf_bytes)} bytes)", file=sys.stderr)
                return CompileResult(success=True, pdf_bytes=pdf_bytes, logs=logs[-config.MAX_LOG_CHARS:])

        if result.returncode == 0:
            error = 'PDF was not generated'
        else:
            error = f'{engine} exited with code {result.returncode}'
        if not logs.strip():
            logs = _read_log_file(log_path)

        print(f"❌ LaTeX compilation failed: {error}", file=sys.stderr)
        return CompileResult(success=False, error=error, logs=logs[-config.MAX_LOG_CHARS:])

    except OSError as e:
        print(f"❌ Error preparing LaTeX compilation: {e}", file=sys.stderr)
        return CompileResult(success=False, error=f'Error running {engine}: {e}')
    finally:
        _remove_path(work_dir)


def _decode_stream(stream) -> str:
    if stream is None:
        return ''
    if isinstance(stream, bytes):
        return stream.decode('utf-8', errors='replace')
    return stream


# -------------------
# Page count
# -------------------

def parse_page_count(pdfinfo_output: str) -> int:
    match = re.search(r'Pages:\s+(\d+)', pdfinfo_output)
    if not match:
        raise PdfToolError('Could not parse page count from pdfinfo output')
    return int(match.group(1))


def get_page_count(pdf_bytes: bytes) -> int:
    """Page count via pdfinfo. Raises PdfToolError if it cannot be determined."""
    temp_path = _write_temp_pdf(pdf_bytes, 'pagecount_')
    try:
        return parse_page_count(_run_tool(['pdfinfo', str(temp_path)]))
    finally:
        _remove_path(temp_path)


# -------------------
# Rasterization
# -------------------

def _page_number(png_path: Path) -> int:
    match = re.search(r'-(\d+)\.png$', png_path.name)
    return int(match.group(1)) if match else 0


def pdf_to_images(pdf_bytes: bytes, dpi: int = config.RASTER_DPI) -> List[str]:
    """
    Render every page to PNG and return them base64-encoded, in page order.

    150 DPI keeps the text legible for vision models without blowing up
    the image token cost.
    """
    work_dir = Path(tempfile.mkdtemp(prefix='raster_'))
    try:
        pdf_path = work_dir / 'input.pdf'
        pdf_path.write_bytes(pdf_bytes)
        _run_tool(['pdftoppm', '-png', '-r', str(dpi), str(pdf_path), str(work_dir / 'page')])

        page_files = sorted(work_dir.glob('page-*.png'), key=_page_number)
        return [base64.b64encode(p.read_bytes()).decode('utf-8') for p in page_files]
    finally:
        _remove_path(work_dir)


# -------------------
# Overflow analysis
# -------------------

def count_lines(text: str) -> int:
    """Non-blank lines."""
    return len([line for line in text.split('\n') if line.strip()])


def count_words(text: str) -> int:
    return len(text.split())


def compute_overflow(page1_text: str, overflow_text: str) -> OverflowAnalysis:
    page1_lines = count_lines(page1_text)
    page1_words = count_words(page1_text)
    overflow_lines = count_lines(overflow_text)
    overflow_words = count_words(overflow_text)

    total_lines = page1_lines + overflow_lines
    total_words = page1_words + overflow_words

    overflow_percentage = round(overflow_words / total_words * 100) if total_words > 0 else 0

    return OverflowAnalysis(
        overflow_lines=overflow_lines,
        overflow_words=overflow_words,
        total_lines=total_lines,
        total_words=total_words,
        overflow_percentage=overflow_percentage,
    )


def analyze_overflow(pdf_bytes: bytes, page_count: int) -> OverflowAnalysis:
    """
    Quantify how much content spilled past page 1.

    Args:
        pdf_bytes: Compiled PDF
        page_count: Page count already measured for this PDF

    Returns:
        OverflowAnalysis; all overflow fields are zero for a single page
    """
    temp_path = _write_temp_pdf(pdf_bytes, 'overflow_')
    try:
        page1_text = _run_tool(['pdftotext', '-f', '1', '-l', '1', '-layout', str(temp_path), '-'])
        overflow_text = ''
        if page_count > 1:
            overflow_text = _run_tool(['pdftotext', '-f', '2', '-layout', str(temp_path), '-'])
        return compute_overflow(page1_text, overflow_text)
    finally:
        _remove_path(temp_path)


# -------------------
# Page fill (underflow) analysis
# -------------------

PAGE_HEADER_RE = re.compile(r'<page\s+width="([\d.]+)"\s+height="([\d.]+)">')
WORD_RE = re.compile(
    r'<word\s+xMin="([\d.]+)"\s+yMin="([\d.]+)"\s+xMax="([\d.]+)"\s+yMax="([\d.]+)">([^<]*)</word>'
)
PAGE_NUMBER_RE = re.compile(r'^(\d{1,2}|page\s*\d+|\d+\s*/\s*\d+)$', re.IGNORECASE)


def is_page_number_artifact(x_min: float, x_max: float, y_max: float, text: str,
                            page_width: float, page_height: float) -> bool:
    """True for a word that sits bottom-centre and looks like a page number."""
    in_bottom_margin = y_max > page_height * (1 - config.PAGE_NUMBER_BOTTOM_FRACTION)

    center = (x_min + x_max) / 2
    half_band = page_width * config.PAGE_NUMBER_CENTER_FRACTION / 2
    horizontally_centered = abs(center - page_width / 2) <= half_band

    return in_bottom_margin and horizontally_centered and bool(PAGE_NUMBER_RE.match(text))


def parse_page_fill(bbox_html: str) -> PageFillAnalysis:
    """Compute page fill from `pdftotext -bbox` output for a single page."""
    page_match = PAGE_HEADER_RE.search(bbox_html)
    if not page_match:
        # Unknown geometry: assume the page is full rather than trigger expansion
        return PageFillAnalysis(
            page_height=config.LETTER_HEIGHT_PT,
            content_bottom=config.LETTER_HEIGHT_PT,
            blank_space=0.0,
            blank_percentage=0,
        )

    page_width = float(page_match.group(1))
    page_height = float(page_match.group(2))

    content_bottom = None
    for match in WORD_RE.finditer(bbox_html):
        x_min = float(match.group(1))
        x_max = float(match.group(3))
        y_max = float(match.group(4))
        text = html.unescape(match.group(5)).strip()

        if is_page_number_artifact(x_min, x_max, y_max, text, page_width, page_height):
            continue
        if content_bottom is None or y_max > content_bottom:
            content_bottom = y_max

    if content_bottom is None:
        return PageFillAnalysis(
            page_height=page_height,
            content_bottom=0.0,
            blank_space=page_height,
            blank_percentage=100,
        )

    blank_space = max(page_height - content_bottom, 0.0)
    return PageFillAnalysis(
        page_height=page_height,
        content_bottom=content_bottom,
        blank_space=blank_space,
        blank_percentage=round(blank_space / page_height * 100),
    )


def analyze_page_fill(pdf_bytes: bytes) -> PageFillAnalysis:
    """Measure unused vertical space at the bottom of page 1."""
    temp_path = _write_temp_pdf(pdf_bytes, 'pagefill_')
    try:
        bbox_html = _run_tool(['pdftotext', '-f', '1', '-l', '1', '-bbox', str(temp_path), '-'])
        return parse_page_fill(bbox_html)
    finally:
        _remove_path(temp_path)


# -------------------
# Artifacts
# -------------------

def save_temp_pdf(pdf_bytes: bytes, prefix: str = 'resume', attempt: int = 1,
                  output_dir: Optional[str] = None) -> str:
    """
    Save a compiled PDF for later download or debugging.

    Returns:
        Path to the saved file
    """
    out_dir = Path(output_dir or config.PDF_OUTPUT_DIR)
    out_dir.mkdir(parents=True, exist_ok=True)

    timestamp = int(time.time() * 1000)
    pdf_path = out_dir / f"{prefix}_attempt{attempt}_{timestamp}.pdf"
    pdf_path.write_bytes(pdf_bytes)
    return str(pdf_path)
