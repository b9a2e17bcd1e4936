#!/usr/bin/env python3
"""
Configuration for the One-Page Resume Fit pipeline

Holds the policy constants that drive the compile -> measure -> rewrite loop,
the LLM provider settings, and the provider/model registry. Everything that
tunes convergence behaviour lives here so it is never scattered as literals.

Environment overrides:
    LATEX_ENGINE       tectonic (default) or pdflatex
    PDF_OUTPUT_DIR     where per-attempt PDFs are saved (default: tmp)
    LOGS_DIR           where the audit trail is written (default: logs)
    OPENAI_BASE_URL    OpenAI-compatible endpoint
    LMSTUDIO_BASE_URL  local LM Studio endpoint
    GOOGLE_BASE_URL    Gemini REST endpoint
"""

import os
from typing import Dict, List, Optional

# =============================================================================
# Convergence Loop Policy
# =============================================================================

MAX_RETRY_ATTEMPTS = 3          # Outer overflow-correction attempts
MAX_COMPILE_FIX_ATTEMPTS = 2    # Inner compile-error fixes per outer attempt
UNDERFLOW_THRESHOLD = 10        # Expand if more than 10% of page 1 is blank
SMALL_OVERFLOW_THRESHOLD = 10   # Ask the user if overflow is <= 10%

# Condensation guidance: cut overflow% + buffer, never more than the cap
CUT_TARGET_BUFFER = 5
CUT_TARGET_CAP = 30

CHAT_HISTORY_LIMIT = 4

# =============================================================================
# Content Integrity Policy
# =============================================================================

CONTENT_LENGTH_RATIO = 0.6
SECTION_RETENTION_RATIO = 0.5
ITEM_RETENTION_RATIO = 0.4
MIN_ITEMS_FOR_ITEM_CHECK = 5

DOCUMENT_START_MARKER = '\\documentclass'
BEGIN_DOCUMENT_MARKER = '\\begin{document}'
END_DOCUMENT_MARKER = '\\end{document}'

# =============================================================================
# Compiler and PDF Tools
# =============================================================================

LATEX_ENGINE = os.getenv('LATEX_ENGINE', 'tectonic')
COMPILE_TIMEOUT_S = 60
PREVIEW_COMPILE_TIMEOUT_S = 30
PDF_TOOL_TIMEOUT_S = 30
MAX_LOG_CHARS = 5000
RASTER_DPI = 150

# Page-number artifact filter for page fill analysis
PAGE_NUMBER_BOTTOM_FRACTION = 0.10
PAGE_NUMBER_CENTER_FRACTION = 0.40

# US Letter height, used when pdftotext gives no page header
LETTER_HEIGHT_PT = 792.0

PDF_OUTPUT_DIR = os.getenv('PDF_OUTPUT_DIR', 'tmp')
LOGS_DIR = os.getenv('LOGS_DIR', 'logs')

# =============================================================================
# LLM Configuration
# =============================================================================

LLM_CONFIG = {
    'openai_base_url': os.getenv('OPENAI_BASE_URL', 'https://api.openai.com/v1'),
    'lmstudio_base_url': os.getenv('LMSTUDIO_BASE_URL', 'http://127.0.0.1:1234/v1'),
    'google_base_url': os.getenv('GOOGLE_BASE_URL', 'https://generativelanguage.googleapis.com/v1beta'),
    'timeout': 300,
    'connect_timeout': 30,
    'max_tokens': 8192,
    'temperature': 0.7,
}

PROVIDERS = [
    {'id': 'openai', 'name': 'OpenAI'},
    {'id': 'google', 'name': 'Google'},
    {'id': 'lmstudio', 'name': 'LM Studio (local)'},
]

MODELS = [
    {'id': 'gpt-5.2-instant', 'name': 'GPT 5.2 Instant', 'provider': 'openai',
     'description': 'Fast and efficient for quick modifications'},
    {'id': 'gpt-5.2-reasoning-medium', 'name': 'GPT 5.2 Reasoning Medium', 'provider': 'openai',
     'description': 'Enhanced reasoning capabilities'},
    {'id': 'gpt-5-mini', 'name': 'GPT 5 Mini', 'provider': 'openai',
     'description': 'Compact but powerful model'},
    {'id': 'gemini-3-flash-preview', 'name': 'Gemini 3 Flash', 'provider': 'google',
     'description': 'Ultra-fast responses'},
    {'id': 'gemini-3-pro-preview', 'name': 'Gemini 3 Pro', 'provider': 'google',
     'description': 'Advanced capabilities for complex tasks'},
    {'id': 'qwen2.5-32b-instruct', 'name': 'Qwen 2.5 32B Instruct', 'provider': 'lmstudio',
     'description': 'Local model served by LM Studio'},
]


def get_models_by_provider(provider: str) -> List[Dict[str, str]]:
    return [m for m in MODELS if m['provider'] == provider]


def get_model_by_id(model_id: str) -> Optional[Dict[str, str]]:
    for model in MODELS:
        if model['id'] == model_id:
            return model
    return None


def get_default_model(provider: str) -> Optional[Dict[str, str]]:
    provider_models = get_models_by_provider(provider)
    return provider_models[0] if provider_models else None


def detect_env_api_key() -> Dict[str, Optional[str]]:
    """
    Find a usable API key in the environment.

    Google keys are preferred over OpenAI keys. Keys are only accepted when
    they carry the provider's usual prefix (AIza / sk-).

    Returns:
        Dictionary with 'provider' and 'api_key' (both None if nothing found)
    """
    google_key = (os.getenv('GOOGLE_API_KEY') or '').strip()
    if google_key.startswith('AIza'):
        return {'provider': 'google', 'api_key': google_key}

    openai_key = (os.getenv('OPENAI_API_KEY') or '').strip()
    if openai_key.startswith('sk-'):
        return {'provider': 'openai', 'api_key': openai_key}

    return {'provider': None, 'api_key': None}
