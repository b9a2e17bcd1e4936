#!/usr/bin/env python3
"""
LLM clients for resume rewriting (text + vision)

One async method, chat(messages) -> str, with one implementation per provider:
- OpenAI-compatible chat completions (OpenAI, or a local LM Studio server)
- Google Gemini generateContent

Each provider owns its own request shaping. Attached page images are sent as
base64 PNGs. Transport, HTTP and provider failures are raised as AIClientError
and are never retried here.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Dict, List

import aiohttp

import config


class AIClientError(RuntimeError):
    """The LLM request failed (network, auth, provider or timeout)."""


@dataclass
class AIMessage:
    role: str  # 'system' | 'user' | 'assistant'
    content: str
    images: List[str] = field(default_factory=list)  # base64 PNG pages


def _client_timeout() -> aiohttp.ClientTimeout:
    return aiohttp.ClientTimeout(
        total=config.LLM_CONFIG['timeout'],
        connect=config.LLM_CONFIG['connect_timeout'],
    )


async def _post_json(url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
    try:
        async with aiohttp.ClientSession(timeout=_client_timeout()) as session:
            async with session.post(url, json=payload, headers=headers) as r:
                if r.status >= 400:
                    body = await r.text()
                    raise AIClientError(f"HTTP {r.status} from {url}: {body[:500]}")
                return await r.json(content_type=None)
    except asyncio.TimeoutError as e:
        raise AIClientError(f"LLM request timed out after {config.LLM_CONFIG['timeout']}s") from e
    except aiohttp.ClientError as e:
        raise AIClientError(f"LLM request failed: {e}") from e


# -------------------
# OpenAI-compatible
# -------------------

def format_openai_messages(messages: List[AIMessage]) -> List[Dict[str, Any]]:
    """Chat-completions message list; messages with images use content parts."""
    formatted = []
    for msg in messages:
        if msg.images:
            content = [{'type': 'text', 'text': msg.content}]
            for img in msg.images:
                content.append({
                    'type': 'image_url',
                    'image_url': {'url': f'data:image/png;base64,{img}', 'detail': 'high'},
                })
            formatted.append({'role': msg.role, 'content': content})
        else:
            formatted.append({'role': msg.role, 'content': msg.content})
    return formatted


class OpenAIClient:
    """OpenAI chat completions, also used for LM Studio's compatible server."""

    def __init__(self, api_key: str, model: str, base_url: str = None):
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or config.LLM_CONFIG['openai_base_url']).rstrip('/')

    async def chat(self, messages: List[AIMessage]) -> str:
        payload = {
            'model': self.model,
            'messages': format_openai_messages(messages),
            'max_tokens': config.LLM_CONFIG['max_tokens'],
            'temperature': config.LLM_CONFIG['temperature'],
            'stream': False,
        }
        data = await _post_json(
            f"{self.base_url}/chat/completions",
            payload,
            headers={'Authorization': f'Bearer {self.api_key}'},
        )
        try:
            return data['choices'][0]['message']['content'] or ''
        except (KeyError, IndexError, TypeError) as e:
            raise AIClientError(f"Unexpected chat completion response: {str(data)[:300]}") from e


# -------------------
# Google Gemini
# -------------------

def build_gemini_contents(messages: List[AIMessage]) -> List[Dict[str, Any]]:
    """
    Combine system and user turns into one user turn.

    Gemini handles this task better as a single prompt: system text first,
    then user text, then every attached image.
    """
    system_prompt = ''
    user_prompt = ''
    images: List[str] = []

    for msg in messages:
        if msg.role == 'system':
            system_prompt += msg.content + '\n\n'
        elif msg.role == 'user':
            user_prompt += msg.content + '\n\n'
            images.extend(msg.images)

    parts: List[Dict[str, Any]] = []
    if system_prompt:
        parts.append({'text': system_prompt})
    parts.append({'text': user_prompt})
    for img in images:
        parts.append({'inlineData': {'mimeType': 'image/png', 'data': img}})

    return [{'role': 'user', 'parts': parts}]


class GoogleClient:
    def __init__(self, api_key: str, model: str, base_url: str = None):
        self.api_key = api_key
        self.model = model
        self.base_url = (base_url or config.LLM_CONFIG['google_base_url']).rstrip('/')

    async def chat(self, messages: List[AIMessage]) -> str:
        payload = {
            'contents': build_gemini_contents(messages),
            'generationConfig': {
                'maxOutputTokens': config.LLM_CONFIG['max_tokens'],
                'temperature': config.LLM_CONFIG['temperature'],
            },
        }
        data = await _post_json(
            f"{self.base_url}/models/{self.model}:generateContent",
            payload,
            headers={'x-goog-api-key': self.api_key},
        )
        candidates = data.get('candidates') or []
        if not candidates:
            feedback = data.get('promptFeedback', {})
            raise AIClientError(f"Gemini returned no candidates: {feedback}")
        parts = candidates[0].get('content', {}).get('parts', [])
        return ''.join(p.get('text', '') for p in parts)


def create_ai_client(provider: str, api_key: str, model: str):
    """Create the client for a provider id ('openai', 'google' or 'lmstudio')."""
    if provider == 'openai':
        return OpenAIClient(api_key, model)
    if provider == 'lmstudio':
        return OpenAIClient(api_key, model, base_url=config.LLM_CONFIG['lmstudio_base_url'])
    if provider == 'google':
        return GoogleClient(api_key, model)
    raise ValueError(f"Unknown provider: {provider}")
