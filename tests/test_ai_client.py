"""
Tests for the LLM clients.

Request shaping is checked against a mocked _post_json; transport error
mapping is checked against a mocked aiohttp session.
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest

import config
from ai_client import (
    AIClientError,
    AIMessage,
    GoogleClient,
    OpenAIClient,
    _post_json,
    build_gemini_contents,
    create_ai_client,
    format_openai_messages,
)


def _session_factory(status=200, json_data=None, text='', post_error=None):
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=json_data)
    response.text = AsyncMock(return_value=text)

    post_ctx = MagicMock()
    post_ctx.__aenter__.return_value = response
    post_ctx.__aexit__.return_value = False

    session = MagicMock()
    if post_error is not None:
        session.post.side_effect = post_error
    else:
        session.post.return_value = post_ctx

    session_ctx = MagicMock()
    session_ctx.__aenter__.return_value = session
    session_ctx.__aexit__.return_value = False
    return MagicMock(return_value=session_ctx)


class TestMessageFormatting:
    def test_openai_text_only(self):
        formatted = format_openai_messages([AIMessage('system', 'rules'), AIMessage('user', 'hi')])
        assert formatted == [{'role': 'system', 'content': 'rules'}, {'role': 'user', 'content': 'hi'}]

    def test_openai_images_become_data_urls(self):
        formatted = format_openai_messages([AIMessage('user', 'look', images=['AAA', 'BBB'])])
        parts = formatted[0]['content']
        assert parts[0] == {'type': 'text', 'text': 'look'}
        assert parts[1]['image_url']['url'] == 'data:image/png;base64,AAA'
        assert parts[2]['image_url']['detail'] == 'high'

    def test_gemini_merges_system_and_user(self):
        contents = build_gemini_contents([
            AIMessage('system', 'rules'),
            AIMessage('user', 'task', images=['IMG']),
        ])
        assert len(contents) == 1
        parts = contents[0]['parts']
        assert parts[0]['text'].startswith('rules')
        assert parts[1]['text'].startswith('task')
        assert parts[2] == {'inlineData': {'mimeType': 'image/png', 'data': 'IMG'}}


class TestClients:
    @pytest.mark.asyncio
    async def test_openai_chat_returns_content(self):
        reply = {'choices': [{'message': {'content': 'hello'}}]}
        with patch('ai_client._post_json', AsyncMock(return_value=reply)) as post:
            client = OpenAIClient('sk-test', 'gpt-5-mini')
            assert await client.chat([AIMessage('user', 'hi')]) == 'hello'

        url, payload = post.call_args[0][0], post.call_args[0][1]
        assert url.endswith('/chat/completions')
        assert payload['model'] == 'gpt-5-mini'
        assert post.call_args[1]['headers']['Authorization'] == 'Bearer sk-test'

    @pytest.mark.asyncio
    async def test_openai_malformed_reply_raises(self):
        with patch('ai_client._post_json', AsyncMock(return_value={'choices': []})):
            with pytest.raises(AIClientError):
                await OpenAIClient('sk-test', 'gpt-5-mini').chat([AIMessage('user', 'hi')])

    @pytest.mark.asyncio
    async def test_google_chat_joins_parts(self):
        reply = {'candidates': [{'content': {'parts': [{'text': 'a'}, {'text': 'b'}]}}]}
        with patch('ai_client._post_json', AsyncMock(return_value=reply)) as post:
            client = GoogleClient('AIza-test', 'gemini-3-flash-preview')
            assert await client.chat([AIMessage('user', 'hi')]) == 'ab'

        assert ':generateContent' in post.call_args[0][0]
        assert post.call_args[1]['headers']['x-goog-api-key'] == 'AIza-test'

    @pytest.mark.asyncio
    async def test_google_no_candidates_raises(self):
        with patch('ai_client._post_json', AsyncMock(return_value={'promptFeedback': {'blockReason': 'SAFETY'}})):
            with pytest.raises(AIClientError, match='no candidates'):
                await GoogleClient('AIza-test', 'gemini-3-flash-preview').chat([AIMessage('user', 'hi')])

    def test_factory(self):
        assert isinstance(create_ai_client('openai', 'k', 'm'), OpenAIClient)
        assert isinstance(create_ai_client('google', 'k', 'm'), GoogleClient)
        lmstudio = create_ai_client('lmstudio', 'k', 'm')
        assert lmstudio.base_url == config.LLM_CONFIG['lmstudio_base_url'].rstrip('/')
        with pytest.raises(ValueError):
            create_ai_client('other', 'k', 'm')


class TestTransportErrors:
    @pytest.mark.asyncio
    async def test_http_error_status(self):
        with patch('ai_client.aiohttp.ClientSession', _session_factory(status=401, text='bad key')):
            with pytest.raises(AIClientError, match='HTTP 401'):
                await _post_json('http://llm/v1/chat/completions', {}, {})

    @pytest.mark.asyncio
    async def test_success_returns_json(self):
        with patch('ai_client.aiohttp.ClientSession', _session_factory(json_data={'ok': True})):
            assert await _post_json('http://llm/v1/chat/completions', {}, {}) == {'ok': True}

    @pytest.mark.asyncio
    async def test_connection_error(self):
        factory = _session_factory(post_error=aiohttp.ClientConnectionError('refused'))
        with patch('ai_client.aiohttp.ClientSession', factory):
            with pytest.raises(AIClientError, match='request failed'):
                await _post_json('http://llm/v1/chat/completions', {}, {})

    @pytest.mark.asyncio
    async def test_timeout(self):
        factory = _session_factory(post_error=asyncio.TimeoutError())
        with patch('ai_client.aiohttp.ClientSession', factory):
            with pytest.raises(AIClientError, match='timed out'):
                await _post_json('http://llm/v1/chat/completions', {}, {})
