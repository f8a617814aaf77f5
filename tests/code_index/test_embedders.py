"""Tests for the HTTP embedding clients using httpx.MockTransport."""

from __future__ import annotations

import json

import httpx
import pytest

from code_index.clients import OllamaEmbedder, OpenAIEmbedder, create_embedder
from code_index.clients._token_batching import MAX_ITEM_TOKENS, estimate_tokens, pack_token_batches
from code_index.schemas.config import OllamaEmbedderConfig, OpenAIEmbedderConfig


class TestTokenBatching:
    def test_estimate(self) -> None:
        assert estimate_tokens('') == 0
        assert estimate_tokens('abcd') == 1
        assert estimate_tokens('abcde') == 2

    def test_packs_under_budget(self) -> None:
        texts = ['x' * 400] * 5  # 100 tokens each

        batches = pack_token_batches(texts, max_batch_tokens=250)

        assert batches == [[0, 1], [2, 3], [4]]

    def test_skips_oversized_items(self) -> None:
        texts = ['short', 'x' * (MAX_ITEM_TOKENS * 4 + 4), 'also short']

        batches = pack_token_batches(texts)

        assert batches == [[0, 2]]


class TestOpenAIEmbedder:
    async def test_request_and_response(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(
                200,
                json={
                    'data': [
                        {'index': 1, 'embedding': [0.0, 1.0]},
                        {'index': 0, 'embedding': [1.0, 0.0]},
                    ],
                    'usage': {'prompt_tokens': 4, 'total_tokens': 4},
                },
            )

        embedder = OpenAIEmbedder(
            api_key='sk-test',
            model='text-embedding-3-small',
            dimensions=2,
            transport=httpx.MockTransport(handler),
        )
        async with embedder:
            response = await embedder.create_embeddings(['first', 'second'])

        assert response.embeddings == [[1.0, 0.0], [0.0, 1.0]]
        assert response.usage.total_tokens == 4
        (request,) = requests
        assert request.url.path == '/v1/embeddings'
        assert request.headers['Authorization'] == 'Bearer sk-test'
        assert json.loads(request.content) == {'model': 'text-embedding-3-small', 'input': ['first', 'second']}

    async def test_model_override(self) -> None:
        models: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            models.append(json.loads(request.content)['model'])
            return httpx.Response(200, json={'data': [{'index': 0, 'embedding': [1.0]}]})

        embedder = OpenAIEmbedder(api_key='k', model='default', dimensions=1, transport=httpx.MockTransport(handler))
        await embedder.create_embeddings(['text'], model='override')
        await embedder.close()

        assert models == ['override']

    async def test_rate_limit_is_retried(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                return httpx.Response(429, json={'error': 'rate limited'})
            return httpx.Response(200, json={'data': [{'index': 0, 'embedding': [0.5]}]})

        embedder = OpenAIEmbedder(api_key='k', model='m', dimensions=1, transport=httpx.MockTransport(handler))
        response = await embedder.create_embeddings(['text'])
        await embedder.close()

        assert attempts == 2
        assert response.embeddings == [[0.5]]

    async def test_client_error_is_not_retried(self) -> None:
        attempts = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal attempts
            attempts += 1
            return httpx.Response(400, json={'error': 'bad request'})

        embedder = OpenAIEmbedder(api_key='k', model='m', dimensions=1, transport=httpx.MockTransport(handler))
        with pytest.raises(httpx.HTTPStatusError):
            await embedder.create_embeddings(['text'])
        await embedder.close()

        assert attempts == 1

    async def test_oversized_item_is_none(self) -> None:
        sent: list[list[str]] = []

        def handler(request: httpx.Request) -> httpx.Response:
            inputs = json.loads(request.content)['input']
            sent.append(inputs)
            return httpx.Response(
                200, json={'data': [{'index': i, 'embedding': [float(i)]} for i in range(len(inputs))]}
            )

        embedder = OpenAIEmbedder(api_key='k', model='m', dimensions=1, transport=httpx.MockTransport(handler))
        huge = 'x' * (MAX_ITEM_TOKENS * 4 + 4)
        response = await embedder.create_embeddings(['a', huge, 'b'])
        await embedder.close()

        assert response.embeddings == [[0.0], None, [1.0]]
        assert sent == [['a', 'b']]

    def test_requires_api_key(self) -> None:
        with pytest.raises(ValueError, match='API key'):
            OpenAIEmbedder(api_key='', model='m', dimensions=1)


class TestOllamaEmbedder:
    async def test_request_and_response(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return httpx.Response(200, json={'embeddings': [[0.1, 0.2], [0.3, 0.4]], 'prompt_eval_count': 7})

        embedder = OllamaEmbedder(model='nomic-embed-text', dimensions=2, transport=httpx.MockTransport(handler))
        response = await embedder.create_embeddings(['one', 'two'])
        await embedder.close()

        assert response.embeddings == [[0.1, 0.2], [0.3, 0.4]]
        assert response.usage.prompt_tokens == 7
        (request,) = requests
        assert request.url.path == '/api/embed'
        assert json.loads(request.content) == {'model': 'nomic-embed-text', 'input': ['one', 'two']}
        assert embedder.embedder_info.provider == 'ollama'

    async def test_count_mismatch_raises(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={'embeddings': [[0.1]]})

        embedder = OllamaEmbedder(model='m', dimensions=1, transport=httpx.MockTransport(handler))
        with pytest.raises(RuntimeError, match='1 embeddings for 2 inputs'):
            await embedder.create_embeddings(['one', 'two'])
        await embedder.close()


class TestCreateEmbedder:
    async def test_ollama(self) -> None:
        embedder = create_embedder(OllamaEmbedderConfig())

        assert isinstance(embedder, OllamaEmbedder)
        assert embedder.embedder_info.dimensions == 768
        await embedder.close()

    async def test_openai_with_key(self) -> None:
        embedder = create_embedder(OpenAIEmbedderConfig(api_key='sk-test', model='text-embedding-3-large'))

        assert isinstance(embedder, OpenAIEmbedder)
        assert embedder.embedder_info.dimensions == 3072
        await embedder.close()

    def test_unknown_dimension(self) -> None:
        with pytest.raises(ValueError, match='Unknown vector dimension'):
            create_embedder(OllamaEmbedderConfig(model='mystery-model'))

    async def test_dimension_override(self) -> None:
        embedder = create_embedder(OllamaEmbedderConfig(model='mystery-model', dimensions=256))

        assert embedder.embedder_info.dimensions == 256
        await embedder.close()
