import math
import os
import sys
import unittest
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

os.environ.setdefault("ANALYTICS_ENABLED", "0")

from app.ai.providers.openai_provider import OpenAIProvider
from app.ai.types import ChatMessage
from app.semantic import embeddings
from app.semantic.embeddings import OpenAIEmbeddingProvider, SimpleEmbeddingProvider


class SimpleEmbeddingTests(unittest.TestCase):
    def test_vectors_are_deterministic_and_normalized(self):
        provider = SimpleEmbeddingProvider(dimension=32)

        first, again, empty = provider.embed(["React and TypeScript", "React and TypeScript", "   "])

        self.assertEqual(first, again)
        self.assertAlmostEqual(math.sqrt(sum(v * v for v in first)), 1.0, places=6)
        self.assertEqual(empty, [0.0] * 32)

    def test_rejects_non_positive_dimension(self):
        with self.assertRaises(ValueError):
            SimpleEmbeddingProvider(dimension=0)


class OpenAIEmbeddingTests(unittest.TestCase):
    def test_results_are_returned_in_input_order(self):
        response = SimpleNamespace(
            data=[
                SimpleNamespace(index=1, embedding=[0.0, 1.0]),
                SimpleNamespace(index=0, embedding=[1.0, 0.0]),
            ]
        )
        fake_client = MagicMock()
        fake_client.embeddings.create.return_value = response

        with patch.dict(os.environ, {"OPENAI_API_KEY": "test-key"}), patch.object(
            embeddings, "OpenAI", return_value=fake_client
        ):
            provider = OpenAIEmbeddingProvider(model="text-embedding-3-small", dimensions=2)
            vectors = provider.embed(["Python", "SQL"])

        self.assertEqual(vectors, [[1.0, 0.0], [0.0, 1.0]])
        kwargs = fake_client.embeddings.create.call_args.kwargs
        self.assertEqual(kwargs["input"], ["Python", "SQL"])
        self.assertEqual(kwargs["dimensions"], 2)
        self.assertEqual(provider.embed([]), [])

    def test_missing_key_fails_fast(self):
        with patch.dict(os.environ, {"OPENAI_API_KEY": ""}):
            with self.assertRaises(RuntimeError):
                OpenAIEmbeddingProvider()


class EmbeddingFactoryTests(unittest.TestCase):
    def tearDown(self):
        embeddings.get_embedding_provider.cache_clear()

    def test_simple_provider_uses_configured_dimension(self):
        fake_settings = SimpleNamespace(
            embedding_provider="simple",
            embedding_model="text-embedding-3-small",
            embedding_dimensions=16,
        )
        embeddings.get_embedding_provider.cache_clear()
        with patch.object(embeddings, "settings", fake_settings):
            provider = embeddings.get_embedding_provider()

        self.assertIsInstance(provider, SimpleEmbeddingProvider)
        self.assertEqual(provider.dimension, 16)


class OpenAIProviderTests(unittest.IsolatedAsyncioTestCase):
    async def test_complete_requests_json_and_returns_content(self):
        completion = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content='{"decisions": []}'))])
        fake_client = MagicMock()
        fake_client.chat.completions.create = AsyncMock(return_value=completion)

        with patch("app.ai.providers.openai_provider.AsyncOpenAI", return_value=fake_client):
            provider = OpenAIProvider(model="gpt-4o-mini", api_key="test-key", temperature=0.0)

        content = await provider.complete([ChatMessage(role="user", content="hi")], max_output_tokens=500)

        self.assertEqual(content, '{"decisions": []}')
        kwargs = fake_client.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(kwargs["max_tokens"], 500)
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "hi"}])

    async def test_empty_choices_return_empty_string(self):
        fake_client = MagicMock()
        fake_client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(choices=[]))

        with patch("app.ai.providers.openai_provider.AsyncOpenAI", return_value=fake_client):
            provider = OpenAIProvider(model="gpt-4o-mini", api_key="test-key")

        self.assertEqual(await provider.complete([], json_mode=False), "")
        self.assertNotIn("response_format", fake_client.chat.completions.create.call_args.kwargs)


if __name__ == "__main__":
    unittest.main()
