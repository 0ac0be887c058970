"""Language backends and the Notion workspace store."""

from zentry_books.clients.base import BackendResponse, LLMBackend
from zentry_books.clients.claude import ClaudeClient
from zentry_books.clients.gemini import GeminiClient
from zentry_books.clients.notion import NotionClient
from zentry_books.clients.ollama import OllamaClient
from zentry_books.clients.openai_client import OpenAIClient

__all__ = [
    "BackendResponse",
    "LLMBackend",
    "ClaudeClient",
    "OpenAIClient",
    "GeminiClient",
    "OllamaClient",
    "NotionClient",
]
