from __future__ import annotations

import httpx
from openai import AsyncOpenAI, DefaultAsyncHttpxClient

_default_openai_key: str | None = None
_default_openai_client: AsyncOpenAI | None = None
_http_client: httpx.AsyncClient | None = None


def set_default_openai_key(key: str) -> None:
    global _default_openai_key
    _default_openai_key = key


def get_default_openai_key() -> str | None:
    return _default_openai_key


def set_default_openai_client(client: AsyncOpenAI) -> None:
    global _default_openai_client
    _default_openai_client = client


def get_default_openai_client() -> AsyncOpenAI | None:
    return _default_openai_client


# One httpx client for every model we build, so connection pools are shared.
def shared_http_client() -> httpx.AsyncClient:
    global _http_client
    if _http_client is None:
        _http_client = DefaultAsyncHttpxClient()
    return _http_client


def get_or_create_client() -> AsyncOpenAI:
    """The default client if one was set, else a new client on the shared http client. The API key
    comes from `set_default_openai_key` or the `OPENAI_API_KEY` environment variable."""
    client = get_default_openai_client()
    if client is not None:
        return client
    return AsyncOpenAI(api_key=get_default_openai_key(), http_client=shared_http_client())
