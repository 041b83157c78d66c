"""AI provider adapters, outbound rate limiting and retries."""

from .base import ChatProvider, EmbeddingProvider, ProviderKind
from .factory import ProviderFactory
from .http import HttpChatProvider, HttpConnection, HttpEmbeddingProvider, HttpProviderSpec
from .offline import HashEmbeddingProvider, TemplateChatProvider
from .ratelimit import TokenBucket
from .retry import DEFAULT_RETRY_POLICY, RetryPolicy, compute_delay, retry_with_backoff

__all__ = [
    "ChatProvider",
    "DEFAULT_RETRY_POLICY",
    "EmbeddingProvider",
    "HashEmbeddingProvider",
    "HttpChatProvider",
    "HttpConnection",
    "HttpEmbeddingProvider",
    "HttpProviderSpec",
    "ProviderFactory",
    "ProviderKind",
    "RetryPolicy",
    "TemplateChatProvider",
    "TokenBucket",
    "compute_delay",
    "retry_with_backoff",
]
