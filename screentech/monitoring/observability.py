"""Error reporting, tracing and Prometheus metrics for the press assistant."""
from __future__ import annotations

import logging
import os

import sentry_sdk
from langsmith import Client as LangSmithClient
from prometheus_client import Counter, Histogram

from screentech.app.config import Settings

logger = logging.getLogger(__name__)

CHAT_REQUESTS = Counter(
    "screentech_chat_requests_total", "Total chat requests", labelnames=("endpoint",)
)
CHAT_LATENCY = Histogram(
    "screentech_chat_latency_seconds", "Latency of streamed chat replies", labelnames=("endpoint",)
)
STREAM_FAILURES = Counter(
    "screentech_stream_failures_total", "Reply streams that ended in a provider error"
)
FIXES_VERIFIED = Counter(
    "screentech_fixes_verified_total", "Verified fixes added to a knowledge base"
)


def setup_observability(settings: Settings) -> LangSmithClient | None:
    if settings.sentry_dsn:
        sentry_sdk.init(dsn=settings.sentry_dsn, traces_sample_rate=0.2, environment=settings.environment)
        logger.info("Sentry error reporting enabled (environment=%s)", settings.environment)

    langsmith_client: LangSmithClient | None = None
    if settings.langsmith_api_key:
        langsmith_client = LangSmithClient(api_key=settings.langsmith_api_key)
        logger.info("Tracing provider calls to LangSmith project %s", settings.langsmith_project)
        os.environ.setdefault("LANGCHAIN_TRACING_V2", "true")
        os.environ.setdefault("LANGCHAIN_PROJECT", settings.langsmith_project)
        os.environ.setdefault("LANGCHAIN_ENDPOINT", "https://api.smith.langchain.com")

    return langsmith_client
