import os

os.environ.setdefault("LLM_PROVIDER", "echo")
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("AUTO_RESUME", "false")

from typing import List, Optional

import pytest
from langchain_core.messages import AIMessageChunk

from screentech.agent.provider import ChatProvider
from screentech.agent.session import SessionManager, build_manager
from screentech.app.config import Settings
from screentech.database.storage import InMemoryStorage


class FakeChatModel:
    """Streams scripted chunks and records every prompt it receives."""

    def __init__(self, chunks: Optional[List[str]] = None, fail_after: Optional[int] = None) -> None:
        self.chunks = chunks if chunks is not None else ["Step 1: ", "Print a ", "**Nozzle Check**."]
        self.fail_after = fail_after
        self.calls: List[list] = []

    async def astream(self, messages):
        self.calls.append(list(messages))
        for index, chunk in enumerate(self.chunks):
            if self.fail_after is not None and index >= self.fail_after:
                raise ConnectionError("provider unreachable")
            yield AIMessageChunk(content=chunk)
        if self.fail_after is not None and self.fail_after >= len(self.chunks):
            raise ConnectionError("stream ended abnormally")


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        llm_provider="echo",
        storage_backend="memory",
        auto_resume=False,
        corrupt_record_policy="reset",
    )


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def fake_model() -> FakeChatModel:
    return FakeChatModel()


@pytest.fixture
def provider(fake_model: FakeChatModel) -> ChatProvider:
    return ChatProvider(fake_model)


@pytest.fixture
def manager(settings: Settings, storage: InMemoryStorage, provider: ChatProvider) -> SessionManager:
    return build_manager(settings, storage, provider)
