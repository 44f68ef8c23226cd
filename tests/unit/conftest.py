"""Unit test fixtures: controllable clock, in-process engine and MCP client."""

from __future__ import annotations

from datetime import datetime
from datetime import timedelta
from datetime import UTC

import pytest
from fastmcp import Client

from mnemosync.audit import AuditLogger
from mnemosync.config import AuditConfig
from mnemosync.config import EmbeddingConfig
from mnemosync.engine import MemoryEngine
from mnemosync.models import Importance
from mnemosync.models import LongTermMemory
from mnemosync.models import MemoryType
from mnemosync.similarity import Embedder
from mnemosync.text import tokenize

TOPICS = ("payment", "contract", "vendor", "email")


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2026, 3, 2, 9, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class TopicEmbeddingProvider:
    """One dimension per topic word plus a small bias so no vector is zero."""

    def __init__(self) -> None:
        self.calls: list[list[str]] = []

    async def embed(self, texts: list[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        vectors = []
        for text in texts:
            words = tokenize(text)
            vectors.append([1.0 if t in words else 0.0 for t in TOPICS] + [0.05])
        return vectors


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def audit_config(tmp_path) -> AuditConfig:
    return AuditConfig(file_path=str(tmp_path / "audit.jsonl"))


@pytest.fixture()
def audit_logger(audit_config) -> AuditLogger:
    return AuditLogger(audit_config)


@pytest.fixture()
def topic_provider() -> TopicEmbeddingProvider:
    return TopicEmbeddingProvider()


@pytest.fixture()
def embedder(topic_provider) -> Embedder:
    return Embedder(topic_provider, EmbeddingConfig(dimensions=len(TOPICS) + 1))


@pytest.fixture()
def engine(clock, audit_logger, embedder) -> MemoryEngine:
    return MemoryEngine.in_memory(
        audit_logger=audit_logger, embedder=embedder, clock=clock
    )


@pytest.fixture()
def make_memory(engine, clock):
    """Factory inserting a long-term memory directly into the engine's store."""

    async def _make(
        content: str = "Payment terms are net 30 for contract renewals.",
        *,
        owner_id: str = "user-1",
        memory_type: MemoryType = MemoryType.domain_knowledge,
        importance: Importance = Importance.medium,
        **fields,
    ) -> LongTermMemory:
        now = clock()
        defaults = {
            "created_at": now,
            "updated_at": now,
            "last_accessed_at": now,
            "last_reinforced_at": now,
        }
        defaults.update(fields)
        return await engine.long_term.create(
            LongTermMemory(
                owner_id=owner_id,
                memory_type=memory_type,
                content=content,
                importance=importance,
                **defaults,
            )
        )

    return _make


@pytest.fixture()
async def mcp_client(audit_config, embedder, clock):
    """Yield a FastMCP Client wired to an in-process MnemoSync server."""
    from mnemosync.server import configure
    from mnemosync.server import mcp
    from mnemosync.server import shutdown

    await configure(
        audit_logger=AuditLogger(audit_config), embedder=embedder, clock=clock
    )
    async with Client(mcp) as client:
        yield client
    await shutdown()
