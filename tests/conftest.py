"""
Shared fixtures: a temporary SQLite store, a failure-injecting store and a
generator whose replies can be held back to force interleavings.
"""

import asyncio
import sqlite3
from typing import List, Optional, Set

import pytest

from chatdesk.errors import GenerationError, StoreError
from chatdesk.generator import PageContext, ResponseGenerator
from chatdesk.repository import SQLiteChatStore
from chatdesk.session import SessionController


class FlakyStore(SQLiteChatStore):
    """SQLite store that fails the operations named in `failing`."""

    def __init__(self, db_path: str) -> None:
        super().__init__(db_path)
        self.failing: Set[str] = set()

    async def _run(self, operation, fn, *args):
        if operation in self.failing:
            raise StoreError(f"Failed to {operation}: injected")
        return await super()._run(operation, fn, *args)


def message_rows(store: SQLiteChatStore, chat_id: str) -> List[tuple]:
    """Raw message rows for a chat, bypassing the store's join on chats."""
    conn = sqlite3.connect(store._db_path)
    try:
        return conn.execute(
            "SELECT role, content FROM messages WHERE chat_id=? ORDER BY seq", (chat_id,)
        ).fetchall()
    finally:
        conn.close()


class GatedGenerator(ResponseGenerator):
    """Replies with a fixed text once its gate is open."""

    def __init__(self, reply: str = "Hi there", error: Optional[str] = None) -> None:
        self.reply = reply
        self.error = error
        self.calls: List[dict] = []
        self.started = asyncio.Event()
        self.gate = asyncio.Event()
        self.gate.set()

    def hold(self) -> None:
        self.gate.clear()

    def release(self) -> None:
        self.gate.set()

    async def generate(
        self,
        prompt: str,
        model_id: str,
        temperature: float,
        max_tokens: int,
        system_prompt: str,
        page_context: Optional[PageContext] = None,
    ) -> str:
        self.calls.append(
            {
                "prompt": prompt,
                "model_id": model_id,
                "temperature": temperature,
                "max_tokens": max_tokens,
                "system_prompt": system_prompt,
                "page_context": page_context,
            }
        )
        self.started.set()
        await self.gate.wait()
        if self.error:
            raise GenerationError(self.error)
        return self.reply


@pytest.fixture
def owner_id():
    return "test_user_123"


@pytest.fixture
def store(tmp_path):
    return FlakyStore(str(tmp_path / "chat.db"))


@pytest.fixture
def generator():
    return GatedGenerator()


@pytest.fixture
def controller(store, generator, owner_id):
    return SessionController(store=store, generator=generator, owner_id=owner_id)
