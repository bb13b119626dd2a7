from __future__ import annotations

import asyncio
import logging
import os
import sqlite3
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterator, List, Optional

from .errors import StoreError, ValidationError

logger = logging.getLogger(__name__)

ROLES = ("user", "assistant")


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Chat:
    id: str
    owner_id: str
    title: str
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class Message:
    id: str
    chat_id: str
    role: str  # 'user' | 'assistant'
    content: str
    created_at: datetime
    model: Optional[str] = None  # display name, assistant messages only

    @classmethod
    def local(
        cls, chat_id: str, role: str, content: str, model: Optional[str] = None
    ) -> "Message":
        """Build a message for optimistic display, before the store assigns an id."""
        return cls(
            id=uuid.uuid4().hex,
            chat_id=chat_id,
            role=role,
            content=content,
            created_at=utcnow(),
            model=model,
        )


class ChatStore:
    """Boundary to the persistence collaborator. All operations are coroutines."""

    async def create_chat(self, owner_id: str, title: str) -> str:
        raise NotImplementedError

    async def list_chats(self, owner_id: str) -> List[Chat]:
        raise NotImplementedError

    async def delete_chat(self, chat_id: str, owner_id: Optional[str] = None) -> None:
        raise NotImplementedError

    async def list_messages(
        self, chat_id: str, owner_id: Optional[str] = None
    ) -> List[Message]:
        raise NotImplementedError

    async def append_message(
        self, chat_id: str, role: str, content: str, model: Optional[str] = None
    ) -> str:
        raise NotImplementedError

    async def rename_chat(self, chat_id: str, title: str) -> None:
        raise NotImplementedError


class SQLiteChatStore(ChatStore):
    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
        try:
            self._init_db()
        except sqlite3.Error as e:
            raise StoreError(f"Failed to initialise chat database: {e}") from e

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self._db_path)
        conn.row_factory = sqlite3.Row
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            cur = conn.cursor()
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS chats (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL,
                    title TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            cur.execute(
                """
                CREATE TABLE IF NOT EXISTS messages (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    id TEXT NOT NULL UNIQUE,
                    chat_id TEXT NOT NULL,
                    role TEXT NOT NULL CHECK(role IN ('user','assistant')),
                    content TEXT NOT NULL,
                    model TEXT,
                    created_at TEXT NOT NULL,
                    FOREIGN KEY(chat_id) REFERENCES chats(id) ON DELETE CASCADE
                )
                """
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_messages_chat_created ON messages(chat_id, created_at)"
            )
            cur.execute(
                "CREATE INDEX IF NOT EXISTS idx_chats_owner_updated ON chats(owner_id, updated_at)"
            )
            conn.commit()

    async def _run(self, operation: str, fn, *args):
        try:
            return await asyncio.to_thread(fn, *args)
        except sqlite3.Error as e:
            logger.error("Chat store %s failed: %s", operation, e)
            raise StoreError(f"Failed to {operation}: {e}") from e

    # Chats

    def _create_chat(self, owner_id: str, title: str) -> str:
        chat_id = str(uuid.uuid4())
        now = utcnow().isoformat()
        with self._connect() as conn:
            conn.execute(
                "INSERT INTO chats (id, owner_id, title, created_at, updated_at) VALUES (?,?,?,?,?)",
                (chat_id, owner_id, title, now, now),
            )
            conn.commit()
        return chat_id

    async def create_chat(self, owner_id: str, title: str) -> str:
        return await self._run("create chat", self._create_chat, owner_id, title)

    def _list_chats(self, owner_id: str) -> List[Chat]:
        with self._connect() as conn:
            rows = conn.execute(
                "SELECT id, owner_id, title, created_at, updated_at FROM chats "
                "WHERE owner_id=? ORDER BY updated_at DESC, rowid DESC",
                (owner_id,),
            ).fetchall()
        return [
            Chat(
                id=row["id"],
                owner_id=row["owner_id"],
                title=row["title"],
                created_at=datetime.fromisoformat(row["created_at"]),
                updated_at=datetime.fromisoformat(row["updated_at"]),
            )
            for row in rows
        ]

    async def list_chats(self, owner_id: str) -> List[Chat]:
        return await self._run("list chats", self._list_chats, owner_id)

    def _delete_chat(self, chat_id: str, owner_id: Optional[str]) -> None:
        with self._connect() as conn:
            if owner_id is not None:
                owned = conn.execute(
                    "SELECT 1 FROM chats WHERE id=? AND owner_id=?", (chat_id, owner_id)
                ).fetchone()
                if owned is None:
                    # Already gone, or not ours: nothing to delete either way
                    return
            # Delete messages then chat
            conn.execute("DELETE FROM messages WHERE chat_id=?", (chat_id,))
            conn.execute("DELETE FROM chats WHERE id=?", (chat_id,))
            conn.commit()

    async def delete_chat(self, chat_id: str, owner_id: Optional[str] = None) -> None:
        await self._run("delete chat", self._delete_chat, chat_id, owner_id)

    def _rename_chat(self, chat_id: str, title: str) -> None:
        with self._connect() as conn:
            conn.execute(
                "UPDATE chats SET title=?, updated_at=? WHERE id=?",
                (title, utcnow().isoformat(), chat_id),
            )
            conn.commit()

    async def rename_chat(self, chat_id: str, title: str) -> None:
        await self._run("rename chat", self._rename_chat, chat_id, title)

    # Messages

    def _append_message(
        self, chat_id: str, role: str, content: str, model: Optional[str]
    ) -> str:
        message_id = str(uuid.uuid4())
        now = utcnow().isoformat()
        with self._connect() as conn:
            cur = conn.execute(
                "INSERT INTO messages (id, chat_id, role, content, model, created_at) "
                "SELECT ?,?,?,?,?,? WHERE EXISTS (SELECT 1 FROM chats WHERE id=?)",
                (message_id, chat_id, role, content, model, now, chat_id),
            )
            if cur.rowcount == 0:
                raise StoreError(f"Chat {chat_id} does not exist")
            conn.execute("UPDATE chats SET updated_at=? WHERE id=?", (now, chat_id))
            conn.commit()
        return message_id

    async def append_message(
        self, chat_id: str, role: str, content: str, model: Optional[str] = None
    ) -> str:
        if role not in ROLES:
            raise ValidationError(f"Unknown message role: {role}")
        return await self._run(
            "append message", self._append_message, chat_id, role, content, model
        )

    def _list_messages(self, chat_id: str, owner_id: Optional[str]) -> List[Message]:
        query = (
            "SELECT m.id, m.chat_id, m.role, m.content, m.model, m.created_at "
            "FROM messages m JOIN chats c ON c.id = m.chat_id WHERE m.chat_id=?"
        )
        params: tuple = (chat_id,)
        if owner_id is not None:
            query += " AND c.owner_id=?"
            params += (owner_id,)
        # seq breaks ties between equal timestamps in insertion order
        query += " ORDER BY m.created_at ASC, m.seq ASC"
        with self._connect() as conn:
            rows = conn.execute(query, params).fetchall()
        return [
            Message(
                id=row["id"],
                chat_id=row["chat_id"],
                role=row["role"],
                content=row["content"],
                created_at=datetime.fromisoformat(row["created_at"]),
                model=row["model"],
            )
            for row in rows
        ]

    async def list_messages(
        self, chat_id: str, owner_id: Optional[str] = None
    ) -> List[Message]:
        return await self._run("list messages", self._list_messages, chat_id, owner_id)
