from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, List, Optional, Set

from pydantic import ValidationError as PydanticValidationError

from .errors import GenerationError, PageAnalysisError, PersistenceWarning, StoreError, ValidationError
from .generator import PageContext, ResponseGenerator
from .models import GenerationSettings
from .page import PageAnalyzer, validate_url
from .registry import DEFAULT_MODEL_ID, ModelDescriptor, get_model
from .repository import Chat, ChatStore, Message, utcnow

logger = logging.getLogger(__name__)

DEFAULT_CHAT_TITLE = "New chat"
TITLE_MAX_CHARS = 50
TITLE_ELLIPSIS = "..."


def make_title(text: str) -> str:
    """Chat title from the first message: 50 characters, then an ellipsis."""
    if len(text) > TITLE_MAX_CHARS:
        return text[:TITLE_MAX_CHARS] + TITLE_ELLIPSIS
    return text


@dataclass(frozen=True)
class Notice:
    title: str
    description: str
    variant: str = "default"  # 'default' | 'destructive'


@dataclass
class SessionState:
    current_chat_id: Optional[str] = None
    messages: List[Message] = field(default_factory=list)
    chats: List[Chat] = field(default_factory=list)
    pending: bool = False
    loading: bool = False
    draft: str = ""
    partial_reply: str = ""
    page_context: Optional[PageContext] = None
    notices: List[Notice] = field(default_factory=list)


class SessionController:
    def __init__(
        self,
        store: ChatStore,
        generator: ResponseGenerator,
        owner_id: Optional[str],
        settings: Optional[GenerationSettings] = None,
        model_id: str = DEFAULT_MODEL_ID,
        page_analyzer: Optional[PageAnalyzer] = None,
    ) -> None:
        self._store = store
        self._generator = generator
        self._owner_id = owner_id
        self._page_analyzer = page_analyzer
        self._model: ModelDescriptor = get_model(model_id)
        self.settings = settings or GenerationSettings()
        self.state = SessionState()
        self.persistence_warnings: List[PersistenceWarning] = []
        self._last_write: Optional[asyncio.Task] = None
        self._background: Set[asyncio.Task] = set()

    @property
    def owner_id(self) -> Optional[str]:
        return self._owner_id

    @property
    def model(self) -> ModelDescriptor:
        return self._model

    # Notices

    def _notify(self, title: str, description: str, destructive: bool = False) -> None:
        self.state.notices.append(
            Notice(title, description, "destructive" if destructive else "default")
        )

    def drain_notices(self) -> List[Notice]:
        notices, self.state.notices = self.state.notices, []
        return notices

    # Background persistence

    def _persist(
        self, what: str, operation: Callable[..., Awaitable[Any]], *args: Any
    ) -> None:
        """Issue a best-effort write after every previously issued one."""
        previous = self._last_write

        async def run() -> None:
            if previous is not None:
                await asyncio.wait([previous])
            try:
                await operation(*args)
            except (StoreError, ValidationError) as e:
                warning = PersistenceWarning(f"Failed to {what}", details=e.message)
                self.persistence_warnings.append(warning)
                logger.warning("Persistence warning: %s: %s", warning.message, e.message)

        task = asyncio.create_task(run())
        self._last_write = task
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def wait_for_persistence(self) -> None:
        """Wait until every write issued so far has reached the store or failed."""
        if self._last_write is not None:
            await asyncio.wait([self._last_write])

    # Chat navigation

    def start_new_chat(self) -> None:
        state = self.state
        state.current_chat_id = None
        state.messages = []
        state.loading = False
        state.partial_reply = ""
        state.page_context = None

    def clear_current_chat(self) -> None:
        self.start_new_chat()
        self._notify("Chat cleared", "Message history cleared")

    async def select_chat(self, chat_id: str) -> bool:
        state = self.state
        previous_chat_id = state.current_chat_id
        state.current_chat_id = chat_id
        state.loading = True
        try:
            # Read our own queued writes back
            await self.wait_for_persistence()
            messages = await self._store.list_messages(chat_id, owner_id=self._owner_id)
        except StoreError as e:
            logger.error("Failed to load messages for chat %s: %s", chat_id, e.message)
            if state.current_chat_id == chat_id:
                state.current_chat_id = previous_chat_id
                state.loading = False
            self._notify("Error", "Could not load messages", destructive=True)
            return False

        if state.current_chat_id != chat_id:
            logger.info("Discarding stale load of chat %s", chat_id)
            return False
        state.messages = list(messages)
        state.partial_reply = ""
        state.page_context = None
        state.loading = False
        return True

    async def refresh_chats(self) -> List[Chat]:
        if not self._owner_id:
            return []
        try:
            await self.wait_for_persistence()
            chats = await self._store.list_chats(self._owner_id)
        except StoreError as e:
            logger.error("Failed to list chats: %s", e.message)
            self._notify("Error", "Could not load chats", destructive=True)
            return self.state.chats
        self.state.chats = list(chats)
        return self.state.chats

    async def delete_chat(self, chat_id: str) -> bool:
        try:
            # Queued writes for this chat must land before it is removed
            await self.wait_for_persistence()
            await self._store.delete_chat(chat_id, owner_id=self._owner_id)
        except StoreError as e:
            logger.error("Failed to delete chat %s: %s", chat_id, e.message)
            self._notify("Error", "Could not delete chat", destructive=True)
            return False

        state = self.state
        state.chats = [chat for chat in state.chats if chat.id != chat_id]
        if state.current_chat_id == chat_id:
            self.start_new_chat()
        self._notify("Chat deleted", "The chat was deleted")
        return True

    # Settings

    def select_model(self, model_id: str) -> ModelDescriptor:
        self._model = get_model(model_id)
        return self._model

    def update_settings(self, **changes: Any) -> GenerationSettings:
        data = self.settings.model_dump()
        data.update({key: value for key, value in changes.items() if value is not None})
        try:
            self.settings = GenerationSettings(**data)
        except PydanticValidationError as e:
            raise ValidationError("Invalid generation settings", details=e.errors()) from e
        return self.settings

    # Page context

    def attach_page_context(self, content: str, url: str) -> PageContext:
        self.state.page_context = PageContext(content=content, url=validate_url(url))
        return self.state.page_context

    async def analyze_page(self, url: str) -> Optional[PageContext]:
        if self._page_analyzer is None:
            raise PageAnalysisError("Page analysis is not configured")
        url = validate_url(url)
        try:
            context = await self._page_analyzer.analyze(url)
        except PageAnalysisError as e:
            logger.warning("Page analysis failed: %s", e.message)
            self._notify("Error", "Could not analyse the page", destructive=True)
            return None
        self.state.page_context = context
        self._notify("Done", "Page analysed and added to the context")
        return context

    # Sending

    async def _create_chat(self) -> Optional[str]:
        try:
            chat_id = await self._store.create_chat(self._owner_id, DEFAULT_CHAT_TITLE)
        except StoreError as e:
            logger.error("Failed to create chat: %s", e.message)
            self._notify("Error", "Could not create chat", destructive=True)
            return None
        now = utcnow()
        self.state.chats.insert(
            0,
            Chat(
                id=chat_id,
                owner_id=self._owner_id,
                title=DEFAULT_CHAT_TITLE,
                created_at=now,
                updated_at=now,
            ),
        )
        return chat_id

    def _retitle_local(self, chat_id: str, title: str) -> None:
        self.state.chats = [
            Chat(chat.id, chat.owner_id, title, chat.created_at, utcnow())
            if chat.id == chat_id
            else chat
            for chat in self.state.chats
        ]

    async def _request_reply(self, prompt: str, chat_id: str) -> str:
        settings = self.settings
        args = (
            prompt,
            self._model.id,
            settings.temperature,
            settings.max_tokens,
            settings.system_prompt,
            self.state.page_context,
        )
        if not settings.stream:
            return await self._generator.generate(*args)

        chunks: List[str] = []
        async for chunk in self._generator.stream(*args):
            chunks.append(chunk)
            if self.state.current_chat_id == chat_id:
                self.state.partial_reply = "".join(chunks)
        return "".join(chunks)

    async def send_user_message(self, text: Optional[str] = None) -> bool:
        """Send a user turn and append the assistant's reply.

        Returns False when the send was not accepted: empty text, a reply
        already pending, or no signed-in user.
        """
        state = self.state
        content = (state.draft if text is None else text).strip()
        if not content or state.pending or not self._owner_id:
            return False

        state.pending = True
        try:
            chat_id = state.current_chat_id
            if chat_id is None:
                chat_id = await self._create_chat()
                if chat_id is None:
                    return False
                if state.current_chat_id is not None:
                    # The user opened another chat while this one was being created
                    logger.info("Abandoning send into new chat %s", chat_id)
                    return False
                state.current_chat_id = chat_id

            first_message = not state.messages
            model = self._model
            state.messages.append(Message.local(chat_id, "user", content))
            state.draft = ""
            self._persist("save user message", self._store.append_message, chat_id, "user", content)
            if first_message:
                title = make_title(content)
                self._retitle_local(chat_id, title)
                self._persist("rename chat", self._store.rename_chat, chat_id, title)

            try:
                reply = await self._request_reply(content, chat_id)
            except GenerationError as e:
                logger.warning("Generation failed for chat %s: %s", chat_id, e.message)
                self._notify("Error", "Could not get a reply from the model", destructive=True)
                return True

            if state.current_chat_id != chat_id:
                logger.info(
                    "Discarding reply for chat %s; session is now on %s",
                    chat_id,
                    state.current_chat_id,
                )
                return True

            state.messages.append(Message.local(chat_id, "assistant", reply, model=model.name))
            self._persist(
                "save assistant message",
                self._store.append_message,
                chat_id,
                "assistant",
                reply,
                model.name,
            )
            return True
        finally:
            state.partial_reply = ""
            state.pending = False
