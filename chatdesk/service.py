from __future__ import annotations

import logging
from collections import OrderedDict
from typing import Optional

from .config import Settings, get_settings
from .errors import AuthRequired
from .generator import ResponseGenerator, TemplateResponseGenerator
from .models import GenerationSettings
from .page import HttpPageAnalyzer, PageAnalyzer, SimulatedPageAnalyzer
from .repository import ChatStore, SQLiteChatStore
from .session import SessionController

logger = logging.getLogger(__name__)


def build_generator(settings: Settings) -> ResponseGenerator:
    if settings.generator == "kernel":
        # semantic-kernel is only imported when the real backend is configured
        from .kernel_generator import KernelResponseGenerator

        return KernelResponseGenerator(settings)
    return TemplateResponseGenerator(
        min_delay=settings.reply_delay_min, max_delay=settings.reply_delay_max
    )


def build_page_analyzer(settings: Settings) -> PageAnalyzer:
    if settings.page_analyzer == "http":
        return HttpPageAnalyzer(timeout=settings.page_fetch_timeout)
    return SimulatedPageAnalyzer()


class ChatService:
    """Singleton-style service holding the store, the generator and one session per user."""

    _instance: Optional["ChatService"] = None

    def __init__(
        self,
        settings: Optional[Settings] = None,
        store: Optional[ChatStore] = None,
        generator: Optional[ResponseGenerator] = None,
        page_analyzer: Optional[PageAnalyzer] = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._store = store or SQLiteChatStore(self._settings.chat_db_path)
        self._generator = generator or build_generator(self._settings)
        self._page_analyzer = page_analyzer or build_page_analyzer(self._settings)
        self._sessions: OrderedDict[str, SessionController] = OrderedDict()
        logger.info(
            "Chat service ready: generator=%s page_analyzer=%s db=%s",
            type(self._generator).__name__,
            type(self._page_analyzer).__name__,
            self._settings.chat_db_path,
        )

    @classmethod
    def instance(cls) -> "ChatService":
        if cls._instance is None:
            cls._instance = ChatService()
        return cls._instance

    @classmethod
    def reset(cls) -> None:
        cls._instance = None

    def store(self) -> ChatStore:
        return self._store

    def default_settings(self) -> GenerationSettings:
        return GenerationSettings(
            temperature=self._settings.temperature,
            max_tokens=self._settings.max_tokens,
            system_prompt=self._settings.system_prompt,
            stream=self._settings.stream_response,
        )

    def session_for(self, owner_id: Optional[str]) -> SessionController:
        if not owner_id:
            raise AuthRequired("Sign in to chat")
        session = self._sessions.get(owner_id)
        if session is not None:
            self._sessions.move_to_end(owner_id)
        else:
            session = SessionController(
                store=self._store,
                generator=self._generator,
                owner_id=owner_id,
                settings=self.default_settings(),
                model_id=self._settings.default_model_id,
                page_analyzer=self._page_analyzer,
            )
            self._sessions[owner_id] = session
            self._evict_idle()
        return session

    def _evict_idle(self) -> None:
        """Drop least recently used sessions over the limit, skipping ones with a reply in flight."""
        excess = len(self._sessions) - self._settings.max_sessions
        if excess <= 0:
            return
        # The newest entry is the session being handed out
        for owner_id in list(self._sessions)[:-1]:
            if excess <= 0:
                break
            session = self._sessions[owner_id]
            if session.state.pending:
                continue
            del self._sessions[owner_id]
            excess -= 1
            logger.info("Evicted idle session for %s", owner_id)
