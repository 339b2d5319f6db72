"""Retrieval-augmented query flow over conversation memory."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import date
from typing import Any

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_core.prompts import ChatPromptTemplate, MessagesPlaceholder

from knowledge_agent.agent.fallback import extractive_reply
from knowledge_agent.config import AgentConfig
from knowledge_agent.memory.chat_memory import ConversationMemory
from knowledge_agent.obs.logs import Timer
from knowledge_agent.retrieval.retriever import ContentRetriever
from knowledge_agent.types import AgentAnswer, Message, ScoredRecord

logger = logging.getLogger(__name__)


class KnowledgeAgent:
    """Answers one user turn from retrieved context and chat history.

    Message order sent to the model:
    `[system prompt with context and date] + [history, oldest first] + [user]`.
    The user message and the reply are appended to memory only after the model
    returns, so a failed turn leaves the history untouched.
    """

    def __init__(
        self,
        *,
        retriever: ContentRetriever,
        memory: ConversationMemory,
        llm: Any | None = None,
        config: AgentConfig | None = None,
        today: Callable[[], date] = date.today,
    ) -> None:
        self.retriever = retriever
        self.memory = memory
        self.llm = llm
        self.config = config or AgentConfig()
        self._today = today
        self.prompt = ChatPromptTemplate.from_messages(
            [
                ("system", self.config.system_prompt),
                MessagesPlaceholder(variable_name="history", optional=True),
                ("human", "{question}"),
            ]
        )

    def answer(self, conversation_id: str, user_message: str) -> AgentAnswer:
        """Run the query flow for one message.

        Raises:
            EmbeddingFailure: the query could not be embedded.
            MemoryStoreFailure: chat history could not be read or written.
        """

        with Timer() as timer:
            sources = self.retriever.retrieve(user_message)
            history = self.memory.get(conversation_id)
            messages = self.build_messages(user_message, sources, history)

            if self.llm is None:
                reply = extractive_reply(sources)
            else:
                reply = self.llm.invoke(messages)
            content = _message_text(reply)

            self.memory.extend(
                conversation_id,
                [
                    Message(role="user", text=user_message),
                    Message(role="assistant", text=content),
                ],
            )

        logger.info(
            "Answered conversation %s with %d sources and %d history messages in %.0f ms",
            conversation_id,
            len(sources),
            len(history),
            timer.elapsed_ms,
        )
        return AgentAnswer(
            conversation_id=conversation_id,
            content=content,
            finish_reason=_finish_reason(reply),
            sources=sources,
        )

    def build_messages(
        self,
        user_message: str,
        sources: list[ScoredRecord],
        history: list[Message],
    ) -> list[BaseMessage]:
        context = "\n\n".join(hit.record.text.strip() for hit in sources)
        return self.prompt.format_messages(
            current_date=self._today().isoformat(),
            context=context or self.config.no_context_text,
            history=[to_langchain_message(message) for message in history],
            question=user_message,
        )


def to_langchain_message(message: Message) -> BaseMessage:
    if message.role == "user":
        return HumanMessage(content=message.text)
    if message.role == "assistant":
        return AIMessage(content=message.text)
    return SystemMessage(content=message.text)


def _message_text(reply: Any) -> str:
    content = getattr(reply, "content", reply)
    if isinstance(content, list):
        parts: list[str] = []
        for item in content:
            if isinstance(item, dict) and "text" in item:
                parts.append(str(item["text"]))
            else:
                parts.append(str(item))
        return " ".join(parts).strip()
    return str(content)


def _finish_reason(reply: Any) -> str:
    metadata = getattr(reply, "response_metadata", None) or {}
    return str(metadata.get("finish_reason") or "stop")
