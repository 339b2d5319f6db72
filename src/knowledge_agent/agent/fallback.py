"""Deterministic reply used when no external LLM is configured."""

from __future__ import annotations

from html import escape

from langchain_core.messages import AIMessage

from knowledge_agent.types import ScoredRecord

NO_EVIDENCE_REPLY = "<p>I could not find verified information about that in the indexed pages.</p>"


def extractive_reply(sources: list[ScoredRecord]) -> AIMessage:
    """Answer from retrieved passages verbatim, citing their source pages.

    Keeps the same message contract as a chat model so the query flow and
    memory handling do not depend on whether an LLM is available.
    """

    if not sources:
        return AIMessage(content=NO_EVIDENCE_REPLY, response_metadata={"finish_reason": "stop"})

    parts: list[str] = []
    for hit in sources:
        source = hit.record.metadata.get("source", "")
        body = escape(" ".join(hit.record.text.split()))
        if source:
            parts.append(f'<p>{body} (<a href="{escape(str(source))}">source</a>)</p>')
        else:
            parts.append(f"<p>{body}</p>")
    return AIMessage(content="\n".join(parts), response_metadata={"finish_reason": "stop"})
