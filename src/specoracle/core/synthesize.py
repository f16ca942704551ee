"""Answer synthesis strictly from retrieved specification excerpts."""

import logging
import os
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from dotenv import load_dotenv

from .models import ChunkMatch, ConversationTurn

load_dotenv()

logger = logging.getLogger(__name__)


SYSTEM_PROMPT = """You are an expert assistant for WVDOH (West Virginia Division of Highways) construction specifications.
Your role is to help construction estimators and engineers understand specification requirements.

When answering questions:
1. Be precise and cite the relevant section numbers
2. Use technical construction terminology appropriately
3. If measurement or payment methods are mentioned, highlight them
4. If there are specific requirements or thresholds, state them clearly
5. If the information to answer the question is not in the provided context, say so clearly
6. If this is a follow-up question, consider the conversation history for context

Keep answers concise but complete. Focus on actionable information for bid estimating."""

CONTEXT_SEPARATOR = "\n\n---\n\n"


@dataclass
class SynthesisConfig:
    """Configuration for answer synthesis."""
    model: str = "gpt-4o-mini"
    max_tokens: int = 1024
    temperature: float = 0.2
    timeout: float = 30.0
    history_window: int = 6


def get_synthesis_config() -> SynthesisConfig:
    """Get synthesis configuration from environment."""
    return SynthesisConfig(
        model=os.getenv("SYNTHESIS_MODEL", "gpt-4o-mini"),
        max_tokens=int(os.getenv("SYNTHESIS_MAX_TOKENS", "1024")),
        temperature=float(os.getenv("SYNTHESIS_TEMPERATURE", "0.2")),
        timeout=float(os.getenv("SYNTHESIS_TIMEOUT", "30")),
    )


def build_context_block(chunks: List[ChunkMatch]) -> str:
    """Number each excerpt as a source the answer can cite."""
    return CONTEXT_SEPARATOR.join(
        f"[Source {i}: {chunk.section_context}]\n{chunk.content}"
        for i, chunk in enumerate(chunks, 1)
    )


def format_pay_item_context(pay_item_info: Optional[Dict[str, Any]]) -> str:
    if not pay_item_info:
        return ""

    lines = [f"Pay Item {pay_item_info['item_number']} Information:"]
    if pay_item_info.get("item_description"):
        lines.append(f"- Description: {pay_item_info['item_description']}")
    if pay_item_info.get("unit"):
        lines.append(f"- Unit: {pay_item_info['unit']}")
    if pay_item_info.get("section_number"):
        lines.append(f"- Governing section: {pay_item_info['section_number']}")
    return "\n".join(lines)


def build_user_prompt(query: str, chunks: List[ChunkMatch], pay_item_info: Optional[Dict[str, Any]] = None) -> str:
    parts = [
        "Based on the following WVDOH specification excerpts, answer this question:",
        f"Question: {query}",
    ]
    pay_item_context = format_pay_item_context(pay_item_info)
    if pay_item_context:
        parts.append(pay_item_context)
    parts.append(f"Specification Context:\n{build_context_block(chunks)}")
    parts.append("Provide a clear, concise answer citing the relevant sections.")
    return "\n\n".join(parts)


def build_messages(
    query: str,
    chunks: List[ChunkMatch],
    history: Optional[List[ConversationTurn]] = None,
    pay_item_info: Optional[Dict[str, Any]] = None,
    history_window: int = 6,
) -> List[Dict[str, str]]:
    """
    Assemble the completion messages: recent history, then the grounded question.

    Args:
        query: The user's question
        chunks: Retrieved excerpts in rank order
        history: Prior conversation turns, oldest first
        pay_item_info: Pay item row when the query was filtered by pay item
        history_window: Number of most recent turns to keep

    Returns:
        Messages in role/content form, ending with the user prompt
    """
    messages: List[Dict[str, str]] = []
    if history and history_window > 0:
        for turn in history[-history_window:]:
            messages.append({"role": turn.role, "content": turn.content})

    messages.append({"role": "user", "content": build_user_prompt(query, chunks, pay_item_info)})
    return messages


class OpenAICompleter:
    """Chat completion capability: complete(system_prompt, messages) -> text."""

    def __init__(self, client: Optional[openai.OpenAI] = None, config: Optional[SynthesisConfig] = None):
        self.config = config or get_synthesis_config()
        if client is None:
            api_key = os.getenv("OPENAI_API_KEY")
            if not api_key:
                raise ValueError("OpenAI API key not found")
            client = openai.OpenAI(api_key=api_key, max_retries=0)
        self.client = client

    def complete(self, system_prompt: str, messages: List[Dict[str, str]]) -> str:
        response = self.client.chat.completions.create(
            model=self.config.model,
            messages=[{"role": "system", "content": system_prompt}] + messages,
            temperature=self.config.temperature,
            max_tokens=self.config.max_tokens,
            timeout=self.config.timeout,
        )
        if not response.choices:
            logger.warning("Completion returned no choices")
            return ""
        return response.choices[0].message.content or ""


def synthesize_answer(
    completer: OpenAICompleter,
    query: str,
    chunks: List[ChunkMatch],
    history: Optional[List[ConversationTurn]] = None,
    pay_item_info: Optional[Dict[str, Any]] = None,
) -> Optional[str]:
    """
    Ask the completion service for a cited answer.

    Returns None when there is nothing to ground on or the service fails; the
    caller still has the retrieval results.
    """
    if not chunks:
        return None

    messages = build_messages(
        query, chunks, history, pay_item_info, history_window=completer.config.history_window
    )
    try:
        answer = completer.complete(SYSTEM_PROMPT, messages)
    except Exception as e:
        logger.warning(f"Synthesis failed, returning retrieval results only: {e}")
        return None

    logger.info(f"Synthesized answer from {len(chunks)} excerpts")
    return answer or None
