"""
Conversational orchestrator: one user message in, one grounded reply out.

Builds a bounded prompt from retrieved context, business metrics and recent
history, calls the chat provider once, extracts any chart, and persists the
exchange.
"""

import uuid
from datetime import timedelta
from typing import Any, Dict, List, Optional

import structlog

from rental_rag.config import settings
from rental_rag.database import SourceDatabase
from rental_rag.generate import AnthropicChatProvider, extract_chart
from rental_rag.models import (
    ChatMessage,
    ChatReply,
    ConversationTurn,
    RetrievedDocument,
    utcnow,
)
from rental_rag.retrieve import RetrievalService

logger = structlog.get_logger(__name__)

EMPTY_REPLY = "I apologize, but I was unable to generate a response."

CONTEXT_HEADER = "Relevant data from your database:"


def build_system_prompt(display_name: Optional[str], metrics: Dict[str, Any]) -> str:
    """Fixed assistant instructions, personalised and carrying the metrics snapshot."""
    greeting = f"You're speaking with {display_name}. Be friendly and personalised.\n\n" if display_name else ""

    def metric(key: str) -> Any:
        return metrics.get(key) or 0

    return f"""You are a helpful assistant for a car rental management portal. You help users understand their business data and answer questions about customers, vehicles, rentals, payments, and fines.

{greeting}Current Business Metrics:
- Total Customers: {metric('total_customers')} ({metric('active_customers')} active)
- Total Vehicles: {metric('total_vehicles')} ({metric('available_vehicles')} available)
- Active Rentals: {metric('active_rentals')} of {metric('total_rentals')} total
- Pending Payments: £{metric('pending_payments')}
- Fines: {metric('total_fines')} total ({metric('unpaid_fines')} unpaid)

You have access to search results from the database that will be provided as context. Use this data to answer questions accurately.

When users ask for data visualisations or breakdowns, you can include a chart in your response using this exact format (the system will parse and render it):

---CHART_DATA---
{{"type":"bar","title":"Chart Title","data":[{{"name":"Category 1","value":100}},{{"name":"Category 2","value":200}}]}}
---END_CHART---

Chart types available: "bar", "pie", "line"
Always include the chart AFTER your text explanation.

Guidelines:
- Be concise and helpful
- Reference specific data when available
- If you don't have enough information, say so
- Format currency as £X,XXX
- Use British English spelling and date formats (DD/MM/YYYY)
- When mentioning specific records, include relevant identifiers (rental numbers, registration plates, etc.)"""


def format_context(documents: List[RetrievedDocument]) -> str:
    return "\n\n".join(f"[{doc.source_kind}] {doc.content}" for doc in documents)


class ConversationOrchestrator:
    """Answer a user message in the context of one tenant's data."""

    def __init__(
        self,
        retrieval: RetrievalService,
        database: SourceDatabase,
        chat_provider: AnthropicChatProvider,
        history_window: Optional[int] = None
    ):
        self.retrieval = retrieval
        self.database = database
        self.chat_provider = chat_provider
        self.history_window = settings.history_window if history_window is None else history_window

    async def respond(
        self,
        tenant_id: str,
        user_id: str,
        message: str,
        conversation_id: Optional[str] = None,
        display_name: Optional[str] = None
    ) -> ChatReply:
        """
        Produce the assistant's reply to `message`.

        Retrieval, history, metrics and provider failures propagate before
        anything is persisted. A failure to persist the exchange is logged and
        the reply is still returned.

        Args:
            tenant_id: Tenant whose data grounds the answer
            user_id: Author of the message
            message: The user's message
            conversation_id: Existing conversation; a new one is minted when omitted
            display_name: Name used to personalise the reply

        Returns:
            ChatReply with visible text, conversation id, sources and optional chart
        """
        conversation_id = conversation_id or str(uuid.uuid4())
        log = logger.bind(tenant_id=tenant_id, conversation_id=conversation_id)

        documents = await self.retrieval.search(tenant_id, message)
        history = await self.database.recent_turns(tenant_id, conversation_id, self.history_window)
        metrics = await self.database.get_metrics(tenant_id)

        messages = self.build_messages(message, documents, history, metrics, display_name)
        completion = await self.chat_provider.complete(
            messages,
            temperature=settings.chat_temperature,
            max_tokens=settings.chat_max_tokens,
        )

        processed = extract_chart(completion.content or EMPTY_REPLY)
        reply_text = processed.text or EMPTY_REPLY
        sources = [doc.as_source() for doc in documents]

        user_at = utcnow()
        assistant_at = max(utcnow(), user_at + timedelta(microseconds=1))
        turns = [
            ConversationTurn(
                tenant_id=tenant_id,
                user_id=user_id,
                conversation_id=conversation_id,
                role="user",
                content=message,
                created_at=user_at,
            ),
            ConversationTurn(
                tenant_id=tenant_id,
                user_id=user_id,
                conversation_id=conversation_id,
                role="assistant",
                content=reply_text,
                sources=sources,
                chart=processed.chart,
                created_at=assistant_at,
            ),
        ]
        try:
            await self.database.save_turns(turns)
        except Exception:
            log.exception("conversation_persist_failed")

        log.info(
            "chat_response_complete",
            sources=len(sources),
            history_turns=len(history),
            has_chart=processed.chart is not None,
        )
        return ChatReply(
            reply_text=reply_text,
            conversation_id=conversation_id,
            sources=sources,
            chart=processed.chart,
        )

    @staticmethod
    def build_messages(
        message: str,
        documents: List[RetrievedDocument],
        history: List[ConversationTurn],
        metrics: Dict[str, Any],
        display_name: Optional[str] = None
    ) -> List[ChatMessage]:
        messages = [ChatMessage(role="system", content=build_system_prompt(display_name, metrics))]
        if documents:
            messages.append(ChatMessage(role="system", content=f"{CONTEXT_HEADER}\n\n{format_context(documents)}"))
        messages.extend(ChatMessage(role=turn.role, content=turn.content) for turn in history)
        messages.append(ChatMessage(role="user", content=message))
        return messages
