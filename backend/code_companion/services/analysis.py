"""End-to-end analysis: embed, retrieve, analyze, persist."""

from __future__ import annotations

from typing import Any, AsyncIterator

from code_companion.analysis.engine import AnalysisEngine, related_commit, related_pr, related_ticket
from code_companion.core.logging import get_logger
from code_companion.db.store import KnowledgeStore
from code_companion.ingest.embeddings import EmbeddingModel
from code_companion.models.dto import AnalysisResult, StreamAnalyzeRequest
from code_companion.models.entities import ConversationMessage
from code_companion.retrieval.search import RetrievalService
from code_companion.services.project import ProjectService
from code_companion.utils.time import now_ms, utc_now

logger = get_logger(__name__)

StreamEvent = tuple[str, dict[str, Any]]


class AnalysisService:
    def __init__(
        self,
        embedding_model: EmbeddingModel,
        retrieval: RetrievalService,
        engine: AnalysisEngine,
        store: KnowledgeStore,
        project: ProjectService,
    ) -> None:
        self.embedding_model = embedding_model
        self.retrieval = retrieval
        self.engine = engine
        self.store = store
        self.project = project

    async def submit_analysis(self, input_text: str, input_type: str) -> AnalysisResult:
        logger.info("Starting analysis for input type: %s", input_type)
        query_vector = await self.embedding_model.embed(input_text)
        matches = await self.retrieval.search_all(query_vector, input_text)
        logger.info(
            "Found %s PRs, %s commits, %s tickets",
            len(matches.prs),
            len(matches.commits),
            len(matches.tickets),
        )
        result = await self.engine.analyze(
            input_text,
            input_type,
            matches.prs,
            matches.commits,
            matches.tickets,
            project_context=self.project.context(),
        )
        try:
            self.store.save_analysis(input_text, input_type, query_vector, result.to_payload())
        except Exception as exc:
            logger.warning("Failed to record analysis history: %s", exc)
        return result

    def recent(self, limit: int = 20) -> list[dict[str, Any]]:
        return self.store.recent_analyses(limit)

    async def stream(self, request: StreamAnalyzeRequest) -> AsyncIterator[StreamEvent]:
        """Yield ``(event, data)`` pairs for the SSE endpoint."""
        yield "stage", {"stage": "thinking", "message": "Understanding your query..."}
        query_vector = await self.embedding_model.embed(request.input_text)

        yield "stage", {"stage": "searching", "message": "Checking codebase..."}
        matches = await self.retrieval.search_all(query_vector, request.input_text)
        yield "stage", {
            "stage": "searching",
            "message": f"Found {len(matches.prs)} PRs, {len(matches.commits)} commits",
        }

        conversation_id = request.conversation_id or f"convo-{now_ms()}"
        history = self.store.get_history(conversation_id)
        if not history and request.messages:
            history = [
                ConversationMessage(role=message.role, content=message.text, timestamp=utc_now())
                for message in request.messages
            ]

        partial = {
            "status": "unknown",
            "confidence": 0,
            "summary": "Follow-up analysis..." if history else "Analysis in progress...",
            "rootCause": "",
            "explanation": "",
            "relatedPRs": [
                {
                    **related_pr(match).model_dump(by_alias=True, mode="json"),
                    "whyRelevant": "High similarity match" if match.similarity > 0.6 else None,
                }
                for match in matches.prs
            ],
            "relatedCommits": [related_commit(m).model_dump(by_alias=True, mode="json") for m in matches.commits],
            "relatedTickets": [related_ticket(m).model_dump(by_alias=True, mode="json") for m in matches.tickets],
            "filesImpacted": [],
        }
        yield "result", partial

        yield "stage", {"stage": "analyzing", "message": "Generating response..."}
        self.store.append_message(conversation_id, "user", request.input_text)
        chunks: list[str] = []
        async for chunk in self.engine.analyze_stream(
            request.input_text,
            request.input_type,
            matches.prs,
            matches.commits,
            matches.tickets,
            history=history,
            project_context=self.project.context(),
        ):
            chunks.append(chunk)
            yield "content", {"chunk": chunk}
        self.store.append_message(conversation_id, "model", "".join(chunks))
        yield "complete", {"conversationId": conversation_id}


__all__ = ["AnalysisService", "StreamEvent"]
