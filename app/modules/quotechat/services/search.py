import logging
from typing import Any, List, Optional

from openai import AsyncOpenAI
from qdrant_client import AsyncQdrantClient
from qdrant_client.models import FieldCondition, Filter, MatchValue

from app.modules.quotechat.schema.chat import Passage, SessionReference
from app.modules.quotechat.services.errors import ChatError, ChatErrorCode
from app.modules.quotechat.services.retry import EMBEDDING_RETRY, with_retry
from core.utils.perf import profile_stage

logger = logging.getLogger(__name__)


def session_filter(session_ref: Optional[SessionReference]) -> Optional[Filter]:
    if session_ref is None:
        return None
    conditions = [FieldCondition(key="session", match=MatchValue(value=session_ref.session))]
    if session_ref.question is not None:
        conditions.append(FieldCondition(key="question", match=MatchValue(value=session_ref.question)))
    return Filter(must=conditions)


def passage_from_payload(payload: dict[str, Any]) -> Optional[Passage]:
    """Map a stored point payload to a Passage; points missing text are skipped."""
    text = (payload.get("text") or "").strip()
    if not text:
        return None
    reference = payload.get("reference")
    if not reference and payload.get("session") is not None:
        reference = f"{payload['session']}.{payload.get('question', 0)}"
    return Passage(reference=str(reference or ""), text=text, url=str(payload.get("url") or ""))


class QdrantPassageSearcher:
    """Embeds the query with OpenAI and runs a vector query against the corpus collection."""

    def __init__(self, qdrant: AsyncQdrantClient, llm_client: AsyncOpenAI, settings):
        self._qdrant = qdrant
        self._llm = llm_client
        self._settings = settings

    @profile_stage("embedding")
    async def embed(self, query: str) -> List[float]:
        async def _call():
            return await self._llm.embeddings.create(model=self._settings.EMBEDDING_MODEL, input=query)

        try:
            res = await with_retry(_call, EMBEDDING_RETRY, name="embedding")
        except Exception as exc:
            raise ChatError(ChatErrorCode.EMBEDDING_FAILED, cause=exc) from exc
        return res.data[0].embedding

    @profile_stage("vector_search")
    async def query(self, vector: List[float], session_ref: Optional[SessionReference] = None) -> List[Passage]:
        limit = self._settings.SEARCH_SESSION_TOP_K if session_ref else self._settings.SEARCH_TOP_K
        try:
            res = await self._qdrant.query_points(
                collection_name=self._settings.QDRANT_COLLECTION,
                query=vector,
                query_filter=session_filter(session_ref),
                limit=limit,
                with_payload=True,
                with_vectors=False,
            )
        except Exception as exc:
            raise ChatError(ChatErrorCode.SEARCH_FAILED, cause=exc) from exc

        passages = []
        for point in res.points:
            passage = passage_from_payload(getattr(point, "payload", None) or {})
            if passage is not None:
                passages.append(passage)
        return passages

    async def search(self, query: str, session_ref: Optional[SessionReference] = None) -> List[Passage]:
        vector = await self.embed(query)
        passages = await self.query(vector, session_ref)
        logger.info(f"Search returned {len(passages)} passages (session_ref={session_ref})")
        return passages
