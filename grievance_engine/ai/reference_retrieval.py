"""
Reference retrieval: the collaborator that finds reference material
(arbitral jurisprudence, discipline chapters) relevant to a grievance.

    ReferenceRetriever.retrieve(statement, articles) -> str | None

``None`` means nothing relevant was found; the guidance pipeline then
returns "no guidance" and caches nothing. Failures raise, and the pipeline
reports them as UpstreamUnavailable.

The default ``KnowledgeBaseRetriever`` scores ``ReferenceSection`` rows with
BM25 keyword matching over heading, body and keywords. Vector search is an
external concern; a deployment that has one plugs in its own retriever.
"""

import logging
import math
import re
from abc import ABC, abstractmethod
from collections import defaultdict

from grievance_engine.models.discipline import ReferenceSection

logger = logging.getLogger(__name__)

MIN_TOKEN_LENGTH = 3
DEFAULT_TOP_K = 5


class ReferenceRetriever(ABC):
    """Abstract interface for reference retrieval."""

    @abstractmethod
    def retrieve(self, statement: str, articles: list[str]) -> str | None:
        """Full text of the reference sections relevant to the case, or None."""
        ...


def _tokenize(text: str) -> list[str]:
    """Lowercased word tokens, dropping very short ones."""
    return [t for t in re.findall(r"\b\w+\b", (text or "").lower()) if len(t) >= MIN_TOKEN_LENGTH]


def _section_text(section: ReferenceSection) -> str:
    return " ".join([section.heading or "", section.body or "", " ".join(section.keywords or [])])


def bm25_scores(query: str, documents: dict[int, str], k1: float = 1.2, b: float = 0.75) -> dict[int, float]:
    """BM25 score per document id, only for documents sharing a query token."""
    query_tokens = set(_tokenize(query))
    if not query_tokens or not documents:
        return {}

    df = defaultdict(int)
    doc_tokens = {}
    for doc_id, text in documents.items():
        tokens = _tokenize(text)
        doc_tokens[doc_id] = tokens
        for t in set(tokens):
            df[t] += 1

    n = len(documents)
    avg_dl = sum(len(t) for t in doc_tokens.values()) / max(n, 1)

    scores = {}
    for doc_id, tokens in doc_tokens.items():
        if not tokens:
            continue
        tf_map = defaultdict(int)
        for t in tokens:
            tf_map[t] += 1
        dl = len(tokens)

        score = 0.0
        for qt in query_tokens:
            tf = tf_map.get(qt)
            if not tf:
                continue
            idf = math.log((n - df[qt] + 0.5) / (df[qt] + 0.5) + 1)
            score += idf * (tf * (k1 + 1)) / (tf + k1 * (1 - b + b * dl / max(avg_dl, 1)))
        if score > 0:
            scores[doc_id] = score
    return scores


class KnowledgeBaseRetriever(ReferenceRetriever):
    """Keyword retrieval over the ``reference_sections`` table."""

    def __init__(self, top_k: int = DEFAULT_TOP_K):
        self.top_k = top_k

    def retrieve(self, statement: str, articles: list[str]) -> str | None:
        query = " ".join([statement or ""] + [str(a) for a in (articles or [])])
        sections = ReferenceSection.query.all()
        scores = bm25_scores(query, {s.id: _section_text(s) for s in sections})
        if not scores:
            logger.info("No reference sections matched the case facts")
            return None

        by_id = {s.id: s for s in sections}
        ranked = sorted(scores, key=lambda sid: (-scores[sid], sid))[: self.top_k]
        logger.debug("Reference retrieval picked sections %s", ranked)
        return "\n\n".join(by_id[sid].render() for sid in ranked)
