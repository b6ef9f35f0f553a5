"""
Discipline guidance: populates and serves the Discipline-Guidance Cache.

Pipeline (``DisciplineGuidanceService.get_guidance``):
    1. cache hit → return it (skipped when ``force_refresh``)
    2. retrieve reference material for the case facts
       (nothing relevant → "no_guidance", nothing cached)
    3. ask the LLM to extract the relevant 20-30 % of that material
       (empty answer → UpstreamUnavailable)
    4. tag the extraction with misconduct topics
    5. upsert into the cache

Remote collaborator calls run on a worker thread and are abandoned after
``UPSTREAM_TIMEOUT_SECONDS``. Any failure in steps 2-3 raises
UpstreamUnavailableError before anything is written, so an existing entry
survives a failed forced refresh.

Usage:
    service = current_app.extensions["discipline_guidance"]
    result = service.get_guidance(ctx, grievance_id)
    if result.status != "no_guidance":
        prompt_context = result.relevant_sections
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from dataclasses import dataclass, field
from datetime import datetime

from grievance_engine.ai.discipline_cache import DisciplineGuidanceCache, discipline_cache
from grievance_engine.ai.gateway import LLMGateway
from grievance_engine.ai.reference_retrieval import KnowledgeBaseRetriever, ReferenceRetriever
from grievance_engine.core.context import ActorContext
from grievance_engine.core.exceptions import EngineError, UpstreamUnavailableError
from grievance_engine.models.grievance import Grievance
from grievance_engine.services.grievance_lifecycle import load_grievance, require_role
from grievance_engine.utils.helpers import as_utc, iso

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30

# Stem → topic label. Matched case-insensitively anywhere in the text.
MISCONDUCT_TOPICS = {
    "terminat": "termination",
    "dismissal": "dismissal",
    "suspen": "suspension",
    "discipline": "discipline",
    "warning": "warning",
    "misconduct": "misconduct",
    "insubordinat": "insubordination",
    "theft": "theft",
    "dishonest": "dishonesty",
    "absen": "absenteeism",
    "performance": "performance",
    "harass": "harassment",
    "violen": "violence",
    "safety": "safety",
}

# Statement keywords that make discipline guidance worth fetching for chat.
DISCIPLINE_KEYWORDS = (
    "terminat", "dismiss", "discharge", "fired", "suspend", "suspension",
    "disciplin", "warning", "reprimand", "misconduct", "insubordinat",
    "violation", "theft", "dishonest", "fraud", "absent", "awol",
    "attendance", "performance", "incompeten", "harass", "discriminat",
    "bullying", "violence", "assault", "threat", "safety", "accident",
    "injury", "intoxicat", "impair", "drug", "alcohol",
)

EXTRACTION_PROMPT = """You are assisting a union steward with a grievance.
From the reference material, extract ONLY the parts relevant to the case facts.

Rules:
- Keep roughly 20-30% of the material; drop everything unrelated to the case.
- Preserve section headers and every case citation exactly as written.
- Do not summarise, paraphrase or add commentary. Quote the material.
- If nothing is relevant, answer with an empty response."""


def extract_topics(text: str) -> list[str]:
    """Misconduct topics mentioned in ``text``, in vocabulary order, without duplicates."""
    lower = (text or "").lower()
    topics = []
    for stem, topic in MISCONDUCT_TOPICS.items():
        if stem in lower and topic not in topics:
            topics.append(topic)
    return topics


def should_use_discipline_guidance(statement: str | None, category: str | None = None) -> bool:
    """Cheap gate so chat only pays for guidance on discipline-type cases."""
    if category and "disciplin" in category.lower():
        return True
    lower = (statement or "").lower()
    return any(keyword in lower for keyword in DISCIPLINE_KEYWORDS)


def build_extraction_messages(grievance: Grievance, reference: str) -> list[dict]:
    articles = ", ".join(str(a) for a in (grievance.articles_violated or [])) or "none cited"
    case = (
        f"CASE FACTS:\n{grievance.statement or ''}\n\n"
        f"ARTICLES VIOLATED: {articles}\n"
        f"SETTLEMENT DESIRED: {grievance.settlement_desired or 'not stated'}\n\n"
        f"REFERENCE MATERIAL:\n{reference}"
    )
    return [
        {"role": "system", "content": EXTRACTION_PROMPT},
        {"role": "user", "content": case},
    ]


@dataclass
class GuidanceResult:
    status: str  # "cached" | "generated" | "no_guidance"
    grievance_id: str
    relevant_sections: str | None = None
    topics: list[str] = field(default_factory=list)
    created_at: datetime | None = None
    expires_at: datetime | None = None

    @property
    def has_guidance(self) -> bool:
        return self.status != "no_guidance"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "grievance_id": self.grievance_id,
            "relevant_sections": self.relevant_sections,
            "topics": list(self.topics),
            "created_at": iso(self.created_at),
            "expires_at": iso(self.expires_at),
        }

    @classmethod
    def from_entry(cls, status: str, entry) -> "GuidanceResult":
        return cls(
            status=status,
            grievance_id=entry.grievance_id,
            relevant_sections=entry.relevant_sections,
            topics=list(entry.topics or []),
            created_at=as_utc(entry.created_at),
            expires_at=as_utc(entry.expires_at),
        )


_upstream_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="guidance-upstream")


class DisciplineGuidanceService:
    """
    Cache-first discipline guidance for a grievance.

    Retrievers that query the application's own database (``KnowledgeBaseRetriever``)
    run on the request thread; the database statement timeout bounds them.
    """

    def __init__(
        self,
        gateway: LLMGateway | None = None,
        retriever: ReferenceRetriever | None = None,
        cache: DisciplineGuidanceCache | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        model: str | None = None,
    ):
        self.gateway = gateway or LLMGateway()
        self.retriever = retriever or KnowledgeBaseRetriever()
        self.cache = cache or discipline_cache
        self.timeout_seconds = timeout_seconds
        self.model = model

    def _call(self, collaborator: str, fn, *args, **kwargs):
        """Run ``fn`` on a worker thread, bounded by ``timeout_seconds``."""
        future = _upstream_pool.submit(fn, *args, **kwargs)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            raise UpstreamUnavailableError(
                collaborator, f"timed out after {self.timeout_seconds}s",
            ) from exc
        except UpstreamUnavailableError:
            raise
        except Exception as exc:
            raise UpstreamUnavailableError(collaborator, str(exc) or type(exc).__name__) from exc

    def _retrieve(self, grievance: Grievance) -> str | None:
        articles = [str(a) for a in (grievance.articles_violated or [])]
        if isinstance(self.retriever, KnowledgeBaseRetriever):
            try:
                return self.retriever.retrieve(grievance.statement or "", articles)
            except Exception as exc:
                raise UpstreamUnavailableError("reference retrieval", str(exc)) from exc
        return self._call("reference retrieval", self.retriever.retrieve, grievance.statement or "", articles)

    def get_guidance(self, ctx: ActorContext, grievance_id: str, force_refresh: bool = False) -> GuidanceResult:
        """
        Cached guidance for a grievance, computing it on miss/expiry.

        Raises:
            NotFoundError: grievance unknown in the actor's organization
            PermissionDenied: ``force_refresh`` by a role that may not refresh
            UpstreamUnavailableError: retrieval or generation failed / timed out
        """
        grievance = load_grievance(ctx, grievance_id)
        if force_refresh:
            require_role(ctx, "refresh_guidance")
        else:
            entry = self.cache.get(grievance.id)
            if entry is not None:
                return GuidanceResult.from_entry("cached", entry)

        log_extra = {"organization_id": grievance.organization_id, "grievance_id": grievance.id}

        reference = self._retrieve(grievance)
        if not reference or not reference.strip():
            logger.info("No reference material relevant to grievance %s", grievance.id, extra=log_extra)
            if force_refresh:
                self.cache.invalidate(grievance.id)
            return GuidanceResult(status="no_guidance", grievance_id=grievance.id)

        response = self._call(
            "text generation",
            self.gateway.chat,
            build_extraction_messages(grievance, reference),
            model=self.model,
            purpose="discipline_extraction",
            user=ctx.user_id,
        )
        content = (response.get("content") or "").strip()
        if not content:
            raise UpstreamUnavailableError("text generation", "empty response")

        entry = self.cache.put(grievance.id, content, extract_topics(content))
        logger.info(
            "Discipline guidance cached for grievance %s (%d chars, topics=%s)",
            grievance.id, len(content), ",".join(entry.topics or []) or "-", extra=log_extra,
        )
        return GuidanceResult.from_entry("generated", entry)

    def guidance_for_chat(self, ctx: ActorContext, grievance_id: str) -> str | None:
        """
        Guidance text for the chat flow, or None.

        Never raises for engine failures: chat degrades to answering
        without guidance. The caller commits any cache write.
        """
        grievance = Grievance.query.filter_by(id=grievance_id, organization_id=ctx.organization_id).first()
        if grievance is None or not should_use_discipline_guidance(grievance.statement, grievance.category):
            return None
        try:
            result = self.get_guidance(ctx, grievance_id)
        except EngineError as exc:
            logger.warning(
                "Discipline guidance unavailable for chat on grievance %s: %s",
                grievance_id, exc, extra={"grievance_id": grievance_id},
            )
            return None
        return result.relevant_sections if result.has_guidance else None
