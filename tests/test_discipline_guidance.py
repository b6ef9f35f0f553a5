"""
Discipline guidance pipeline tests: cache-first reads, no-guidance
outcome, upstream failures and timeouts, forced refresh and the chat gate.
"""

from datetime import datetime, timedelta, timezone

import pytest

from grievance_engine.ai.discipline_cache import DisciplineGuidanceCache, discipline_cache
from grievance_engine.ai.discipline_guidance import (
    DisciplineGuidanceService,
    build_extraction_messages,
    extract_topics,
    should_use_discipline_guidance,
)
from grievance_engine.ai.gateway import LLMGateway
from grievance_engine.ai.reference_retrieval import KnowledgeBaseRetriever
from grievance_engine.core.context import ActorContext
from grievance_engine.core.exceptions import (
    ErrorKind,
    NotFoundError,
    PermissionDenied,
    UpstreamUnavailableError,
)
from grievance_engine.models import db
from grievance_engine.models.discipline import GrievanceDisciplineCache, ReferenceSection
from grievance_engine.services.engine_actions import run_action


def _service(gateway, retriever, timeout=1.0):
    return DisciplineGuidanceService(gateway=gateway, retriever=retriever, timeout_seconds=timeout)


class TestGetGuidance:
    def test_miss_generates_and_caches(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        result = _service(fake_gateway, fake_retriever).get_guidance(steward_ctx, grievance.id)
        db.session.commit()

        assert result.status == "generated"
        assert "Brown & Beatty 7:4400" in result.relevant_sections
        assert result.topics == ["termination", "suspension"]
        assert fake_retriever.calls == [(grievance.statement, ["Art. 12.01"])]
        assert discipline_cache.get(grievance.id) is not None

    def test_hit_skips_collaborators(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        service = _service(fake_gateway, fake_retriever)
        service.get_guidance(steward_ctx, grievance.id)
        second = service.get_guidance(steward_ctx, grievance.id)

        assert second.status == "cached"
        assert len(fake_gateway.calls) == 1
        assert len(fake_retriever.calls) == 1

    def test_extraction_request(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        _service(fake_gateway, fake_retriever).get_guidance(steward_ctx, grievance.id)
        call = fake_gateway.calls[0]
        assert call["purpose"] == "discipline_extraction"
        assert call["user"] == "steward-1"
        user_msg = call["messages"][-1]["content"]
        assert "REFERENCE MATERIAL:" in user_msg
        assert "Art. 12.01" in user_msg

    def test_nothing_relevant(self, steward_ctx, grievance, fake_gateway, make_retriever):
        retriever = make_retriever(reference=None)
        result = _service(fake_gateway, retriever).get_guidance(steward_ctx, grievance.id)

        assert result.status == "no_guidance"
        assert result.has_guidance is False
        assert fake_gateway.calls == []
        assert GrievanceDisciplineCache.query.count() == 0

    def test_empty_extraction_is_upstream_failure(self, steward_ctx, grievance, make_gateway, fake_retriever):
        with pytest.raises(UpstreamUnavailableError):
            _service(make_gateway(content="   "), fake_retriever).get_guidance(steward_ctx, grievance.id)
        assert GrievanceDisciplineCache.query.count() == 0

    def test_gateway_error(self, steward_ctx, grievance, make_gateway, fake_retriever):
        gateway = make_gateway(error=ConnectionError("provider down"))
        with pytest.raises(UpstreamUnavailableError) as exc:
            _service(gateway, fake_retriever).get_guidance(steward_ctx, grievance.id)
        assert exc.value.retryable is True
        assert exc.value.collaborator == "text generation"

    def test_retriever_error(self, steward_ctx, grievance, fake_gateway, make_retriever):
        retriever = make_retriever(error=RuntimeError("index offline"))
        with pytest.raises(UpstreamUnavailableError) as exc:
            _service(fake_gateway, retriever).get_guidance(steward_ctx, grievance.id)
        assert exc.value.collaborator == "reference retrieval"

    def test_gateway_timeout(self, steward_ctx, grievance, make_gateway, fake_retriever):
        gateway = make_gateway(delay=1.0)
        with pytest.raises(UpstreamUnavailableError) as exc:
            _service(gateway, fake_retriever, timeout=0.1).get_guidance(steward_ctx, grievance.id)
        assert "timed out" in exc.value.reason
        assert GrievanceDisciplineCache.query.count() == 0

    def test_expired_entry_recomputed(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        past = datetime.now(timezone.utc) - timedelta(days=60)
        discipline_cache.put(grievance.id, "stale", [], now=past)

        result = _service(fake_gateway, fake_retriever).get_guidance(steward_ctx, grievance.id)
        assert result.status == "generated"
        assert result.relevant_sections != "stale"

    def test_other_organization(self, other_organization, grievance, fake_gateway, fake_retriever):
        ctx = ActorContext(organization_id=other_organization.id, user_id="x", role="admin")
        with pytest.raises(NotFoundError):
            _service(fake_gateway, fake_retriever).get_guidance(ctx, grievance.id)
        assert fake_retriever.calls == []


class TestForcedRefresh:
    def test_refresh_replaces_entry(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        discipline_cache.put(grievance.id, "old guidance", ["warning"])
        result = _service(fake_gateway, fake_retriever).get_guidance(steward_ctx, grievance.id, force_refresh=True)

        assert result.status == "generated"
        assert discipline_cache.get(grievance.id).relevant_sections != "old guidance"
        assert GrievanceDisciplineCache.query.count() == 1

    def test_failed_refresh_keeps_previous_entry(self, steward_ctx, grievance, make_gateway, fake_retriever):
        discipline_cache.put(grievance.id, "old guidance", ["warning"])
        db.session.commit()

        service = _service(make_gateway(error=TimeoutError("slow")), fake_retriever)
        result = run_action(service.get_guidance, steward_ctx, grievance.id, force_refresh=True)

        assert result["success"] is False
        assert result["error_kind"] == ErrorKind.UPSTREAM_UNAVAILABLE.value
        assert result["retryable"] is True
        assert discipline_cache.get(grievance.id).relevant_sections == "old guidance"

    def test_refresh_with_nothing_relevant_drops_entry(self, steward_ctx, grievance, fake_gateway, make_retriever):
        discipline_cache.put(grievance.id, "old guidance", [])
        result = _service(fake_gateway, make_retriever(reference="  ")).get_guidance(
            steward_ctx, grievance.id, force_refresh=True,
        )
        assert result.status == "no_guidance"
        assert discipline_cache.get(grievance.id) is None

    def test_viewer_may_read_but_not_refresh(self, viewer_ctx, grievance, fake_gateway, fake_retriever):
        service = _service(fake_gateway, fake_retriever)
        assert service.get_guidance(viewer_ctx, grievance.id).status == "generated"
        with pytest.raises(PermissionDenied):
            service.get_guidance(viewer_ctx, grievance.id, force_refresh=True)


class TestChatIntegration:
    def test_returns_sections_for_discipline_case(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        text = _service(fake_gateway, fake_retriever).guidance_for_chat(steward_ctx, grievance.id)
        assert "Just cause" in text

    def test_degrades_to_none_on_failure(self, steward_ctx, grievance, make_gateway, fake_retriever):
        service = _service(make_gateway(error=RuntimeError("down")), fake_retriever)
        assert service.guidance_for_chat(steward_ctx, grievance.id) is None

    def test_skips_non_discipline_case(self, steward_ctx, agreement, fake_gateway, fake_retriever):
        from grievance_engine.services.grievance_lifecycle import file_grievance

        gid = file_grievance(
            steward_ctx, agreement.id, statement="Vacation schedule posted late.", category="Scheduling",
        )["grievance_id"]
        assert _service(fake_gateway, fake_retriever).guidance_for_chat(steward_ctx, gid) is None
        assert fake_retriever.calls == []


class TestDefaultCollaborators:
    def test_knowledge_base_with_local_stub(self, steward_ctx, grievance):
        db.session.add_all([
            ReferenceSection(
                source="Canadian Labour Arbitration, ch. 7",
                heading="Discharge for innocent absenteeism",
                body="An employer may terminate for excessive absenteeism only where attendance "
                     "is unlikely to improve.",
                keywords=["attendance", "absenteeism", "terminated"],
            ),
            ReferenceSection(
                source="Collective Agreement Arbitration, ch. 2",
                heading="Seniority and job postings",
                body="Posting disputes turn on relative ability.",
                keywords=["seniority", "posting"],
            ),
        ])
        db.session.commit()

        service = DisciplineGuidanceService(
            gateway=LLMGateway(default_model="local-stub"),
            retriever=KnowledgeBaseRetriever(),
            cache=DisciplineGuidanceCache(ttl_days=7),
            timeout_seconds=2,
        )
        result = service.get_guidance(steward_ctx, grievance.id)
        assert result.status == "generated"
        assert "innocent absenteeism" in result.relevant_sections
        assert "Seniority" not in result.relevant_sections

    def test_empty_knowledge_base(self, steward_ctx, grievance):
        service = DisciplineGuidanceService(
            gateway=LLMGateway(default_model="local-stub"), retriever=KnowledgeBaseRetriever(),
        )
        assert service.get_guidance(steward_ctx, grievance.id).status == "no_guidance"

    def test_unconfigured_provider_is_not_cached(self, steward_ctx, grievance, fake_retriever, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        service = DisciplineGuidanceService(
            gateway=LLMGateway(default_model="gemini-2.5-flash"), retriever=fake_retriever, timeout_seconds=2,
        )
        with pytest.raises(UpstreamUnavailableError):
            service.get_guidance(steward_ctx, grievance.id)
        assert GrievanceDisciplineCache.query.count() == 0


class TestHelpers:
    def test_extract_topics(self):
        text = "Termination after a final WARNING for insubordination; see suspension cases."
        assert extract_topics(text) == ["termination", "suspension", "warning", "insubordination"]
        assert extract_topics("") == []

    @pytest.mark.parametrize("statement,category,expected", [
        ("Grievor was fired for theft", None, True),
        ("Overtime was assigned out of seniority", None, False),
        ("Overtime was assigned out of seniority", "Discipline", True),
        (None, None, False),
    ])
    def test_should_use_discipline_guidance(self, statement, category, expected):
        assert should_use_discipline_guidance(statement, category) is expected

    def test_build_extraction_messages(self, grievance):
        messages = build_extraction_messages(grievance, "## Section\ntext")
        assert [m["role"] for m in messages] == ["system", "user"]
        assert messages[1]["content"].endswith("REFERENCE MATERIAL:\n## Section\ntext")

    def test_result_to_dict(self, steward_ctx, grievance, fake_gateway, fake_retriever):
        data = _service(fake_gateway, fake_retriever).get_guidance(steward_ctx, grievance.id).to_dict()
        assert set(data) == {"status", "grievance_id", "relevant_sections", "topics", "created_at", "expires_at"}
        assert data["grievance_id"] == grievance.id
