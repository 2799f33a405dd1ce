"""Tests for the pattern learner."""

import pytest

from organic_schema.core.config import OrganicSettings
from organic_schema.patterns.inference import TypeTag
from organic_schema.patterns.learner import PatternLearner


class TestLearn:
    @pytest.mark.asyncio
    async def test_confidence_tracks_frequency(self, learner):
        for i in range(1, 15):
            snapshot = await learner.learn("Lead", "email", f"user{i}@example.com")
            assert snapshot.frequency == i
            assert snapshot.confidence == min(1.0, i / 10)
            assert 0.0 <= snapshot.confidence <= 1.0

    @pytest.mark.asyncio
    async def test_common_values_capped(self, learner):
        for i in range(25):
            await learner.learn("Lead", "source", f"source-{i}")

        pattern = learner.get_pattern("Lead", "source")
        assert len(pattern.common_values) == 10
        assert pattern.common_values[0] == "source-0"
        assert "source-24" not in pattern.common_values

    @pytest.mark.asyncio
    async def test_repeated_value_stored_once(self, learner):
        await learner.learn("Lead", "tags", ["a", "b"])
        await learner.learn("Lead", "tags", ["a", "b"])

        assert learner.get_pattern("Lead", "tags").common_values == [["a", "b"]]

    @pytest.mark.asyncio
    async def test_mixed_key_dict_is_learned(self, learner):
        snapshot = await learner.learn("T", "meta", {1: "x", "b": 2})

        assert not snapshot.degraded
        pattern = learner.get_pattern("T", "meta")
        assert pattern.frequency == 1
        assert pattern.types == [TypeTag.OBJECT]
        assert pattern.dominant_type == TypeTag.OBJECT
        assert pattern.common_values == [{1: "x", "b": 2}]

    @pytest.mark.asyncio
    async def test_dominant_type_recomputed(self, learner):
        await learner.learn("Lead", "contact", "just text")
        assert learner.get_pattern("Lead", "contact").dominant_type == TypeTag.STRING

        await learner.learn("Lead", "contact", "a@b.com")
        pattern = learner.get_pattern("Lead", "contact")
        assert pattern.dominant_type == TypeTag.EMAIL
        assert set(pattern.types) == {TypeTag.STRING, TypeTag.EMAIL}

    @pytest.mark.asyncio
    async def test_trends_truncated(self, learner):
        for i in range(101):
            await learner.learn("Lead", "score", i)

        stats = learner.get_usage_stats("Lead", "score")
        assert len(stats.trends) == 50
        assert stats.trends[0].value == 51
        assert stats.trends[-1].value == 100
        assert stats.total_usage == 101

    @pytest.mark.asyncio
    async def test_usage_tracks_module_contexts(self, learner):
        await learner.learn("Lead", "name", "Ada", {"module_id": "mod_1"})
        await learner.learn("Lead", "name", "Bob", {"module_id": "mod_2"})
        await learner.learn("Lead", "name", "Cy")

        stats = learner.get_usage_stats("Lead", "name")
        assert stats.contexts == {"mod_1", "mod_2"}
        assert stats.average_length > 0

    @pytest.mark.asyncio
    async def test_summary_persisted(self, learner, store):
        await learner.learn("Lead", "email", "a@b.com")
        await learner.learn("Lead", "email", "c@d.com")

        row = await store.get_pattern_summary("Lead", "email")
        assert row["dominant_type"] == "email"
        assert row["frequency"] == 2
        assert row["sample_values"] == ["a@b.com", "c@d.com"]

    @pytest.mark.asyncio
    async def test_persistence_failure_keeps_learning(self, failing_store, settings):
        learner = PatternLearner(failing_store, settings)

        snapshot = await learner.learn("Lead", "email", "a@b.com")

        assert not snapshot.degraded
        assert snapshot.frequency == 1

    @pytest.mark.asyncio
    async def test_internal_failure_returns_fallback(self, learner, monkeypatch):
        def broken(*args, **kwargs):
            raise RuntimeError("boom")

        monkeypatch.setattr(learner, "_update_pattern", broken)

        snapshot = await learner.learn("Lead", "phone", "+39 333 123 4567")

        assert snapshot.degraded
        assert snapshot.confidence == 0.1
        assert snapshot.frequency == 1
        assert snapshot.dominant_type == TypeTag.PHONE
        assert snapshot.common_values == ["+39 333 123 4567"]

    @pytest.mark.asyncio
    async def test_works_without_store(self, settings):
        learner = PatternLearner(settings=settings)
        snapshot = await learner.learn("Lead", "email", "a@b.com")
        assert snapshot.frequency == 1


class TestReads:
    @pytest.mark.asyncio
    async def test_suggest_attributes_for_context(self, learner):
        for i in range(8):
            await learner.learn("Lead", "email", f"u{i}@b.com")
        for i in range(6):
            await learner.learn("Contact", "phone", "+39 333 123 4567")
        for i in range(3):
            await learner.learn("Lead", "notes", f"note {i}")

        suggestions = learner.suggest_attributes_for_context(["Lead", "Contact", "Unknown"])

        assert [s.name for s in suggestions] == ["email", "phone"]
        assert suggestions[0].confidence == 0.8
        assert len(suggestions[0].examples) == 2
        assert "Lead" in suggestions[0].reason
        assert suggestions[1].examples == ["+39 333 123 4567"]

    @pytest.mark.asyncio
    async def test_living_documentation(self, learner):
        for i in range(8):
            await learner.learn("Lead", "email", f"u{i}@b.com")
        await learner.learn("Lead", "notes", "first")

        doc = learner.living_documentation("Lead")

        assert doc.total_attributes == 2
        assert doc.established == 1
        assert doc.emerging == 1
        by_name = {a.name: a for a in doc.attributes}
        assert by_name["email"].status == "established"
        assert len(by_name["email"].examples) == 3
        assert by_name["notes"].status == "emerging"
        assert doc.to_dict()["emergence"]["high_confidence"] == 1

    def test_living_documentation_unknown_type(self, learner):
        doc = learner.living_documentation("Nothing")
        assert doc.status == "no_patterns_yet"
        assert doc.attributes == []

    @pytest.mark.asyncio
    async def test_emergent_schema(self, learner):
        await learner.learn("Lead", "email", "a@b.com")

        schema = learner.emergent_schema("Lead")

        assert schema["mode"] == "organic"
        assert schema["status"] == "learned_from_usage"
        assert schema["attributes"][0]["required"] is False
        assert learner.emergent_schema("Other")["status"] == "emerging"
        assert learner.known_entity_types() == ["Lead"]


class TestPropagation:
    @pytest.mark.asyncio
    async def test_propagates_to_members(self, learner, store, seeded):
        result = await learner.propagate_to_group("mod_team", "status", "active")

        assert not result.degraded
        assert result.entities_updated == 2
        assert result.inferred_type == TypeTag.STRING

        invoice = await store.get_entity("inv_1")
        project = await store.get_entity("proj")
        assert invoice["status"] == "active"
        assert project["status"] == "active"

        stats = learner.get_usage_stats("Invoice", "status")
        assert stats.trends[-1].context["propagated"] is True

    @pytest.mark.asyncio
    async def test_empty_group(self, learner, seeded):
        result = await learner.propagate_to_group("mod_missing", "status", 1)
        assert result.entities_updated == 0
        assert result.inferred_type == TypeTag.INTEGER

    @pytest.mark.asyncio
    async def test_write_failure_is_degraded(self, store, seeded, settings, monkeypatch):
        learner = PatternLearner(store, settings)

        async def refuse(*args, **kwargs):
            raise ConnectionError("write refused")

        monkeypatch.setattr(store, "update_entity_attribute", refuse)

        result = await learner.propagate_to_group("mod_team", "status", "active")

        assert result.degraded
        assert result.entities_updated == 0
        assert "write refused" in result.error

    @pytest.mark.asyncio
    async def test_member_lookup_failure_is_degraded(self, store, seeded, settings, monkeypatch):
        learner = PatternLearner(store, settings)

        async def unreachable(*args, **kwargs):
            raise ConnectionError("graph unreachable")

        monkeypatch.setattr(store, "group_members", unreachable)

        result = await learner.propagate_to_group("mod_team", "status", "active")

        assert result.degraded
        assert result.entities_updated == 0
        assert "graph unreachable" in result.error
        assert (await store.get_entity("inv_1")).get("status") is None

    @pytest.mark.asyncio
    async def test_without_store(self, settings):
        result = await PatternLearner(settings=settings).propagate_to_group("m", "a", 1)
        assert result.degraded


class TestCleanup:
    @pytest.mark.asyncio
    async def test_drops_nothing_once_observed(self, learner):
        await learner.learn("Lead", "email", "a@b.com")
        assert learner.cleanup()["patterns_removed"] == 0

    @pytest.mark.asyncio
    async def test_drops_weak_patterns(self):
        learner = PatternLearner(settings=OrganicSettings(confidence_saturation=100))
        await learner.learn("Lead", "rare", "x")

        assert learner.cleanup()["patterns_removed"] == 1
        assert learner.get_pattern("Lead", "rare") is None
        assert learner.known_entity_types() == []

    @pytest.mark.asyncio
    async def test_trims_usage_stats(self):
        learner = PatternLearner(settings=OrganicSettings(usage_stats_limit=4, usage_stats_retain=2))
        for i in range(5):
            for _ in range(i + 1):
                await learner.learn("Lead", f"attr{i}", "v")

        result = learner.cleanup()

        assert result["usage_stats_trimmed"] == 3
        assert learner.get_usage_stats("Lead", "attr4") is not None
        assert learner.get_usage_stats("Lead", "attr3") is not None
        assert learner.get_usage_stats("Lead", "attr0") is None
