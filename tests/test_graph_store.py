"""Tests for the graph store adapters and factory."""

import asyncio

import pytest
from neo4j import AsyncGraphDatabase

from organic_schema.core.graph import (
    JSON_KEYS_PROPERTY,
    MODULE_ENTITY_TYPE,
    Neo4jGraphStore,
    SQLiteGraphStore,
    create_graph_store,
)


class TestSQLiteGraphStore:
    @pytest.mark.asyncio
    async def test_create_and_get(self, store):
        entity = await store.create_entity("Lead", {"email": "a@b.com", "tags": ["x"]})

        loaded = await store.get_entity(entity["id"])

        assert loaded["entityType"] == "Lead"
        assert loaded["email"] == "a@b.com"
        assert loaded["tags"] == ["x"]
        assert loaded["createdAt"] == loaded["modifiedAt"]

    @pytest.mark.asyncio
    async def test_missing_entity(self, store):
        assert await store.get_entity("nope") is None

    @pytest.mark.asyncio
    async def test_update_attribute(self, store):
        await store.create_entity("Lead", {"email": "A@B.com"}, entity_id="l1")

        updated = await store.update_entity_attribute("l1", "email", "a@b.com")

        assert updated["email"] == "a@b.com"
        assert (await store.get_entity("l1"))["email"] == "a@b.com"

    @pytest.mark.asyncio
    async def test_update_missing_entity_raises(self, store):
        with pytest.raises(KeyError):
            await store.update_entity_attribute("ghost", "email", "x")

    @pytest.mark.asyncio
    async def test_relationship_type_checked(self, store):
        with pytest.raises(ValueError):
            await store.add_relationship("a", "b", "bad-type; DROP")

    @pytest.mark.asyncio
    async def test_relationship_idempotent(self, store):
        assert await store.add_relationship("a", "b", "CONTAINS")
        assert await store.add_relationship("a", "b", "CONTAINS")

        rows = await store.execute_query("SELECT COUNT(*) AS n FROM relationships")
        assert rows[0]["n"] == 1

    @pytest.mark.asyncio
    async def test_modules_containing_patterns(self, store, seeded):
        await store.create_entity(MODULE_ENTITY_TYPE, {"targetEntityId": "acme"}, entity_id="mod_acme")

        modules = [(m["id"], m["connectionType"]) for m in await store.modules_containing("acme")]

        # Referenced modules come before type contexts regardless of creation order
        assert modules == [("mod_acme", "referenced"), ("mod_clients", "type_context")]

        explicit = await store.modules_containing("proj")
        assert [(m["id"], m["connectionType"]) for m in explicit] == [("mod_clients", "explicit_relation")]

    @pytest.mark.asyncio
    async def test_entities_in_module(self, store, seeded):
        members = await store.entities_in_module("mod_team")
        assert [m["id"] for m in members] == ["ada", "bob", "inv_1", "proj"]

    @pytest.mark.asyncio
    async def test_entities_in_non_module(self, store, seeded):
        assert await store.entities_in_module("ada") == []

    @pytest.mark.asyncio
    async def test_group_members_and_links(self, store, seeded):
        await store.link_module_entity("mod_team", "ada")

        members = [m["id"] for m in await store.group_members("mod_team")]

        assert members == ["ada", "inv_1", "proj"]

    @pytest.mark.asyncio
    async def test_entities_referencing_module(self, store, seeded):
        await store.create_entity("Note", {"moduleId": "mod_team"}, entity_id="note")

        referencing = [e["id"] for e in await store.entities_referencing_module("mod_team")]

        assert referencing == ["inv_1", "proj", "note"]

    @pytest.mark.asyncio
    async def test_pattern_summary_upsert(self, store):
        summary = {
            "entityType": "Lead",
            "attributeName": "email",
            "dominantType": "email",
            "frequency": 1,
            "confidence": 0.1,
            "lastUsed": "2024-01-01T00:00:00",
            "sampleValues": ["a@b.com"],
        }
        await store.upsert_pattern_summary(summary)
        await store.upsert_pattern_summary({**summary, "frequency": 2, "confidence": 0.2})

        row = await store.get_pattern_summary("Lead", "email")
        assert row["frequency"] == 2
        assert row["confidence"] == 0.2
        assert row["sample_values"] == ["a@b.com"]

    def test_file_database(self, tmp_path):
        path = tmp_path / "nested" / "graph.db"
        graph = SQLiteGraphStore(str(path))
        assert path.exists()
        graph._conn.close()


class TestFactory:
    def test_sqlite_default(self):
        assert isinstance(create_graph_store("sqlite", db_path=":memory:"), SQLiteGraphStore)

    def test_sqlite_url(self, tmp_path):
        graph = create_graph_store(f"sqlite:///{tmp_path}/graph.db")
        assert isinstance(graph, SQLiteGraphStore)
        assert graph.db_path.endswith("graph.db")

    @pytest.mark.parametrize("uri", ["neo4j://localhost:7687", "bolt://localhost:7687", "neo4j+s://db.example.com"])
    def test_neo4j(self, uri):
        graph = create_graph_store(uri, username="neo4j", password="secret")
        assert isinstance(graph, Neo4jGraphStore)
        assert graph.uri == uri
        assert graph.driver is None

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_graph_store("redis://localhost")


class TestNeo4jPrepare:
    def test_nested_values_become_json(self):
        assert Neo4jGraphStore._prepare({"a": 1}) == '{"a": 1}'
        assert Neo4jGraphStore._prepare([{"a": 1}]) == '[{"a": 1}]'
        assert Neo4jGraphStore._prepare(["x", "y"]) == ["x", "y"]
        assert Neo4jGraphStore._prepare(3) == 3

    def test_encode_lists_json_properties(self):
        props = Neo4jGraphStore._encode({"meta": {"a": 1}, "tags": ["x"], "note": "{not json"})

        assert props["meta"] == '{"a": 1}'
        assert props["note"] == "{not json"
        assert props[JSON_KEYS_PROPERTY] == ["meta"]

    def test_decode_only_listed_properties(self):
        node = {"meta": '{"a": 1}', "note": "[1]", JSON_KEYS_PROPERTY: ["meta"]}

        assert Neo4jGraphStore._decode(node) == {"meta": {"a": 1}, "note": "[1]"}
        assert Neo4jGraphStore._decode({"note": "[1]"}) == {"note": "[1]"}

    @pytest.mark.asyncio
    async def test_reads_decode_nested_values(self, monkeypatch):
        graph = Neo4jGraphStore()
        stored = Neo4jGraphStore._encode({"id": "e1", "meta": {"a": [1, 2]}, "rows": [{"n": 1}]})

        async def fake_query(query, params=None):
            return [{"node": stored}]

        monkeypatch.setattr(graph, "execute_query", fake_query)

        entity = await graph.get_entity("e1")
        assert entity == {"id": "e1", "meta": {"a": [1, 2]}, "rows": [{"n": 1}]}
        assert (await graph.group_members("m"))[0]["meta"] == {"a": [1, 2]}


class TestNeo4jConnect:
    @pytest.mark.asyncio
    async def test_concurrent_initialize_creates_one_driver(self, monkeypatch):
        created = []

        class FakeDriver:
            async def verify_connectivity(self):
                await asyncio.sleep(0)

            async def close(self):
                pass

        def fake_driver(uri, auth=None):
            created.append(uri)
            return FakeDriver()

        monkeypatch.setattr(AsyncGraphDatabase, "driver", fake_driver)
        graph = Neo4jGraphStore("bolt://localhost:7687")

        await asyncio.gather(graph.initialize(), graph.initialize(), graph.initialize())

        assert created == ["bolt://localhost:7687"]
        assert isinstance(graph.driver, FakeDriver)

    @pytest.mark.asyncio
    async def test_failed_connect_leaves_no_driver(self, monkeypatch):
        closed = []

        class UnreachableDriver:
            async def verify_connectivity(self):
                raise ConnectionError("no route")

            async def close(self):
                closed.append(True)

        monkeypatch.setattr(AsyncGraphDatabase, "driver", lambda uri, auth=None: UnreachableDriver())
        graph = Neo4jGraphStore()

        with pytest.raises(ConnectionError):
            await graph.initialize()

        assert graph.driver is None
        assert closed == [True]
