"""
Pytest configuration and fixtures for organic_schema tests.

Graph fixtures use an in-memory SQLite store seeded with modules, member
entities and explicit Relation nodes.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import pytest
import pytest_asyncio

from organic_schema.core.config import OrganicSettings
from organic_schema.core.graph import MODULE_ENTITY_TYPE, SQLiteGraphStore
from organic_schema.patterns.learner import PatternLearner
from organic_schema.relations.resolver import ImplicitRelationResolver
from organic_schema.validation.validator import GentleValidator


# =========================================================================
# Store doubles
# =========================================================================


class FailingGraphStore(SQLiteGraphStore):
    """SQLite store whose every query raises, for degraded paths."""

    def __init__(self):
        super().__init__(":memory:")

    async def execute_query(self, query, params=None):
        raise ConnectionError("graph store unavailable")

    async def update_entity_attribute(self, entity_id, attribute_name, value):
        raise ConnectionError("graph store unavailable")


# =========================================================================
# Core fixtures
# =========================================================================


@pytest.fixture
def settings() -> OrganicSettings:
    """Default settings without pauses between propagated writes."""
    return OrganicSettings(propagation_delay=0.0)


@pytest_asyncio.fixture
async def store():
    graph = SQLiteGraphStore(":memory:")
    yield graph
    await graph.close()


@pytest_asyncio.fixture
async def failing_store():
    graph = FailingGraphStore()
    yield graph
    await graph.close()


@pytest.fixture
def learner(store, settings) -> PatternLearner:
    return PatternLearner(store, settings)


@pytest.fixture
def validator(learner, store, settings) -> GentleValidator:
    return GentleValidator(learner, store, settings)


@pytest.fixture
def resolver(store, learner, settings) -> ImplicitRelationResolver:
    return ImplicitRelationResolver(store, learner, settings)


# =========================================================================
# Seeded graph
# =========================================================================


async def _relate_to_module(graph: SQLiteGraphStore, entity_id: str, module_id: str) -> str:
    """Entity -HAS_RELATION-> Relation -TO_ENTITY-> module."""
    relation = await graph.create_entity("Relation", {"relationType": "member_of"})
    await graph.add_relationship(entity_id, relation["id"], "HAS_RELATION")
    await graph.add_relationship(relation["id"], module_id, "TO_ENTITY")
    return relation["id"]


@pytest_asyncio.fixture
async def seeded(store) -> Dict[str, Any]:
    """
    A small graph with two modules:

    - ``team`` targets Person; holds ada, bob (by type) and a late invoice
      that references the module by id
    - ``clients`` targets Company; holds acme (by type)
    - ``proj`` is a Project that references ``team`` and is explicitly
      related to ``clients``, bridging the two modules
    - ``loner`` belongs to nothing
    """
    now = datetime.now(timezone.utc)
    day_later = (now + timedelta(days=1)).isoformat()

    team = await store.create_entity(MODULE_ENTITY_TYPE, {
        "instanceName": "Team",
        "templateModuleId": "tpl_team",
        "targetEntityType": "Person",
    }, entity_id="mod_team")
    clients = await store.create_entity(MODULE_ENTITY_TYPE, {
        "instanceName": "Clients",
        "templateModuleId": "tpl_clients",
        "targetEntityType": "Company",
    }, entity_id="mod_clients")

    ada = await store.create_entity("Person", {"name": "Ada", "city": "Turin"}, entity_id="ada")
    bob = await store.create_entity("Person", {"name": "Bob", "city": "Turin"}, entity_id="bob")
    invoice = await store.create_entity("Invoice", {
        "amount": 120,
        "targetEntityId": team["id"],
        "createdAt": day_later,
    }, entity_id="inv_1")
    acme = await store.create_entity("Company", {"name": "Acme"}, entity_id="acme")
    proj = await store.create_entity("Project", {"title": "Apollo", "targetEntityId": team["id"]}, entity_id="proj")
    loner = await store.create_entity("Lonely", {"name": "Nobody"}, entity_id="loner")

    await _relate_to_module(store, proj["id"], clients["id"])

    return {
        "team": team,
        "clients": clients,
        "ada": ada,
        "bob": bob,
        "invoice": invoice,
        "acme": acme,
        "proj": proj,
        "loner": loner,
    }
