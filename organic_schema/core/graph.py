"""
Graph Storage - the system of record.

Default: SQLite (zero dependencies)
Optional: Neo4j (async driver, Cypher)

Entities are schema-less property maps. Grouping contexts are entities of
type ``ModuleInstance``; membership is implied by the module's target type,
by explicit edges, or by entities pointing at the module's id.
"""

import asyncio
import json
import logging
import re
import sqlite3
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

MODULE_ENTITY_TYPE = "ModuleInstance"

# Neo4j node property listing the attributes stored as JSON strings
JSON_KEYS_PROPERTY = "_jsonKeys"

_REL_TYPE = re.compile(r"^[A-Z_][A-Z0-9_]*$")


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class GraphStore(ABC):
    """Abstract base for graph persistence backends (async)."""

    async def initialize(self) -> None:
        """Open connections / create schema. No-op by default."""

    async def close(self) -> None:
        """Release resources. No-op by default."""

    @abstractmethod
    async def execute_query(self, query: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        """Run a declarative query with named parameters and return rows as dicts."""
        pass

    @abstractmethod
    async def get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        """Get entity properties by id."""
        pass

    @abstractmethod
    async def create_entity(
        self,
        entity_type: str,
        attributes: Dict[str, Any] = None,
        entity_id: str = None,
    ) -> Dict[str, Any]:
        """Create an entity and return its full property map."""
        pass

    @abstractmethod
    async def update_entity_attribute(self, entity_id: str, attribute_name: str, value: Any) -> Dict[str, Any]:
        """Set one attribute. Raises KeyError if the entity does not exist."""
        pass

    @abstractmethod
    async def add_relationship(self, source_id: str, target_id: str, rel_type: str) -> bool:
        """Add a typed edge between two entities (idempotent)."""
        pass

    @abstractmethod
    async def modules_containing(self, entity_id: str) -> List[Dict[str, Any]]:
        """
        Modules that contain an entity.

        Each module map carries an extra ``connectionType`` key:
        ``referenced`` (module targets the entity), ``type_context`` (module
        targets the entity's type) or ``explicit_relation`` (entity points to
        the module through a Relation node).
        """
        pass

    @abstractmethod
    async def entities_in_module(self, module_id: str) -> List[Dict[str, Any]]:
        """Members of a module: target type, explicit edges, back-references."""
        pass

    @abstractmethod
    async def group_members(self, module_id: str) -> List[Dict[str, Any]]:
        """Entities linked to a module by CONTAINS/REFERENCES edges or id references."""
        pass

    @abstractmethod
    async def entities_referencing_module(self, module_id: str) -> List[Dict[str, Any]]:
        """Entities whose ``targetEntityId`` or ``moduleId`` is the module."""
        pass

    @abstractmethod
    async def upsert_pattern_summary(self, summary: Dict[str, Any]) -> None:
        """Insert or replace a learned attribute pattern summary."""
        pass

    async def link_module_entity(self, module_id: str, entity_id: str) -> bool:
        """Create an explicit containment edge from a module to an entity."""
        return await self.add_relationship(module_id, entity_id, "CONTAINS")

    @staticmethod
    def _check_rel_type(rel_type: str) -> str:
        if not _REL_TYPE.match(rel_type):
            raise ValueError(f"Invalid relationship type: {rel_type!r}")
        return rel_type


def _dedupe_modules(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    seen = set()
    modules = []
    for row in rows:
        module = dict(row["node"])
        if module.get("id") in seen:
            continue
        seen.add(module.get("id"))
        module["connectionType"] = row["connectionType"]
        modules.append(module)
    return modules


class SQLiteGraphStore(GraphStore):
    """
    SQLite-based graph storage.

    Properties are kept as JSON documents so entities stay schema-less.
    Statements run in a worker thread over a single connection guarded by a
    lock, which also makes ``:memory:`` databases usable.
    """

    MODULES_CONTAINING = f"""
        SELECT node, connectionType FROM (
            SELECT m.properties AS node, 'referenced' AS connectionType,
                   1 AS pattern_rank, m.rowid AS module_row
            FROM entities m
            WHERE m.entity_type = '{MODULE_ENTITY_TYPE}'
              AND json_extract(m.properties, '$.targetEntityId') = :entity_id

            UNION

            SELECT m.properties, 'type_context', 2, m.rowid
            FROM entities e
            JOIN entities m
              ON m.entity_type = '{MODULE_ENTITY_TYPE}'
             AND json_extract(m.properties, '$.targetEntityType') = e.entity_type
            WHERE e.id = :entity_id

            UNION

            SELECT m.properties, 'explicit_relation', 3, m.rowid
            FROM relationships r1
            JOIN entities r ON r.id = r1.target_id AND r.entity_type = 'Relation'
            JOIN relationships r2 ON r2.source_id = r.id AND r2.rel_type = 'TO_ENTITY'
            JOIN entities m ON m.id = r2.target_id AND m.entity_type = '{MODULE_ENTITY_TYPE}'
            WHERE r1.source_id = :entity_id AND r1.rel_type = 'HAS_RELATION'
        )
        ORDER BY pattern_rank, module_row
    """

    ENTITIES_IN_MODULE = f"""
        SELECT e.properties AS node
        FROM entities m
        JOIN entities e ON e.id <> m.id
        WHERE m.id = :module_id
          AND m.entity_type = '{MODULE_ENTITY_TYPE}'
          AND (
            e.entity_type = json_extract(m.properties, '$.targetEntityType')
            OR EXISTS (
                SELECT 1 FROM relationships r
                WHERE r.source_id = m.id AND r.target_id = e.id
                  AND r.rel_type IN ('HAS_RELATION', 'CONTAINS')
            )
            OR json_extract(e.properties, '$.targetEntityId') = :module_id
          )
        ORDER BY e.rowid
    """

    GROUP_MEMBERS = """
        SELECT e.properties AS node
        FROM entities e
        WHERE e.id <> :module_id
          AND (
            EXISTS (
                SELECT 1 FROM relationships r
                WHERE r.rel_type IN ('CONTAINS', 'REFERENCES')
                  AND ((r.source_id = :module_id AND r.target_id = e.id)
                       OR (r.target_id = :module_id AND r.source_id = e.id))
            )
            OR json_extract(e.properties, '$.targetEntityId') = :module_id
            OR json_extract(e.properties, '$.moduleId') = :module_id
          )
        ORDER BY e.rowid
    """

    ENTITIES_REFERENCING_MODULE = """
        SELECT e.properties AS node
        FROM entities e
        WHERE json_extract(e.properties, '$.targetEntityId') = :module_id
           OR json_extract(e.properties, '$.moduleId') = :module_id
        ORDER BY e.rowid
    """

    UPSERT_PATTERN = """
        INSERT INTO attribute_patterns
            (entity_type, attribute_name, dominant_type, frequency,
             confidence, last_used, sample_values, updated_at)
        VALUES
            (:entityType, :attributeName, :dominantType, :frequency,
             :confidence, :lastUsed, :sampleValues, CURRENT_TIMESTAMP)
        ON CONFLICT(entity_type, attribute_name) DO UPDATE SET
            dominant_type = excluded.dominant_type,
            frequency = excluded.frequency,
            confidence = excluded.confidence,
            last_used = excluded.last_used,
            sample_values = excluded.sample_values,
            updated_at = CURRENT_TIMESTAMP
    """

    def __init__(self, db_path: str = "~/.organic-schema/graph.db"):
        if db_path == ":memory:":
            self.db_path = db_path
        else:
            path = Path(db_path).expanduser()
            path.parent.mkdir(parents=True, exist_ok=True)
            self.db_path = str(path)

        self._lock = threading.RLock()
        self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row
        self._init_db()

        logger.info(f"SQLite graph store initialized at {self.db_path}")

    def _init_db(self) -> None:
        with self._lock, self._conn:
            self._conn.executescript("""
                CREATE TABLE IF NOT EXISTS entities (
                    id TEXT PRIMARY KEY,
                    entity_type TEXT NOT NULL,
                    properties TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
                );

                CREATE TABLE IF NOT EXISTS relationships (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    source_id TEXT NOT NULL,
                    target_id TEXT NOT NULL,
                    rel_type TEXT NOT NULL,
                    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
                    UNIQUE(source_id, target_id, rel_type)
                );

                CREATE TABLE IF NOT EXISTS attribute_patterns (
                    entity_type TEXT NOT NULL,
                    attribute_name TEXT NOT NULL,
                    dominant_type TEXT,
                    frequency INTEGER,
                    confidence REAL,
                    last_used TEXT,
                    sample_values TEXT,
                    updated_at TIMESTAMP,
                    PRIMARY KEY (entity_type, attribute_name)
                );

                CREATE INDEX IF NOT EXISTS idx_entity_type ON entities(entity_type);
                CREATE INDEX IF NOT EXISTS idx_rel_source ON relationships(source_id);
                CREATE INDEX IF NOT EXISTS idx_rel_target ON relationships(target_id);
            """)

    def _run(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        with self._lock, self._conn:
            cursor = self._conn.execute(query, params)
            return [dict(row) for row in cursor.fetchall()]

    async def execute_query(self, query: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        return await asyncio.to_thread(self._run, query, params or {})

    async def _nodes(self, query: str, params: Dict[str, Any]) -> List[Dict[str, Any]]:
        rows = await self.execute_query(query, params)
        return [json.loads(row["node"]) for row in rows]

    async def get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.execute_query(
            "SELECT properties FROM entities WHERE id = :id", {"id": entity_id}
        )
        if not rows:
            return None
        return json.loads(rows[0]["properties"])

    async def create_entity(
        self,
        entity_type: str,
        attributes: Dict[str, Any] = None,
        entity_id: str = None,
    ) -> Dict[str, Any]:
        now = _now()
        properties = {"createdAt": now, "modifiedAt": now, **(attributes or {})}
        properties["id"] = entity_id or str(uuid.uuid4())
        properties["entityType"] = entity_type

        await self.execute_query(
            "INSERT INTO entities (id, entity_type, properties) VALUES (:id, :entity_type, :properties)",
            {
                "id": properties["id"],
                "entity_type": entity_type,
                "properties": json.dumps(properties, default=str),
            },
        )
        return properties

    def _update_properties(self, entity_id: str, attribute_name: str, value: Any) -> Dict[str, Any]:
        with self._lock, self._conn:
            row = self._conn.execute(
                "SELECT properties FROM entities WHERE id = ?", (entity_id,)
            ).fetchone()
            if row is None:
                raise KeyError(f"Entity {entity_id} not found")

            properties = json.loads(row["properties"])
            properties[attribute_name] = value
            properties["modifiedAt"] = _now()
            self._conn.execute(
                "UPDATE entities SET properties = ? WHERE id = ?",
                (json.dumps(properties, default=str), entity_id),
            )
            return properties

    async def update_entity_attribute(self, entity_id: str, attribute_name: str, value: Any) -> Dict[str, Any]:
        # Read-modify-write stays inside one lock hold.
        return await asyncio.to_thread(self._update_properties, entity_id, attribute_name, value)

    async def add_relationship(self, source_id: str, target_id: str, rel_type: str) -> bool:
        await self.execute_query(
            """INSERT OR IGNORE INTO relationships (source_id, target_id, rel_type)
               VALUES (:source_id, :target_id, :rel_type)""",
            {"source_id": source_id, "target_id": target_id, "rel_type": self._check_rel_type(rel_type)},
        )
        return True

    async def modules_containing(self, entity_id: str) -> List[Dict[str, Any]]:
        rows = await self.execute_query(self.MODULES_CONTAINING, {"entity_id": entity_id})
        return _dedupe_modules(
            [{"node": json.loads(r["node"]), "connectionType": r["connectionType"]} for r in rows]
        )

    async def entities_in_module(self, module_id: str) -> List[Dict[str, Any]]:
        return await self._nodes(self.ENTITIES_IN_MODULE, {"module_id": module_id})

    async def group_members(self, module_id: str) -> List[Dict[str, Any]]:
        return await self._nodes(self.GROUP_MEMBERS, {"module_id": module_id})

    async def entities_referencing_module(self, module_id: str) -> List[Dict[str, Any]]:
        return await self._nodes(self.ENTITIES_REFERENCING_MODULE, {"module_id": module_id})

    async def upsert_pattern_summary(self, summary: Dict[str, Any]) -> None:
        params = dict(summary)
        params["sampleValues"] = json.dumps(summary.get("sampleValues", []), default=str)
        await self.execute_query(self.UPSERT_PATTERN, params)

    async def get_pattern_summary(self, entity_type: str, attribute_name: str) -> Optional[Dict[str, Any]]:
        rows = await self.execute_query(
            """SELECT * FROM attribute_patterns
               WHERE entity_type = :entity_type AND attribute_name = :attribute_name""",
            {"entity_type": entity_type, "attribute_name": attribute_name},
        )
        if not rows:
            return None
        row = rows[0]
        row["sample_values"] = json.loads(row["sample_values"] or "[]")
        return row

    async def close(self) -> None:
        with self._lock:
            self._conn.close()


class Neo4jGraphStore(GraphStore):
    """
    Neo4j-backed graph storage over the async driver.

    Nested values (maps, lists of maps) are stored as JSON strings since
    Neo4j properties must be primitives or homogeneous lists. The names of
    the encoded properties are kept in `_jsonKeys` on the node, so reads
    decode exactly those and leave ordinary strings alone.
    """

    MODULES_CONTAINING = f"""
        CALL {{
            MATCH (m:Entity {{entityType: '{MODULE_ENTITY_TYPE}'}})
            WHERE m.targetEntityId = $entityId
            RETURN m, 'referenced' AS connectionType, 1 AS patternRank

            UNION

            MATCH (e:Entity {{id: $entityId}})
            MATCH (m:Entity {{entityType: '{MODULE_ENTITY_TYPE}'}})
            WHERE m.targetEntityType = e.entityType
            RETURN m, 'type_context' AS connectionType, 2 AS patternRank

            UNION

            MATCH (e:Entity {{id: $entityId}})-[:HAS_RELATION]->(:Relation)-[:TO_ENTITY]->(m:Entity {{entityType: '{MODULE_ENTITY_TYPE}'}})
            RETURN m, 'explicit_relation' AS connectionType, 3 AS patternRank
        }}
        RETURN properties(m) AS node, connectionType
        ORDER BY patternRank
    """

    ENTITIES_IN_MODULE = f"""
        MATCH (m:Entity {{id: $moduleId, entityType: '{MODULE_ENTITY_TYPE}'}})
        CALL {{
            WITH m
            MATCH (e:Entity)
            WHERE e.entityType = m.targetEntityType AND e.id <> m.id
            RETURN e
            UNION
            WITH m
            MATCH (m)-[:HAS_RELATION|CONTAINS]->(e:Entity)
            WHERE e.id <> m.id
            RETURN e
            UNION
            WITH m
            MATCH (e:Entity)
            WHERE e.targetEntityId = m.id AND e.id <> m.id
            RETURN e
        }}
        RETURN DISTINCT properties(e) AS node
    """

    GROUP_MEMBERS = """
        MATCH (m:Entity {id: $moduleId})-[:CONTAINS|REFERENCES]-(e:Entity)
        WHERE e.id <> $moduleId
        RETURN DISTINCT properties(e) AS node

        UNION

        MATCH (e:Entity)
        WHERE e.targetEntityId = $moduleId OR e.moduleId = $moduleId
        RETURN DISTINCT properties(e) AS node
    """

    ENTITIES_REFERENCING_MODULE = """
        MATCH (e:Entity)
        WHERE e.targetEntityId = $moduleId OR e.moduleId = $moduleId
        RETURN properties(e) AS node
    """

    UPSERT_PATTERN = """
        MERGE (p:AttributePattern {entityType: $entityType, attributeName: $attributeName})
        SET p += $pattern, p.updated = timestamp()
        RETURN p
    """

    def __init__(
        self,
        uri: str = "bolt://localhost:7687",
        username: str = None,
        password: str = None,
        database: str = None,
    ):
        self.uri = uri
        self.username = username
        self.password = password
        self.database = database
        self.driver = None
        self._connect_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Create the async driver and verify connectivity. Safe to call concurrently."""
        from neo4j import AsyncGraphDatabase

        async with self._connect_lock:
            if self.driver is not None:
                return
            auth = (self.username, self.password) if self.username and self.password else None
            driver = AsyncGraphDatabase.driver(self.uri, auth=auth)
            try:
                await driver.verify_connectivity()
            except Exception:
                await driver.close()
                raise
            self.driver = driver
        logger.info(f"Neo4j graph store connected to {self.uri}")

    async def close(self) -> None:
        if self.driver:
            await self.driver.close()
            self.driver = None
            logger.info("Neo4j graph store closed")

    async def execute_query(self, query: str, params: Dict[str, Any] = None) -> List[Dict[str, Any]]:
        if self.driver is None:
            await self.initialize()
        async with self.driver.session(database=self.database) as session:
            result = await session.run(query, params or {})
            return await result.data()

    @staticmethod
    def _needs_json(value: Any) -> bool:
        if isinstance(value, dict):
            return True
        return isinstance(value, (list, tuple)) and any(isinstance(v, (dict, list, tuple)) for v in value)

    @classmethod
    def _prepare(cls, value: Any) -> Any:
        if cls._needs_json(value):
            return json.dumps(value if isinstance(value, dict) else list(value), default=str)
        return value

    @classmethod
    def _encode(cls, attributes: Dict[str, Any]) -> Dict[str, Any]:
        props = {k: cls._prepare(v) for k, v in attributes.items()}
        props[JSON_KEYS_PROPERTY] = sorted(k for k, v in attributes.items() if cls._needs_json(v))
        return props

    @staticmethod
    def _decode(node: Dict[str, Any]) -> Dict[str, Any]:
        node = dict(node)
        for key in node.pop(JSON_KEYS_PROPERTY, None) or []:
            if isinstance(node.get(key), str):
                node[key] = json.loads(node[key])
        return node

    async def get_entity(self, entity_id: str) -> Optional[Dict[str, Any]]:
        rows = await self.execute_query(
            "MATCH (e:Entity {id: $id}) RETURN properties(e) AS node", {"id": entity_id}
        )
        return self._decode(rows[0]["node"]) if rows else None

    async def create_entity(
        self,
        entity_type: str,
        attributes: Dict[str, Any] = None,
        entity_id: str = None,
    ) -> Dict[str, Any]:
        now = _now()
        properties = {"createdAt": now, "modifiedAt": now, **(attributes or {})}
        properties["id"] = entity_id or str(uuid.uuid4())
        properties["entityType"] = entity_type

        rows = await self.execute_query(
            "CREATE (e:Entity) SET e = $props RETURN properties(e) AS node",
            {"props": self._encode(properties)},
        )
        return self._decode(rows[0]["node"])

    async def update_entity_attribute(self, entity_id: str, attribute_name: str, value: Any) -> Dict[str, Any]:
        rows = await self.execute_query(
            f"""MATCH (e:Entity {{id: $entityId}})
               SET e += $props, e.modifiedAt = $modifiedAt,
                   e.{JSON_KEYS_PROPERTY} = [k IN coalesce(e.{JSON_KEYS_PROPERTY}, []) WHERE k <> $name] + $encoded
               RETURN properties(e) AS node""",
            {
                "entityId": entity_id,
                "name": attribute_name,
                "props": {attribute_name: self._prepare(value)},
                "encoded": [attribute_name] if self._needs_json(value) else [],
                "modifiedAt": _now(),
            },
        )
        if not rows:
            raise KeyError(f"Entity {entity_id} not found")
        return self._decode(rows[0]["node"])

    async def add_relationship(self, source_id: str, target_id: str, rel_type: str) -> bool:
        rel_type = self._check_rel_type(rel_type)
        rows = await self.execute_query(
            f"""MATCH (s:Entity {{id: $sourceId}})
                MATCH (t:Entity {{id: $targetId}})
                MERGE (s)-[:{rel_type}]->(t)
                RETURN s.id AS id""",
            {"sourceId": source_id, "targetId": target_id},
        )
        return bool(rows)

    async def modules_containing(self, entity_id: str) -> List[Dict[str, Any]]:
        rows = await self.execute_query(self.MODULES_CONTAINING, {"entityId": entity_id})
        return _dedupe_modules([{**row, "node": self._decode(row["node"])} for row in rows])

    async def entities_in_module(self, module_id: str) -> List[Dict[str, Any]]:
        rows = await self.execute_query(self.ENTITIES_IN_MODULE, {"moduleId": module_id})
        return [self._decode(row["node"]) for row in rows]

    async def group_members(self, module_id: str) -> List[Dict[str, Any]]:
        rows = await self.execute_query(self.GROUP_MEMBERS, {"moduleId": module_id})
        return [self._decode(row["node"]) for row in rows]

    async def entities_referencing_module(self, module_id: str) -> List[Dict[str, Any]]:
        rows = await self.execute_query(self.ENTITIES_REFERENCING_MODULE, {"moduleId": module_id})
        return [self._decode(row["node"]) for row in rows]

    async def upsert_pattern_summary(self, summary: Dict[str, Any]) -> None:
        pattern = dict(summary)
        pattern["sampleValues"] = [json.dumps(v, default=str) for v in summary.get("sampleValues", [])]
        await self.execute_query(
            self.UPSERT_PATTERN,
            {
                "entityType": summary["entityType"],
                "attributeName": summary["attributeName"],
                "pattern": pattern,
            },
        )


def create_graph_store(backend: str = "sqlite", **kwargs) -> GraphStore:
    """
    Factory function to create graph store.

    Args:
        backend: "sqlite", "sqlite:///path/to.db", "neo4j://..." or "bolt://..."
        **kwargs: Additional arguments for the backend

    Returns:
        GraphStore instance
    """
    if backend == "sqlite" or backend.startswith("sqlite://"):
        db_path = kwargs.get("db_path", "~/.organic-schema/graph.db")
        if backend.startswith("sqlite:///"):
            db_path = backend[len("sqlite:///"):]
        elif backend.startswith("sqlite://"):
            db_path = backend[len("sqlite://"):]
        return SQLiteGraphStore(db_path)

    elif backend.startswith(("neo4j://", "neo4j+s://", "bolt://", "bolt+s://")):
        return Neo4jGraphStore(
            uri=backend,
            username=kwargs.get("username"),
            password=kwargs.get("password"),
            database=kwargs.get("database"),
        )

    else:
        raise ValueError(f"Unknown graph backend: {backend}")
