"""
Graph Store
===========
SQLite persistence for graphs, topics, items, item-topic links, typed edges,
vectors and per-graph settings.

Every read opens its own short-lived connection. Writes go through
``transaction()``, which opens a ``BEGIN IMMEDIATE`` transaction, commits when
the block succeeds and rolls back otherwise:

    with store.transaction() as tx:
        tx.insert_item(item)
        tx.put_vector(graph_id, OwnerType.ITEM, item.id, embedding)

sqlite errors are wrapped into StorageError / StorageTimeoutError.
"""

from __future__ import annotations

import json
import sqlite3
from contextlib import closing, contextmanager
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Sequence, Tuple

import numpy as np
from loguru import logger

from .config import get_config
from .exceptions import wrap_storage_exception
from .models import (
    EdgeType,
    Graph,
    Item,
    OwnerType,
    Topic,
    TopicEdge,
    now_ms,
)
from .vector_math import decode_vector, encode_vector

BACKEND = "sqlite"

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS graphs (
        id TEXT PRIMARY KEY,
        name TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        is_default INTEGER NOT NULL DEFAULT 0
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topics (
        id TEXT PRIMARY KEY,
        graph_id TEXT NOT NULL,
        label TEXT NOT NULL,
        uses INTEGER NOT NULL DEFAULT 1,
        created_at INTEGER NOT NULL,
        x REAL,
        y REAL,
        z REAL,
        UNIQUE(graph_id, label)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS items (
        id TEXT PRIMARY KEY,
        graph_id TEXT NOT NULL,
        title TEXT NOT NULL,
        summary TEXT NOT NULL DEFAULT '',
        link TEXT NOT NULL,
        created_at INTEGER NOT NULL,
        UNIQUE(graph_id, link)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS item_topic (
        graph_id TEXT NOT NULL,
        item_id TEXT NOT NULL,
        topic_id TEXT NOT NULL,
        PRIMARY KEY (graph_id, item_id, topic_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS topic_edges (
        id TEXT PRIMARY KEY,
        graph_id TEXT NOT NULL,
        src TEXT NOT NULL,
        dst TEXT NOT NULL,
        type TEXT NOT NULL,
        similarity REAL NOT NULL,
        created_at INTEGER NOT NULL,
        UNIQUE(graph_id, src, dst, type)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS vectors (
        graph_id TEXT NOT NULL,
        owner_type TEXT NOT NULL,
        owner_id TEXT NOT NULL,
        buf BLOB NOT NULL,
        created_at INTEGER NOT NULL,
        PRIMARY KEY (graph_id, owner_type, owner_id)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS graph_settings (
        graph_id TEXT PRIMARY KEY,
        data TEXT NOT NULL,
        updated_at INTEGER NOT NULL
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_topics_graph ON topics(graph_id)",
    "CREATE INDEX IF NOT EXISTS idx_items_graph ON items(graph_id)",
    "CREATE INDEX IF NOT EXISTS idx_item_topic_topic ON item_topic(graph_id, topic_id)",
    "CREATE INDEX IF NOT EXISTS idx_edges_graph_src ON topic_edges(graph_id, src)",
    "CREATE INDEX IF NOT EXISTS idx_edges_graph_dst ON topic_edges(graph_id, dst)",
)

# Tables cleared when a graph is reset (graph row and settings survive)
_GRAPH_DATA_TABLES = ("item_topic", "topic_edges", "vectors", "topics", "items")


# =============================================================================
# Row mapping
# =============================================================================

def _graph(row: sqlite3.Row) -> Graph:
    return Graph(id=row["id"], name=row["name"], created_at=row["created_at"], is_default=bool(row["is_default"]))


def _topic(row: sqlite3.Row) -> Topic:
    return Topic(
        id=row["id"],
        graph_id=row["graph_id"],
        label=row["label"],
        uses=row["uses"],
        created_at=row["created_at"],
        x=row["x"],
        y=row["y"],
        z=row["z"],
    )


def _item(row: sqlite3.Row) -> Item:
    return Item(
        id=row["id"],
        graph_id=row["graph_id"],
        title=row["title"],
        summary=row["summary"],
        link=row["link"],
        created_at=row["created_at"],
    )


def _edge(row: sqlite3.Row) -> TopicEdge:
    return TopicEdge(
        id=row["id"],
        graph_id=row["graph_id"],
        src=row["src"],
        dst=row["dst"],
        type=EdgeType(row["type"]),
        similarity=row["similarity"],
        created_at=row["created_at"],
    )


def _placeholders(values: Sequence[Any]) -> str:
    return ",".join("?" for _ in values)


# =============================================================================
# Transaction
# =============================================================================

class StoreTransaction:
    """Write operations bound to one open transaction."""

    def __init__(self, conn: sqlite3.Connection):
        self.conn = conn

    # ---- Graphs ------------------------------------------------------------

    def insert_graph(self, graph: Graph) -> None:
        self.conn.execute(
            "INSERT INTO graphs (id, name, created_at, is_default) VALUES (?, ?, ?, ?)",
            (graph.id, graph.name, graph.created_at, int(graph.is_default)),
        )

    def clear_graph(self, graph_id: str) -> None:
        """Delete all topics, items, links, edges and vectors of a graph."""
        for table in _GRAPH_DATA_TABLES:
            self.conn.execute(f"DELETE FROM {table} WHERE graph_id = ?", (graph_id,))

    def delete_graph(self, graph_id: str) -> None:
        self.clear_graph(graph_id)
        self.conn.execute("DELETE FROM graph_settings WHERE graph_id = ?", (graph_id,))
        self.conn.execute("DELETE FROM graphs WHERE id = ?", (graph_id,))

    # ---- Items and topics --------------------------------------------------

    def insert_item(self, item: Item) -> None:
        self.conn.execute(
            "INSERT INTO items (id, graph_id, title, summary, link, created_at) VALUES (?, ?, ?, ?, ?, ?)",
            (item.id, item.graph_id, item.title, item.summary, item.link, item.created_at),
        )

    def insert_topic(self, topic: Topic) -> None:
        self.conn.execute(
            "INSERT INTO topics (id, graph_id, label, uses, created_at, x, y, z) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?)",
            (topic.id, topic.graph_id, topic.label, topic.uses, topic.created_at, topic.x, topic.y, topic.z),
        )

    def increment_uses(self, topic_ids: Iterable[str]) -> None:
        for topic_id in topic_ids:
            self.conn.execute("UPDATE topics SET uses = uses + 1 WHERE id = ?", (topic_id,))

    def link_item_topic(self, graph_id: str, item_id: str, topic_id: str) -> None:
        self.conn.execute(
            "INSERT OR IGNORE INTO item_topic (graph_id, item_id, topic_id) VALUES (?, ?, ?)",
            (graph_id, item_id, topic_id),
        )

    def link_exists(self, graph_id: str, link: str) -> bool:
        row = self.conn.execute(
            "SELECT 1 FROM items WHERE graph_id = ? AND link = ? LIMIT 1", (graph_id, link)
        ).fetchone()
        return row is not None

    def topics_of_item(self, graph_id: str, item_id: str) -> List[str]:
        rows = self.conn.execute(
            "SELECT topic_id FROM item_topic WHERE graph_id = ? AND item_id = ?",
            (graph_id, item_id),
        ).fetchall()
        return [r["topic_id"] for r in rows]

    def decrement_uses(self, topic_ids: Iterable[str]) -> None:
        for topic_id in topic_ids:
            self.conn.execute(
                "UPDATE topics SET uses = MAX(uses - 1, 0) WHERE id = ?",
                (topic_id,),
            )

    def delete_item(self, graph_id: str, item_id: str) -> bool:
        """Delete an item, its links and vector; linked topics lose one use."""
        self.decrement_uses(self.topics_of_item(graph_id, item_id))
        self.conn.execute("DELETE FROM item_topic WHERE graph_id = ? AND item_id = ?", (graph_id, item_id))
        self.conn.execute(
            "DELETE FROM vectors WHERE graph_id = ? AND owner_type = ? AND owner_id = ?",
            (graph_id, OwnerType.ITEM.value, item_id),
        )
        cur = self.conn.execute("DELETE FROM items WHERE graph_id = ? AND id = ?", (graph_id, item_id))
        return cur.rowcount > 0

    def delete_topic(self, graph_id: str, topic_id: str) -> bool:
        """Delete a topic with its links, incident edges and vector."""
        self.conn.execute("DELETE FROM item_topic WHERE graph_id = ? AND topic_id = ?", (graph_id, topic_id))
        self.conn.execute(
            "DELETE FROM topic_edges WHERE graph_id = ? AND (src = ? OR dst = ?)",
            (graph_id, topic_id, topic_id),
        )
        self.conn.execute(
            "DELETE FROM vectors WHERE graph_id = ? AND owner_type = ? AND owner_id = ?",
            (graph_id, OwnerType.TOPIC.value, topic_id),
        )
        cur = self.conn.execute("DELETE FROM topics WHERE graph_id = ? AND id = ?", (graph_id, topic_id))
        return cur.rowcount > 0

    def update_positions(self, positions: Iterable[Tuple[str, float, float, float]]) -> None:
        self.conn.executemany(
            "UPDATE topics SET x = ?, y = ?, z = ? WHERE id = ?",
            [(float(x), float(y), float(z), topic_id) for topic_id, x, y, z in positions],
        )

    # ---- Edges -------------------------------------------------------------

    def list_edges(self, graph_id: str) -> List[TopicEdge]:
        """Edges as seen inside this transaction, including its own writes."""
        rows = self.conn.execute(
            "SELECT * FROM topic_edges WHERE graph_id = ? ORDER BY rowid", (graph_id,)
        ).fetchall()
        return [_edge(r) for r in rows]

    def insert_edge(self, edge: TopicEdge) -> None:
        self.conn.execute(
            "INSERT INTO topic_edges (id, graph_id, src, dst, type, similarity, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?)",
            (edge.id, edge.graph_id, edge.src, edge.dst, edge.type.value, edge.similarity, edge.created_at),
        )

    def delete_edge(self, edge: TopicEdge) -> None:
        self.conn.execute(
            "DELETE FROM topic_edges WHERE graph_id = ? AND src = ? AND dst = ? AND type = ?",
            (edge.graph_id, edge.src, edge.dst, edge.type.value),
        )

    # ---- Vectors and settings ----------------------------------------------

    def put_vector(self, graph_id: str, owner_type: OwnerType, owner_id: str, vector) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO vectors (graph_id, owner_type, owner_id, buf, created_at) "
            "VALUES (?, ?, ?, ?, ?)",
            (graph_id, owner_type.value, owner_id, encode_vector(vector), now_ms()),
        )

    def save_settings(self, graph_id: str, data: Dict[str, Any]) -> None:
        self.conn.execute(
            "INSERT OR REPLACE INTO graph_settings (graph_id, data, updated_at) VALUES (?, ?, ?)",
            (graph_id, json.dumps(data), now_ms()),
        )


# =============================================================================
# Store
# =============================================================================

class GraphStore:
    """SQLite-backed storage for all graphs."""

    def __init__(self, db_path: Optional[str] = None, timeout: Optional[float] = None):
        config = get_config()
        self.db_path = str(db_path or config.storage.db_path)
        self.timeout = timeout if timeout is not None else config.storage.timeout_seconds
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self.db_path, timeout=self.timeout, isolation_level=None)
        conn.row_factory = sqlite3.Row
        return conn

    def _init_db(self) -> None:
        """Initialize SQLite database schema."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)
        try:
            with closing(self._connect()) as conn:
                conn.execute("PRAGMA journal_mode=WAL")
                conn.execute("PRAGMA synchronous=NORMAL")
                for statement in _SCHEMA:
                    conn.execute(statement)
        except sqlite3.Error as e:
            raise wrap_storage_exception(BACKEND, "init", e) from e
        logger.debug(f"Graph store ready at {self.db_path}")

    @contextmanager
    def transaction(self) -> Iterator[StoreTransaction]:
        """Run the block in one IMMEDIATE transaction; rollback on any error."""
        try:
            conn = self._connect()
        except sqlite3.Error as e:
            raise wrap_storage_exception(BACKEND, "connect", e) from e
        try:
            conn.execute("BEGIN IMMEDIATE")
            yield StoreTransaction(conn)
            conn.execute("COMMIT")
        except sqlite3.Error as e:
            self._rollback(conn)
            raise wrap_storage_exception(BACKEND, "transaction", e) from e
        except BaseException:
            self._rollback(conn)
            raise
        finally:
            conn.close()

    @staticmethod
    def _rollback(conn: sqlite3.Connection) -> None:
        if conn.in_transaction:
            try:
                conn.execute("ROLLBACK")
            except sqlite3.Error as e:
                logger.error(f"Rollback failed: {e}")

    def _query(self, sql: str, params: Sequence[Any] = ()) -> List[sqlite3.Row]:
        try:
            with closing(self._connect()) as conn:
                return conn.execute(sql, params).fetchall()
        except sqlite3.Error as e:
            raise wrap_storage_exception(BACKEND, "query", e) from e

    # ---- Graphs ------------------------------------------------------------

    def list_graphs(self) -> List[Graph]:
        return [_graph(r) for r in self._query("SELECT * FROM graphs ORDER BY created_at, rowid")]

    def get_graph(self, graph_id: str) -> Optional[Graph]:
        rows = self._query("SELECT * FROM graphs WHERE id = ?", (graph_id,))
        return _graph(rows[0]) if rows else None

    def default_graph(self) -> Optional[Graph]:
        rows = self._query("SELECT * FROM graphs WHERE is_default = 1 ORDER BY rowid LIMIT 1")
        return _graph(rows[0]) if rows else None

    # ---- Topics ------------------------------------------------------------

    def list_topics(self, graph_id: str) -> List[Topic]:
        """All topics of a graph in insertion order."""
        return [_topic(r) for r in self._query("SELECT * FROM topics WHERE graph_id = ? ORDER BY rowid", (graph_id,))]

    def get_topic(self, graph_id: str, topic_id: str) -> Optional[Topic]:
        rows = self._query("SELECT * FROM topics WHERE graph_id = ? AND id = ?", (graph_id, topic_id))
        return _topic(rows[0]) if rows else None

    def count_unpositioned_topics(self, graph_id: str) -> int:
        rows = self._query(
            "SELECT COUNT(*) AS n FROM topics WHERE graph_id = ? AND (x IS NULL OR y IS NULL OR z IS NULL)",
            (graph_id,),
        )
        return rows[0]["n"]

    # ---- Items -------------------------------------------------------------

    def list_items(self, graph_id: str) -> List[Item]:
        return [_item(r) for r in self._query("SELECT * FROM items WHERE graph_id = ? ORDER BY rowid", (graph_id,))]

    def get_item(self, graph_id: str, item_id: str) -> Optional[Item]:
        rows = self._query("SELECT * FROM items WHERE graph_id = ? AND id = ?", (graph_id, item_id))
        return _item(rows[0]) if rows else None

    def item_by_link(self, graph_id: str, link: str) -> Optional[Item]:
        rows = self._query("SELECT * FROM items WHERE graph_id = ? AND link = ?", (graph_id, link))
        return _item(rows[0]) if rows else None

    def item_topic_links(self, graph_id: str) -> List[Tuple[str, str]]:
        rows = self._query(
            "SELECT item_id, topic_id FROM item_topic WHERE graph_id = ? ORDER BY rowid",
            (graph_id,),
        )
        return [(r["item_id"], r["topic_id"]) for r in rows]

    def items_for_topics(self, graph_id: str, topic_ids: Sequence[str]) -> List[Item]:
        """Distinct items linked to any of the topics, newest first."""
        if not topic_ids:
            return []
        rows = self._query(
            "SELECT * FROM items WHERE graph_id = ? AND id IN ("
            f"SELECT item_id FROM item_topic WHERE graph_id = ? AND topic_id IN ({_placeholders(topic_ids)})"
            ") ORDER BY created_at DESC, rowid DESC",
            (graph_id, graph_id, *topic_ids),
        )
        return [_item(r) for r in rows]

    # ---- Edges -------------------------------------------------------------

    def list_edges(self, graph_id: str) -> List[TopicEdge]:
        return [_edge(r) for r in self._query("SELECT * FROM topic_edges WHERE graph_id = ? ORDER BY rowid", (graph_id,))]

    # ---- Vectors -----------------------------------------------------------

    def get_vector(self, graph_id: str, owner_type: OwnerType, owner_id: str) -> Optional[np.ndarray]:
        rows = self._query(
            "SELECT buf FROM vectors WHERE graph_id = ? AND owner_type = ? AND owner_id = ?",
            (graph_id, owner_type.value, owner_id),
        )
        return decode_vector(rows[0]["buf"], owner_id) if rows else None

    def get_vectors(self, graph_id: str, owner_type: OwnerType) -> Dict[str, np.ndarray]:
        rows = self._query(
            "SELECT owner_id, buf FROM vectors WHERE graph_id = ? AND owner_type = ?",
            (graph_id, owner_type.value),
        )
        return {r["owner_id"]: decode_vector(r["buf"], r["owner_id"]) for r in rows}

    def vector_dimension(self, graph_id: str) -> Optional[int]:
        """Dimensionality of the graph's stored vectors, None if it has none."""
        rows = self._query("SELECT LENGTH(buf) AS n FROM vectors WHERE graph_id = ? LIMIT 1", (graph_id,))
        return rows[0]["n"] // 4 if rows else None

    # ---- Settings and stats ------------------------------------------------

    def load_settings(self, graph_id: str) -> Optional[Dict[str, Any]]:
        rows = self._query("SELECT data FROM graph_settings WHERE graph_id = ?", (graph_id,))
        return json.loads(rows[0]["data"]) if rows else None

    def stats(self, graph_id: str) -> Dict[str, Any]:
        counts = {}
        for key, table in (("topics", "topics"), ("items", "items"), ("edges", "topic_edges")):
            counts[key] = self._query(f"SELECT COUNT(*) AS n FROM {table} WHERE graph_id = ?", (graph_id,))[0]["n"]
        by_type = {t.value: 0 for t in EdgeType}
        for row in self._query(
            "SELECT type, COUNT(*) AS n FROM topic_edges WHERE graph_id = ? GROUP BY type", (graph_id,)
        ):
            by_type[row["type"]] = row["n"]
        counts["edges_by_type"] = by_type
        return counts


__all__ = ["GraphStore", "StoreTransaction"]
