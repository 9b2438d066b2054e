"""SQLite-backed organization training corpus.

Owns the tables generation writes to.  Foreign keys are declared without
``ON DELETE CASCADE`` and the connection enables ``PRAGMA foreign_keys``,
so removing a parent while children still reference it raises
``sqlite3.IntegrityError``: the generator must clear children first.

Every natural key is stored alongside a normalized ``*_key`` column
(casefolded, whitespace-collapsed) which carries the UNIQUE constraint, and
every write is ``INSERT ... ON CONFLICT(<natural key>) DO UPDATE``.
Each upsert call runs in a single transaction.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from pathlib import Path

import structlog

from trainkb.interfaces.corpus_store import CORPUS_TABLES, ICorpusStore
from trainkb.models.canonical import (
    CanonicalCourse,
    CanonicalGuideline,
    CanonicalPackage,
    CanonicalScenarioTemplate,
)
from trainkb.providers.store.sqlite_base import SQLiteStoreBase, utc_now_iso
from trainkb.utils.text_normalizer import normalize_key

logger = structlog.get_logger(logger_name=__name__)

_DEFAULT_DB_PATH = Path("data/trainkb.db")

_SCHEMA_SQL = [
    """\
CREATE TABLE IF NOT EXISTS service_packages (
    id                     INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id        TEXT    NOT NULL,
    name                   TEXT    NOT NULL,
    name_key               TEXT    NOT NULL,
    description            TEXT,
    initial_price          REAL,
    recurring_price        REAL,
    service_frequency      TEXT,
    included_services_json TEXT    NOT NULL DEFAULT '[]',
    included_pests_json    TEXT    NOT NULL DEFAULT '[]',
    display_order          INTEGER NOT NULL DEFAULT 0,
    updated_at             TEXT    NOT NULL,
    UNIQUE (organization_id, name_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS package_objections (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    package_id           INTEGER NOT NULL REFERENCES service_packages(id),
    objection_text       TEXT    NOT NULL,
    objection_key        TEXT    NOT NULL,
    category             TEXT,
    recommended_response TEXT,
    key_points_json      TEXT    NOT NULL DEFAULT '[]',
    alternatives_json    TEXT    NOT NULL DEFAULT '[]',
    things_to_avoid_json TEXT    NOT NULL DEFAULT '[]',
    updated_at           TEXT    NOT NULL,
    UNIQUE (package_id, objection_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS package_selling_points (
    id            INTEGER PRIMARY KEY AUTOINCREMENT,
    package_id    INTEGER NOT NULL REFERENCES service_packages(id),
    point         TEXT    NOT NULL,
    point_key     TEXT    NOT NULL,
    display_order INTEGER NOT NULL DEFAULT 0,
    UNIQUE (package_id, point_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS sales_guidelines (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT    NOT NULL,
    guideline_type  TEXT    NOT NULL,
    title           TEXT    NOT NULL,
    title_key       TEXT    NOT NULL,
    content         TEXT    NOT NULL DEFAULT '',
    examples_json   TEXT    NOT NULL DEFAULT '[]',
    display_order   INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT    NOT NULL,
    UNIQUE (organization_id, title_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS courses (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    name_key        TEXT    NOT NULL,
    description     TEXT,
    category        TEXT    NOT NULL,
    icon            TEXT,
    display_order   INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT    NOT NULL,
    UNIQUE (organization_id, name_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS course_modules (
    id                   INTEGER PRIMARY KEY AUTOINCREMENT,
    course_id            INTEGER NOT NULL REFERENCES courses(id),
    name                 TEXT    NOT NULL,
    name_key             TEXT    NOT NULL,
    description          TEXT,
    difficulty           TEXT    NOT NULL,
    scenario_count       INTEGER NOT NULL,
    unlock_order         INTEGER NOT NULL CHECK (unlock_order >= 1),
    pass_threshold       INTEGER NOT NULL,
    required_completions INTEGER NOT NULL,
    updated_at           TEXT    NOT NULL,
    UNIQUE (course_id, name_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS scenario_templates (
    id                          INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id             TEXT    NOT NULL,
    module_id                   INTEGER NOT NULL REFERENCES course_modules(id),
    name                        TEXT    NOT NULL,
    name_key                    TEXT    NOT NULL,
    base_situation              TEXT    NOT NULL DEFAULT '',
    customer_goals              TEXT,
    csr_objectives_json         TEXT    NOT NULL DEFAULT '[]',
    scoring_focus_json          TEXT    NOT NULL DEFAULT '{}',
    escalation_triggers_json    TEXT    NOT NULL DEFAULT '[]',
    de_escalation_triggers_json TEXT    NOT NULL DEFAULT '[]',
    resolution_conditions_json  TEXT    NOT NULL DEFAULT '[]',
    difficulty                  TEXT    NOT NULL,
    display_order               INTEGER NOT NULL DEFAULT 0,
    updated_at                  TEXT    NOT NULL,
    UNIQUE (organization_id, module_id, name_key)
);
""",
    """\
CREATE TABLE IF NOT EXISTS customer_profiles (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    organization_id TEXT    NOT NULL,
    name            TEXT    NOT NULL,
    name_key        TEXT    NOT NULL,
    is_system       INTEGER NOT NULL DEFAULT 0,
    updated_at      TEXT    NOT NULL,
    UNIQUE (organization_id, name_key)
);
""",
    "CREATE INDEX IF NOT EXISTS idx_objections_package ON package_objections(package_id);",
    "CREATE INDEX IF NOT EXISTS idx_points_package ON package_selling_points(package_id);",
    "CREATE INDEX IF NOT EXISTS idx_modules_course ON course_modules(course_id);",
    "CREATE INDEX IF NOT EXISTS idx_templates_module ON scenario_templates(module_id);",
]

# Organization scoping per table.  Child tables without an organization_id
# column are scoped through their parent.
_ORG_SCOPE: dict[str, str] = {
    "scenario_templates": "organization_id = ?",
    "package_selling_points": (
        "package_id IN (SELECT id FROM service_packages WHERE organization_id = ?)"
    ),
    "package_objections": (
        "package_id IN (SELECT id FROM service_packages WHERE organization_id = ?)"
    ),
    "course_modules": "course_id IN (SELECT id FROM courses WHERE organization_id = ?)",
    "courses": "organization_id = ?",
    "service_packages": "organization_id = ?",
    "sales_guidelines": "organization_id = ?",
    "customer_profiles": "organization_id = ?",
}

# child table -> (foreign key column, parent table)
_CHILD_PARENTS: dict[str, tuple[str, str]] = {
    "package_objections": ("package_id", "service_packages"),
    "package_selling_points": ("package_id", "service_packages"),
    "course_modules": ("course_id", "courses"),
    "scenario_templates": ("module_id", "course_modules"),
}

_UPSERT_PACKAGE_SQL = """\
INSERT INTO service_packages (
    organization_id, name, name_key, description, initial_price, recurring_price,
    service_frequency, included_services_json, included_pests_json, display_order, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (organization_id, name_key) DO UPDATE SET
    name                   = excluded.name,
    description            = excluded.description,
    initial_price          = excluded.initial_price,
    recurring_price        = excluded.recurring_price,
    service_frequency      = excluded.service_frequency,
    included_services_json = excluded.included_services_json,
    included_pests_json    = excluded.included_pests_json,
    display_order          = excluded.display_order,
    updated_at             = excluded.updated_at;
"""

_UPSERT_OBJECTION_SQL = """\
INSERT INTO package_objections (
    package_id, objection_text, objection_key, category, recommended_response,
    key_points_json, alternatives_json, things_to_avoid_json, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (package_id, objection_key) DO UPDATE SET
    objection_text       = excluded.objection_text,
    category             = excluded.category,
    recommended_response = excluded.recommended_response,
    key_points_json      = excluded.key_points_json,
    alternatives_json    = excluded.alternatives_json,
    things_to_avoid_json = excluded.things_to_avoid_json,
    updated_at           = excluded.updated_at;
"""

_UPSERT_SELLING_POINT_SQL = """\
INSERT INTO package_selling_points (package_id, point, point_key, display_order)
VALUES (?, ?, ?, ?)
ON CONFLICT (package_id, point_key) DO UPDATE SET
    point         = excluded.point,
    display_order = excluded.display_order;
"""

_UPSERT_GUIDELINE_SQL = """\
INSERT INTO sales_guidelines (
    organization_id, guideline_type, title, title_key, content, examples_json,
    display_order, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (organization_id, title_key) DO UPDATE SET
    guideline_type = excluded.guideline_type,
    title          = excluded.title,
    content        = excluded.content,
    examples_json  = excluded.examples_json,
    display_order  = excluded.display_order,
    updated_at     = excluded.updated_at;
"""

_UPSERT_COURSE_SQL = """\
INSERT INTO courses (
    organization_id, name, name_key, description, category, icon, display_order, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (organization_id, name_key) DO UPDATE SET
    name          = excluded.name,
    description   = excluded.description,
    category      = excluded.category,
    icon          = excluded.icon,
    display_order = excluded.display_order,
    updated_at    = excluded.updated_at;
"""

_UPSERT_MODULE_SQL = """\
INSERT INTO course_modules (
    course_id, name, name_key, description, difficulty, scenario_count,
    unlock_order, pass_threshold, required_completions, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (course_id, name_key) DO UPDATE SET
    name                 = excluded.name,
    description          = excluded.description,
    difficulty           = excluded.difficulty,
    scenario_count       = excluded.scenario_count,
    unlock_order         = excluded.unlock_order,
    pass_threshold       = excluded.pass_threshold,
    required_completions = excluded.required_completions,
    updated_at           = excluded.updated_at;
"""

_UPSERT_TEMPLATE_SQL = """\
INSERT INTO scenario_templates (
    organization_id, module_id, name, name_key, base_situation, customer_goals,
    csr_objectives_json, scoring_focus_json, escalation_triggers_json,
    de_escalation_triggers_json, resolution_conditions_json, difficulty,
    display_order, updated_at
) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
ON CONFLICT (organization_id, module_id, name_key) DO UPDATE SET
    name                        = excluded.name,
    base_situation              = excluded.base_situation,
    customer_goals              = excluded.customer_goals,
    csr_objectives_json         = excluded.csr_objectives_json,
    scoring_focus_json          = excluded.scoring_focus_json,
    escalation_triggers_json    = excluded.escalation_triggers_json,
    de_escalation_triggers_json = excluded.de_escalation_triggers_json,
    resolution_conditions_json  = excluded.resolution_conditions_json,
    difficulty                  = excluded.difficulty,
    display_order               = excluded.display_order,
    updated_at                  = excluded.updated_at;
"""

_UPSERT_PROFILE_SQL = """\
INSERT INTO customer_profiles (organization_id, name, name_key, is_system, updated_at)
VALUES (?, ?, ?, ?, ?)
ON CONFLICT (organization_id, name_key) DO UPDATE SET
    name       = excluded.name,
    is_system  = excluded.is_system,
    updated_at = excluded.updated_at;
"""


class SQLiteCorpusStore(SQLiteStoreBase, ICorpusStore):
    """SQLite-backed training corpus with natural-key upserts."""

    def __init__(self, db_path: str | Path = _DEFAULT_DB_PATH) -> None:
        super().__init__(db_path)

    async def initialize(self) -> None:
        """Create the corpus tables and indices if they don't exist."""
        await self._create_schema(_SCHEMA_SQL)
        logger.info("corpus_store_initialized", path=str(self._db_path))

    # ------------------------------------------------------------------
    # Clearing
    # ------------------------------------------------------------------

    async def delete_for_organization(self, table: str, organization_id: str) -> int:
        if table not in CORPUS_TABLES:
            msg = f"Unknown corpus table: {table}"
            raise ValueError(msg)
        where = _ORG_SCOPE[table]
        if table == "customer_profiles":
            where += " AND is_system = 0"
        async with self._connect() as db:
            cursor = await db.execute(f"DELETE FROM {table} WHERE {where}", (organization_id,))
            await db.commit()
            deleted = cursor.rowcount
        logger.debug("corpus_rows_deleted", table=table, organization_id=organization_id, rows=deleted)
        return deleted

    # ------------------------------------------------------------------
    # Packages
    # ------------------------------------------------------------------

    async def upsert_packages(
        self,
        organization_id: str,
        packages: Sequence[CanonicalPackage],
    ) -> dict[str, int]:
        now = utc_now_iso()
        ids: dict[str, int] = {}
        async with self._connect() as db:
            for order, package in enumerate(packages):
                key = normalize_key(package.name)
                await db.execute(
                    _UPSERT_PACKAGE_SQL,
                    (
                        organization_id,
                        package.name,
                        key,
                        package.description,
                        package.initial_price,
                        package.recurring_price,
                        package.service_frequency,
                        json.dumps(package.included_services),
                        json.dumps(package.included_pests),
                        order,
                        now,
                    ),
                )
                cursor = await db.execute(
                    "SELECT id FROM service_packages WHERE organization_id = ? AND name_key = ?",
                    (organization_id, key),
                )
                row = await cursor.fetchone()
                ids[key] = row["id"]
            await db.commit()
        return ids

    async def upsert_package_details(
        self,
        package_ids: Mapping[str, int],
        packages: Sequence[CanonicalPackage],
    ) -> dict[str, int]:
        now = utc_now_iso()
        objections = 0
        selling_points = 0
        async with self._connect() as db:
            for package in packages:
                package_id = package_ids[normalize_key(package.name)]
                for objection in package.objections:
                    await db.execute(
                        _UPSERT_OBJECTION_SQL,
                        (
                            package_id,
                            objection.text,
                            normalize_key(objection.text),
                            objection.category,
                            objection.recommended_response,
                            json.dumps(objection.key_points),
                            json.dumps(objection.alternatives),
                            json.dumps(objection.things_to_avoid),
                            now,
                        ),
                    )
                    objections += 1
                for order, point in enumerate(package.selling_points):
                    await db.execute(
                        _UPSERT_SELLING_POINT_SQL,
                        (package_id, point, normalize_key(point), order),
                    )
                    selling_points += 1
            await db.commit()
        return {"objections": objections, "selling_points": selling_points}

    # ------------------------------------------------------------------
    # Guidelines
    # ------------------------------------------------------------------

    async def upsert_guidelines(
        self,
        organization_id: str,
        guidelines: Sequence[CanonicalGuideline],
    ) -> int:
        now = utc_now_iso()
        async with self._connect() as db:
            await db.executemany(
                _UPSERT_GUIDELINE_SQL,
                [
                    (
                        organization_id,
                        g.guideline_type,
                        g.title,
                        normalize_key(g.title),
                        g.content,
                        json.dumps(g.examples),
                        order,
                        now,
                    )
                    for order, g in enumerate(guidelines)
                ],
            )
            await db.commit()
        return len(guidelines)

    # ------------------------------------------------------------------
    # Curriculum
    # ------------------------------------------------------------------

    async def upsert_courses(
        self,
        organization_id: str,
        courses: Sequence[CanonicalCourse],
    ) -> dict[str, int]:
        now = utc_now_iso()
        ids: dict[str, int] = {}
        async with self._connect() as db:
            for order, course in enumerate(courses):
                key = normalize_key(course.name)
                await db.execute(
                    _UPSERT_COURSE_SQL,
                    (
                        organization_id,
                        course.name,
                        key,
                        course.description,
                        course.category,
                        course.icon,
                        order,
                        now,
                    ),
                )
                cursor = await db.execute(
                    "SELECT id FROM courses WHERE organization_id = ? AND name_key = ?",
                    (organization_id, key),
                )
                row = await cursor.fetchone()
                ids[key] = row["id"]
            await db.commit()
        return ids

    async def upsert_modules(
        self,
        course_ids: Mapping[str, int],
        courses: Sequence[CanonicalCourse],
    ) -> dict[tuple[str, str], int]:
        now = utc_now_iso()
        ids: dict[tuple[str, str], int] = {}
        async with self._connect() as db:
            for course in courses:
                course_key = normalize_key(course.name)
                course_id = course_ids[course_key]
                for module in course.modules:
                    module_key = normalize_key(module.name)
                    await db.execute(
                        _UPSERT_MODULE_SQL,
                        (
                            course_id,
                            module.name,
                            module_key,
                            module.description,
                            module.difficulty,
                            module.scenario_count,
                            module.unlock_order,
                            module.pass_threshold,
                            module.required_completions,
                            now,
                        ),
                    )
                    cursor = await db.execute(
                        "SELECT id FROM course_modules WHERE course_id = ? AND name_key = ?",
                        (course_id, module_key),
                    )
                    row = await cursor.fetchone()
                    ids[(course_key, module_key)] = row["id"]
            await db.commit()
        return ids

    async def upsert_scenario_templates(
        self,
        organization_id: str,
        rows: Sequence[tuple[int, int, CanonicalScenarioTemplate]],
    ) -> int:
        now = utc_now_iso()
        async with self._connect() as db:
            await db.executemany(
                _UPSERT_TEMPLATE_SQL,
                [
                    (
                        organization_id,
                        module_id,
                        t.name,
                        normalize_key(t.name),
                        t.situation,
                        t.customer_goals,
                        json.dumps(t.objectives),
                        json.dumps(t.scoring_weights),
                        json.dumps(t.escalation_triggers),
                        json.dumps(t.de_escalation_triggers),
                        json.dumps(t.resolution_conditions),
                        t.difficulty,
                        order,
                        now,
                    )
                    for module_id, order, t in rows
                ],
            )
            await db.commit()
        return len(rows)

    async def upsert_customer_profile(
        self,
        organization_id: str,
        name: str,
        is_system: bool = False,
    ) -> int:
        key = normalize_key(name)
        async with self._connect() as db:
            await db.execute(
                _UPSERT_PROFILE_SQL,
                (organization_id, name, key, int(is_system), utc_now_iso()),
            )
            cursor = await db.execute(
                "SELECT id FROM customer_profiles WHERE organization_id = ? AND name_key = ?",
                (organization_id, key),
            )
            row = await cursor.fetchone()
            await db.commit()
        return row["id"]

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    async def count_rows(self, organization_id: str) -> dict[str, int]:
        counts: dict[str, int] = {}
        async with self._connect() as db:
            for table in CORPUS_TABLES:
                cursor = await db.execute(
                    f"SELECT COUNT(*) AS n FROM {table} WHERE {_ORG_SCOPE[table]}",
                    (organization_id,),
                )
                row = await cursor.fetchone()
                counts[table] = row["n"]
        return counts

    async def count_orphans(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        async with self._connect() as db:
            for child, (column, parent) in _CHILD_PARENTS.items():
                cursor = await db.execute(
                    f"SELECT COUNT(*) AS n FROM {child} c "
                    f"LEFT JOIN {parent} p ON p.id = c.{column} WHERE p.id IS NULL"
                )
                row = await cursor.fetchone()
                counts[child] = row["n"]
        return counts

    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this provider."""
        return "sqlite_corpus_store"
