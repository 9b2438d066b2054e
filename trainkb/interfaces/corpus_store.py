"""Abstract base class for the organization training-corpus store.

The corpus store holds the durable, organization-owned rows that generation
produces: service packages (with selling points and objections), sales
guidelines, courses, course modules and scenario templates, plus customer
profiles that generation clears but never writes.

Implementations must enforce foreign keys *without* cascading deletes and
must enforce the natural-key unique constraints below; every write is an
insert-or-update on its natural key so re-running generation never
duplicates rows:

    service_packages        (organization_id, name)
    package_objections      (package_id, objection_text)
    package_selling_points  (package_id, point)
    sales_guidelines        (organization_id, title)
    courses                 (organization_id, name)
    course_modules          (course_id, name)
    scenario_templates      (organization_id, module_id, name)
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Mapping, Sequence

from trainkb.models.canonical import (
    CanonicalCourse,
    CanonicalGuideline,
    CanonicalPackage,
    CanonicalScenarioTemplate,
)

# Every table an organization's corpus occupies.
CORPUS_TABLES = (
    "scenario_templates",
    "package_selling_points",
    "package_objections",
    "course_modules",
    "courses",
    "service_packages",
    "sales_guidelines",
    "customer_profiles",
)


class ICorpusStore(ABC):
    """Contract for persisting an organization's training corpus."""

    @abstractmethod
    async def initialize(self) -> None:
        """Create tables/indices if they don't exist.  Called at startup."""

    @abstractmethod
    async def delete_for_organization(self, table: str, organization_id: str) -> int:
        """Delete the organization's rows from one of :data:`CORPUS_TABLES`.

        Child tables (selling points, objections, modules) are scoped through
        their parent's ``organization_id``.  For ``customer_profiles`` only
        non-system profiles are deleted.  Returns the number of rows removed;
        deleting nothing is not an error.
        """

    @abstractmethod
    async def upsert_packages(
        self,
        organization_id: str,
        packages: Sequence[CanonicalPackage],
    ) -> dict[str, int]:
        """Insert-or-update packages.  Returns normalized name -> package id."""

    @abstractmethod
    async def upsert_package_details(
        self,
        package_ids: Mapping[str, int],
        packages: Sequence[CanonicalPackage],
    ) -> dict[str, int]:
        """Insert-or-update each package's objections and selling points.

        Returns ``{"objections": n, "selling_points": m}`` rows written.
        """

    @abstractmethod
    async def upsert_guidelines(
        self,
        organization_id: str,
        guidelines: Sequence[CanonicalGuideline],
    ) -> int:
        """Insert-or-update guidelines.  Returns rows written."""

    @abstractmethod
    async def upsert_courses(
        self,
        organization_id: str,
        courses: Sequence[CanonicalCourse],
    ) -> dict[str, int]:
        """Insert-or-update courses.  Returns normalized name -> course id."""

    @abstractmethod
    async def upsert_modules(
        self,
        course_ids: Mapping[str, int],
        courses: Sequence[CanonicalCourse],
    ) -> dict[tuple[str, str], int]:
        """Insert-or-update every course's modules.

        Returns ``(normalized course name, normalized module name) -> module id``.
        """

    @abstractmethod
    async def upsert_scenario_templates(
        self,
        organization_id: str,
        rows: Sequence[tuple[int, int, CanonicalScenarioTemplate]],
    ) -> int:
        """Insert-or-update one batch of ``(module_id, display_order, template)`` rows."""

    @abstractmethod
    async def upsert_customer_profile(
        self,
        organization_id: str,
        name: str,
        is_system: bool = False,
    ) -> int:
        """Insert-or-update a customer profile.  Returns its id."""

    @abstractmethod
    async def count_rows(self, organization_id: str) -> dict[str, int]:
        """Return the organization's row count per corpus table."""

    @abstractmethod
    async def count_orphans(self) -> dict[str, int]:
        """Return rows whose parent no longer exists, per child table."""

    @abstractmethod
    def get_provider_name(self) -> str:
        """Return a human-readable identifier for this store."""
