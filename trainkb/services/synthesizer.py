"""Synthesizer: merge every chunk's fragment into one canonical corpus.

:meth:`Synthesizer.synthesize` is a pure, deterministic function of the
full fragment list.  It never reads the store and never calls a model, so
it can be re-run from scratch whenever the job finishes parsing (or in a
test) and always yields the same corpus for the same fragments.

Merge rules, applied to fragments in ordinal order:

* Entities merge on their normalized natural key (see
  :func:`~trainkb.utils.text_normalizer.normalize_key`): packages by name,
  objections by text within their package, guidelines by (type, title),
  training topics by title, courses by name, modules by (course, name),
  scenario templates by (module, name).
* List-valued fields are unioned, deduplicated by item text; first-seen
  spelling and order win.
* Scalars keep the first non-null value.  A later, different value is not
  applied; it is recorded as an :class:`UnresolvedConflict` for the
  reviewer.
* Training topics are folded into the curriculum: the topic's ``course``
  (else its ``category``, else "General Training") names the course and
  the topic title names the module.
* Modules get ``unlock_order`` 1..n in first-seen order within each course.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Any

from trainkb.models.canonical import (
    DEFAULT_COURSE_CATEGORY,
    DEFAULT_DIFFICULTY,
    DEFAULT_GUIDELINE_TYPE,
    DEFAULT_PASS_THRESHOLD,
    DEFAULT_REQUIRED_COMPLETIONS,
    DEFAULT_SCENARIO_COUNT,
    GUIDELINE_TYPES,
    CanonicalCorpus,
    CanonicalCourse,
    CanonicalGuideline,
    CanonicalModule,
    CanonicalObjection,
    CanonicalPackage,
    CanonicalScenarioTemplate,
    TrainingTopic,
    UnresolvedConflict,
)
from trainkb.models.fragment import ExtractionFragment
from trainkb.utils.text_normalizer import (
    as_list,
    clean_text,
    derive_name,
    dict_items,
    item_text,
    normalize_key,
    parse_price,
    text_list,
    union_texts,
)

DEFAULT_TOPIC_COURSE = "General Training"
DIFFICULTIES = ("easy", "medium", "hard")

_PACKAGE_SCALARS = ("description", "initial_price", "recurring_price", "service_frequency")
_PACKAGE_LISTS = ("included_services", "included_pests", "selling_points")
_OBJECTION_SCALARS = ("category", "recommended_response")
_OBJECTION_LISTS = ("key_points", "alternatives", "things_to_avoid")
_MODULE_SCALARS = (
    "description",
    "difficulty",
    "scenario_count",
    "pass_threshold",
    "required_completions",
)
_TEMPLATE_SCALARS = ("situation", "customer_goals", "difficulty")
_TEMPLATE_LISTS = (
    "objectives",
    "escalation_triggers",
    "de_escalation_triggers",
    "resolution_conditions",
)


# ---------------------------------------------------------------------------
# Coercion helpers
# ---------------------------------------------------------------------------

def _first(raw: dict[str, Any], *keys: str) -> Any:
    """Return the first present, non-empty value among *keys*."""
    for key in keys:
        value = raw.get(key)
        if value not in (None, "", [], {}):
            return value
    return None


def _as_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(float(value))
    except (TypeError, ValueError):
        return None
    return number if number >= 0 else None


def _difficulty(value: Any) -> str | None:
    text = clean_text(value)
    if text is None:
        return None
    text = text.lower()
    return text if text in DIFFICULTIES else None


def _guideline_type(value: Any) -> str:
    text = clean_text(value)
    if text is None:
        return DEFAULT_GUIDELINE_TYPE
    text = text.lower().replace(" ", "_").replace("-", "_")
    return text if text in GUIDELINE_TYPES else DEFAULT_GUIDELINE_TYPE


def _scoring_weights(raw: dict[str, Any]) -> dict[str, float]:
    """Read explicit weights, or give each listed scoring focus weight 1.0."""
    weights = raw.get("scoring_weights")
    if isinstance(weights, dict):
        result: dict[str, float] = {}
        for area, weight in weights.items():
            name = clean_text(area)
            number = parse_price(weight)
            if name and number is not None:
                result[name] = number
        return result
    return {area: 1.0 for area in text_list(raw.get("scoring_focus"))}


def _same(a: Any, b: Any) -> bool:
    if isinstance(a, str) and isinstance(b, str):
        return normalize_key(a) == normalize_key(b)
    return a == b


# ---------------------------------------------------------------------------
# Synthesizer
# ---------------------------------------------------------------------------

class _MergeRun:
    """Mutable accumulators for one synthesize() call."""

    def __init__(self) -> None:
        self.packages: dict[str, dict[str, Any]] = {}
        self.guidelines: dict[tuple[str, str], dict[str, Any]] = {}
        self.topics: dict[str, dict[str, Any]] = {}
        self.courses: dict[str, dict[str, Any]] = {}
        self.conflicts: list[UnresolvedConflict] = []
        self._conflict_keys: set[tuple[str, str, str, str]] = set()

    # -- generic field merging -------------------------------------------

    def merge_scalar(
        self,
        target: dict[str, Any],
        field: str,
        value: Any,
        entity: str,
        key: str,
        ordinal: int | None,
    ) -> None:
        if value is None:
            return
        kept = target.get(field)
        if kept is None:
            target[field] = value
            return
        if _same(kept, value):
            return
        marker = (entity, key, field, normalize_key(str(value)))
        if marker in self._conflict_keys:
            return
        self._conflict_keys.add(marker)
        self.conflicts.append(
            UnresolvedConflict(
                entity=entity,
                key=key,
                field=field,
                kept=kept,
                rejected=value,
                chunk_ordinal=ordinal,
            )
        )

    @staticmethod
    def merge_list(target: dict[str, Any], field: str, values: list[str]) -> None:
        target[field] = union_texts(target.get(field, []), values)

    # -- packages --------------------------------------------------------

    def add_package(self, raw: dict[str, Any], ordinal: int) -> None:
        name = clean_text(_first(raw, "name", "package_name", "title"))
        if not name:
            return
        key = normalize_key(name)
        package = self.packages.setdefault(key, {"name": name, "objections": {}})
        incoming = {
            "description": clean_text(raw.get("description")),
            "initial_price": parse_price(raw.get("initial_price")),
            "recurring_price": parse_price(raw.get("recurring_price")),
            "service_frequency": clean_text(raw.get("service_frequency")),
        }
        for field in _PACKAGE_SCALARS:
            self.merge_scalar(package, field, incoming[field], "package", name, ordinal)
        for field in _PACKAGE_LISTS:
            self.merge_list(package, field, text_list(raw.get(field)))

        for item in as_list(raw.get("objections")):
            self._add_objection(package, name, item, ordinal)

    def _add_objection(
        self,
        package: dict[str, Any],
        package_name: str,
        raw: Any,
        ordinal: int,
    ) -> None:
        if isinstance(raw, dict):
            text = item_text(raw, ("objection", "objection_text", "text"))
        else:
            text = clean_text(raw)
            raw = {}
        if not text:
            return
        objection = package["objections"].setdefault(normalize_key(text), {"text": text})
        key = f"{package_name} / {text}"
        incoming = {
            "category": clean_text(raw.get("category")),
            "recommended_response": clean_text(_first(raw, "recommended_response", "response")),
        }
        for field in _OBJECTION_SCALARS:
            self.merge_scalar(objection, field, incoming[field], "objection", key, ordinal)
        for field in _OBJECTION_LISTS:
            self.merge_list(objection, field, text_list(raw.get(field)))

    # -- guidelines and topics -------------------------------------------

    def add_guideline(self, raw: dict[str, Any], ordinal: int) -> None:
        content = clean_text(_first(raw, "content", "description"))
        title = clean_text(_first(raw, "title", "name")) or derive_name(content)
        if not title:
            return
        guideline_type = _guideline_type(_first(raw, "guideline_type", "type"))
        key = (guideline_type, normalize_key(title))
        guideline = self.guidelines.setdefault(
            key, {"guideline_type": guideline_type, "title": title}
        )
        self.merge_scalar(
            guideline, "content", content, "guideline", f"{guideline_type} / {title}", ordinal
        )
        self.merge_list(guideline, "examples", text_list(raw.get("examples")))

    def add_topic(self, raw: dict[str, Any], ordinal: int) -> None:
        title = clean_text(_first(raw, "title", "name", "topic"))
        if not title:
            return
        topic = self.topics.setdefault(normalize_key(title), {"title": title, "scenarios": []})
        self.merge_scalar(
            topic, "description", clean_text(raw.get("description")), "training_topic", title, ordinal
        )
        self.merge_scalar(
            topic,
            "course",
            clean_text(_first(raw, "course", "category")),
            "training_topic",
            title,
            ordinal,
        )
        topic["scenarios"].extend(dict_items(_first(raw, "scenarios", "scenario_templates")))

    # -- curriculum ------------------------------------------------------

    def ensure_course(self, name: str) -> dict[str, Any]:
        return self.courses.setdefault(normalize_key(name), {"name": name, "modules": {}})

    def add_course(self, raw: dict[str, Any], ordinal: int) -> None:
        name = clean_text(_first(raw, "name", "title"))
        if not name:
            return
        course = self.ensure_course(name)
        for field in ("description", "category", "icon"):
            self.merge_scalar(course, field, clean_text(raw.get(field)), "course", name, ordinal)
        for module_raw in dict_items(raw.get("modules")):
            self.add_module(course, module_raw, ordinal)

    def add_module(
        self,
        course: dict[str, Any],
        raw: dict[str, Any],
        ordinal: int | None,
    ) -> None:
        name = clean_text(_first(raw, "name", "title"))
        if not name:
            return
        module = course["modules"].setdefault(
            normalize_key(name), {"name": name, "templates": {}}
        )
        key = f"{course['name']} / {name}"
        incoming = {
            "description": clean_text(raw.get("description")),
            "difficulty": _difficulty(raw.get("difficulty")),
            "scenario_count": _as_int(raw.get("scenario_count")),
            "pass_threshold": _as_int(raw.get("pass_threshold")),
            "required_completions": _as_int(raw.get("required_completions")),
        }
        for field in _MODULE_SCALARS:
            self.merge_scalar(module, field, incoming[field], "module", key, ordinal)
        for scenario in dict_items(_first(raw, "scenarios", "scenario_templates")):
            self.add_template(module, key, scenario, ordinal)

    def add_template(
        self,
        module: dict[str, Any],
        module_key: str,
        raw: dict[str, Any],
        ordinal: int | None,
    ) -> None:
        situation = clean_text(_first(raw, "situation", "base_situation"))
        name = clean_text(_first(raw, "name", "title")) or derive_name(situation)
        if not name:
            return
        template = module["templates"].setdefault(
            normalize_key(name), {"name": name, "scoring_weights": {}}
        )
        key = f"{module_key} / {name}"
        incoming = {
            "situation": situation,
            "customer_goals": clean_text(raw.get("customer_goals")),
            "difficulty": _difficulty(raw.get("difficulty")),
        }
        for field in _TEMPLATE_SCALARS:
            self.merge_scalar(template, field, incoming[field], "scenario_template", key, ordinal)
        lists = {
            "objectives": text_list(_first(raw, "objectives", "csr_objectives")),
            "escalation_triggers": text_list(raw.get("escalation_triggers")),
            "de_escalation_triggers": text_list(raw.get("de_escalation_triggers")),
            "resolution_conditions": text_list(raw.get("resolution_conditions")),
        }
        for field in _TEMPLATE_LISTS:
            self.merge_list(template, field, lists[field])
        weights = template["scoring_weights"]
        for area, weight in _scoring_weights(raw).items():
            if not any(normalize_key(area) == normalize_key(k) for k in weights):
                weights[area] = weight

    def fold_topics(self) -> None:
        for topic in self.topics.values():
            course_name = topic.get("course") or DEFAULT_TOPIC_COURSE
            topic["course"] = course_name
            course = self.ensure_course(course_name)
            module_raw: dict[str, Any] = {
                "name": topic["title"],
                "description": topic.get("description"),
                "scenarios": topic["scenarios"],
            }
            self.add_module(course, module_raw, ordinal=None)

    # -- freezing --------------------------------------------------------

    def build(self) -> CanonicalCorpus:
        packages = [
            CanonicalPackage(
                name=p["name"],
                description=p.get("description"),
                initial_price=p.get("initial_price"),
                recurring_price=p.get("recurring_price"),
                service_frequency=p.get("service_frequency"),
                included_services=p.get("included_services", []),
                included_pests=p.get("included_pests", []),
                selling_points=p.get("selling_points", []),
                objections=[
                    CanonicalObjection(
                        text=o["text"],
                        category=o.get("category"),
                        recommended_response=o.get("recommended_response"),
                        key_points=o.get("key_points", []),
                        alternatives=o.get("alternatives", []),
                        things_to_avoid=o.get("things_to_avoid", []),
                    )
                    for o in p["objections"].values()
                ],
            )
            for p in self.packages.values()
        ]
        guidelines = [
            CanonicalGuideline(
                guideline_type=g["guideline_type"],
                title=g["title"],
                content=g.get("content") or "",
                examples=g.get("examples", []),
            )
            for g in self.guidelines.values()
        ]
        topics = [
            TrainingTopic(title=t["title"], description=t.get("description"), course=t["course"])
            for t in self.topics.values()
        ]
        courses = [self._build_course(c) for c in self.courses.values()]
        return CanonicalCorpus(
            packages=packages,
            guidelines=guidelines,
            training_topics=topics,
            courses=courses,
            conflicts=self.conflicts,
        )

    @staticmethod
    def _build_course(course: dict[str, Any]) -> CanonicalCourse:
        modules = []
        for order, module in enumerate(course["modules"].values(), start=1):
            difficulty = module.get("difficulty") or DEFAULT_DIFFICULTY
            templates = [
                CanonicalScenarioTemplate(
                    name=t["name"],
                    situation=t.get("situation") or "",
                    customer_goals=t.get("customer_goals"),
                    objectives=t.get("objectives", []),
                    scoring_weights=t["scoring_weights"],
                    escalation_triggers=t.get("escalation_triggers", []),
                    de_escalation_triggers=t.get("de_escalation_triggers", []),
                    resolution_conditions=t.get("resolution_conditions", []),
                    difficulty=t.get("difficulty") or difficulty,
                )
                for t in module["templates"].values()
            ]
            pass_threshold = module.get("pass_threshold")
            if pass_threshold is None or pass_threshold > 100:
                pass_threshold = DEFAULT_PASS_THRESHOLD
            scenario_count = module.get("scenario_count")
            required = module.get("required_completions")
            modules.append(
                CanonicalModule(
                    name=module["name"],
                    description=module.get("description"),
                    difficulty=difficulty,
                    scenario_count=DEFAULT_SCENARIO_COUNT if scenario_count is None else scenario_count,
                    unlock_order=order,
                    pass_threshold=pass_threshold,
                    required_completions=(
                        DEFAULT_REQUIRED_COMPLETIONS if required is None else required
                    ),
                    scenario_templates=templates,
                )
            )
        return CanonicalCourse(
            name=course["name"],
            description=course.get("description"),
            category=course.get("category") or DEFAULT_COURSE_CATEGORY,
            icon=course.get("icon"),
            modules=modules,
        )


class Synthesizer:
    """Pure merge of extraction fragments into a :class:`CanonicalCorpus`."""

    def synthesize(self, fragments: Sequence[ExtractionFragment]) -> CanonicalCorpus:
        """Merge *fragments* into one deduplicated corpus.

        Parameters
        ----------
        fragments:
            Every fragment of the job.  They are processed in
            ``chunk_ordinal`` order regardless of the order given.

        Returns
        -------
        CanonicalCorpus
            The merged corpus, with any scalar disagreements listed in
            ``conflicts``.
        """
        run = _MergeRun()
        for fragment in _in_order(fragments):
            ordinal = fragment.chunk_ordinal
            for raw in fragment.packages:
                run.add_package(raw, ordinal)
            for raw in fragment.guidelines:
                run.add_guideline(raw, ordinal)
            for raw in fragment.training_topics:
                run.add_topic(raw, ordinal)
            for raw in fragment.courses:
                run.add_course(raw, ordinal)
        run.fold_topics()
        return run.build()


def _in_order(fragments: Iterable[ExtractionFragment]) -> list[ExtractionFragment]:
    return sorted(fragments, key=lambda f: f.chunk_ordinal)
