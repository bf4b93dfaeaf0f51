"""Expansion of stored question templates into concrete questions.

A template without ``repeat_for`` is already concrete and expands to exactly
one question carrying the template's own id and literal values. A template with
``repeat_for`` is parametric: the named source is resolved through the caller's
lookup and every value of that source produces one question whose id is
derived from ``(template uuid, substitution key)``. Nothing here touches the
database or the network, and nothing is shuffled: the same source snapshot
always yields the same questions in the same order.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Mapping, Optional, Sequence
from uuid import UUID, uuid5

from serveready.core.errors import SourceNotFoundError
from serveready.schemas.lesson.lesson_schema import (
    TRUE_FALSE_OPTIONS,
    QuestionDifficulty,
    QuestionType,
    question_templates_adapter,
)

logger = logging.getLogger(__name__)

SourceLookup = Callable[[str], Sequence[Any]]

_PLACEHOLDER_RE = re.compile(r"\{([A-Za-z_]\w*)(?:\.([A-Za-z_]\w*))?\}")
_TRUTHY = {"true", "yes", "y", "1"}


@dataclass(frozen=True, slots=True)
class ConcreteQuestion:
    id: str
    template_id: str
    question_type: QuestionType
    question_text: str
    options: tuple[str, ...]
    correct_answers: tuple[str, ...]
    difficulty: QuestionDifficulty
    hint: Optional[str] = None
    substitution: Optional[str] = None


def mapping_lookup(sources: Mapping[str, Sequence[Any]]) -> SourceLookup:
    """Build a lookup over a fixed mapping of source name to values."""

    def lookup(name: str) -> Sequence[Any]:
        try:
            return sources[name]
        except KeyError:
            raise SourceNotFoundError(f"unknown data source '{name}'", source=name) from None

    return lookup


def parse_templates(raw_questions: Iterable[Any]) -> list:
    """Validate stored question dicts back into template models."""
    return question_templates_adapter.validate_python(list(raw_questions))


def expand(template, source_lookup: SourceLookup) -> List[ConcreteQuestion]:
    if template.repeat_for is None:
        return [_literal_question(template)]

    key_variable = template.repeat_for.key_variable
    values = source_lookup(template.repeat_for.source)
    source_cache: dict[str, Sequence[Any]] = {}

    def cached_lookup(name: str) -> Sequence[Any]:
        if name not in source_cache:
            source_cache[name] = source_lookup(name)
        return source_cache[name]

    template_uuid = UUID(str(template.uuid))
    expanded: List[ConcreteQuestion] = []
    seen_keys: set[str] = set()
    for value in values:
        key = _substitution_key(value)
        if key in seen_keys:
            logger.warning(
                "Skipping duplicate value %r of source '%s' for question %s",
                key,
                template.repeat_for.source,
                template.uuid,
            )
            continue
        seen_keys.add(key)

        if template.options is not None:
            options = list(template.options)
        else:
            options = _resolve_variable(template.options_variable, key_variable, value, cached_lookup)

        if template.correct_answers is not None:
            correct = list(template.correct_answers)
        else:
            correct = _resolve_variable(template.correct_answer_variable, key_variable, value, cached_lookup)

        question_type = QuestionType(template.question_type)
        options, correct = _FINALIZERS[question_type](options, correct)
        if not options or not correct:
            # No gradable question can be built from this value.
            logger.warning(
                "Skipping value %r of source '%s' for question %s: no %s resolved",
                key,
                template.repeat_for.source,
                template.uuid,
                "options" if not options else "correct answers",
            )
            continue
        expanded.append(
            ConcreteQuestion(
                id=str(uuid5(template_uuid, key)),
                template_id=str(template.uuid),
                question_type=question_type,
                question_text=_interpolate(template.question_text, key_variable, value, template.placeholders),
                options=tuple(options),
                correct_answers=tuple(correct),
                difficulty=QuestionDifficulty(template.difficulty),
                hint=template.hint,
                substitution=_display(value),
            )
        )
    return expanded


def expand_all(templates: Iterable[Any], source_lookup: SourceLookup) -> List[ConcreteQuestion]:
    """Expand a lesson's templates in order into one flat question list."""
    questions: List[ConcreteQuestion] = []
    for template in templates:
        questions.extend(expand(template, source_lookup))
    return questions


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------
def _literal_question(template) -> ConcreteQuestion:
    return ConcreteQuestion(
        id=str(template.uuid),
        template_id=str(template.uuid),
        question_type=QuestionType(template.question_type),
        question_text=template.question_text,
        options=tuple(template.options),
        correct_answers=tuple(template.correct_answers),
        difficulty=QuestionDifficulty(template.difficulty),
        hint=template.hint,
    )


def _display(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("name") or value.get("id") or "")
    return str(value)


def _substitution_key(value: Any) -> str:
    if isinstance(value, Mapping):
        return str(value.get("id") or value.get("name") or "")
    return str(value)


def _as_strings(raw: Any) -> List[str]:
    if raw is None:
        return []
    if isinstance(raw, Mapping):
        text = _display(raw)
        return [text] if text else []
    if isinstance(raw, (list, tuple)):
        flattened: List[str] = []
        for item in raw:
            flattened.extend(_as_strings(item))
        return flattened
    text = str(raw)
    return [text] if text else []


def _field_of(value: Any, field: str) -> Any:
    if not field:
        return _display(value)
    if isinstance(value, Mapping):
        return value.get(field)
    return getattr(value, field, None)


def _resolve_variable(
    reference: str,
    key_variable: str,
    value: Any,
    lookup: SourceLookup,
) -> List[str]:
    head, _, field = reference.partition(".")
    if head == key_variable:
        return _dedupe(_as_strings(_field_of(value, field)))

    try:
        # Dotted source names such as "config.allergens" name the whole source.
        items = lookup(reference)
        field = ""
    except SourceNotFoundError:
        if not field:
            raise
        items = lookup(head)

    collected: List[str] = []
    for item in items:
        collected.extend(_as_strings(_field_of(item, field)))
    return _dedupe(collected)


def _interpolate(text: str, key_variable: str, value: Any, placeholders: Mapping[str, str]) -> str:
    def replace(match: re.Match) -> str:
        name, field = match.group(1), match.group(2)
        if name == key_variable:
            return ", ".join(_as_strings(_field_of(value, field or "")))
        if field is None and name in placeholders:
            return placeholders[name]
        return match.group(0)

    return _PLACEHOLDER_RE.sub(replace, text)


def _dedupe(values: Iterable[str]) -> List[str]:
    seen: set[str] = set()
    ordered: List[str] = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def _with_answers(options: List[str], correct: List[str]) -> List[str]:
    # Every correct answer has to be selectable.
    return _dedupe([*options, *correct])


def _finalize_multiple_choice(options: List[str], correct: List[str]) -> tuple[List[str], List[str]]:
    correct = _dedupe(correct)
    return _with_answers(_dedupe(options), correct), correct


def _finalize_single_select(options: List[str], correct: List[str]) -> tuple[List[str], List[str]]:
    correct = correct[:1]
    return _with_answers(_dedupe(options), correct), correct


def _finalize_true_false(options: List[str], correct: List[str]) -> tuple[List[str], List[str]]:
    if not correct:
        return list(TRUE_FALSE_OPTIONS), []
    verdict = "True" if correct[0].strip().lower() in _TRUTHY else "False"
    return list(TRUE_FALSE_OPTIONS), [verdict]


_FINALIZERS = {
    QuestionType.MULTIPLE_CHOICE: _finalize_multiple_choice,
    QuestionType.SINGLE_SELECT: _finalize_single_select,
    QuestionType.TRUE_FALSE: _finalize_true_false,
}
