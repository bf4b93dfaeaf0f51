from uuid import UUID, uuid5

import pytest

from serveready.core.errors import SourceNotFoundError
from serveready.schemas.lesson.lesson_schema import QuestionType
from serveready.services.question_expander import expand, expand_all, mapping_lookup, parse_templates
from serveready.services.restaurant_sources import FOOD_ALLERGENS
from tests.utils import PARAMETRIC_QUESTION_ID, PLAIN_QUESTION_ID, parametric_question, plain_question

MENU = [
    {"id": "item-burger", "name": "Burger", "allergens": ["Wheat", "Dairy"], "price": "12.50"},
    {"id": "item-salad", "name": "Caesar Salad", "allergens": ["Dairy", "Fish"], "price": "9.00"},
    {"id": "item-tiramisu", "name": "Tiramisu", "allergens": ["Dairy", "Eggs"], "price": "7.00"},
]


def _lookup(**overrides):
    sources = {"menu_items": MENU, "config.allergens": FOOD_ALLERGENS}
    sources.update(overrides)
    return mapping_lookup(sources)


def _template(raw):
    return parse_templates([raw])[0]


def test_plain_template_expands_to_itself():
    template = _template(plain_question(hint="Think French kitchen"))

    questions = expand(template, _lookup())

    assert len(questions) == 1
    question = questions[0]
    assert question.id == PLAIN_QUESTION_ID
    assert question.template_id == PLAIN_QUESTION_ID
    assert question.question_text == template.question_text
    assert list(question.options) == template.options
    assert list(question.correct_answers) == template.correct_answers
    assert question.hint == "Think French kitchen"
    assert question.substitution is None


def test_plain_template_never_consults_the_lookup():
    def failing_lookup(name):
        raise AssertionError(f"unexpected lookup of {name}")

    assert len(expand(_template(plain_question()), failing_lookup)) == 1


def test_parametric_template_yields_one_question_per_source_value():
    template = _template(parametric_question())

    questions = expand(template, _lookup())

    assert [q.substitution for q in questions] == ["Burger", "Caesar Salad", "Tiramisu"]
    assert [q.question_text for q in questions] == [
        "Which allergens are in the Burger?",
        "Which allergens are in the Caesar Salad?",
        "Which allergens are in the Tiramisu?",
    ]
    assert list(questions[0].correct_answers) == ["Wheat", "Dairy"]
    assert list(questions[0].options) == FOOD_ALLERGENS
    assert all(q.template_id == PARAMETRIC_QUESTION_ID for q in questions)


def test_expanded_ids_are_distinct_and_deterministic():
    template = _template(parametric_question())

    first = [q.id for q in expand(template, _lookup())]
    second = [q.id for q in expand(template, _lookup())]

    assert first == second
    assert len(set(first)) == len(first)
    assert first[0] == str(uuid5(UUID(PARAMETRIC_QUESTION_ID), "item-burger"))


def test_empty_source_yields_no_questions():
    assert expand(_template(parametric_question()), _lookup(menu_items=[])) == []


def test_values_without_an_answer_key_are_skipped(caplog):
    menu = MENU + [{"id": "item-rice", "name": "Plain Rice", "allergens": [], "price": "4.00"}]

    with caplog.at_level("WARNING"):
        questions = expand(_template(parametric_question()), _lookup(menu_items=menu))

    assert [q.substitution for q in questions] == ["Burger", "Caesar Salad", "Tiramisu"]
    assert all(q.correct_answers for q in questions)
    assert "item-rice" in caplog.text


def test_unknown_source_raises():
    template = _template(parametric_question(repeat_for={"key_variable": "dish", "source": "wines"}))

    with pytest.raises(SourceNotFoundError) as exc:
        expand(template, _lookup())
    assert exc.value.context["source"] == "wines"
    assert exc.value.code == "source_not_found"


def test_duplicate_source_values_are_skipped():
    menu = MENU + [dict(MENU[0])]

    questions = expand(_template(parametric_question()), _lookup(menu_items=menu))

    assert len(questions) == 3


def test_scalar_source_with_field_interpolation_and_placeholders():
    raw = parametric_question(
        question_text="Is {allergen} one of the {count} major allergens? {unknown}",
        question_type="true_false",
        options_variable=None,
        correct_answer_variable=None,
        correct_answers=["True"],
        placeholders={"count": "nine"},
        repeat_for={"key_variable": "allergen", "source": "config.allergens"},
    )
    raw.pop("options_variable")
    raw.pop("correct_answer_variable")

    questions = expand(_template(raw), _lookup())

    assert len(questions) == len(FOOD_ALLERGENS)
    assert questions[0].question_text == "Is Dairy one of the nine major allergens? {unknown}"
    assert list(questions[0].options) == ["True", "False"]
    assert list(questions[0].correct_answers) == ["True"]
    assert questions[0].question_type is QuestionType.TRUE_FALSE


def test_source_field_variable_collects_across_values():
    raw = parametric_question(
        question_type="single_select",
        question_text="What does the {dish} cost? (${dish.price})",
        options_variable="menu_items.price",
        correct_answer_variable="dish.price",
    )

    questions = expand(_template(raw), _lookup())

    assert list(questions[1].options) == ["12.50", "9.00", "7.00"]
    assert list(questions[1].correct_answers) == ["9.00"]
    assert questions[1].question_text == "What does the Caesar Salad cost? ($9.00)"


def test_correct_answer_missing_from_options_is_appended():
    raw = parametric_question(options_variable=None, options=["Dairy", "Soy"])
    raw.pop("options_variable")

    questions = expand(_template(raw), _lookup())

    assert list(questions[0].options) == ["Dairy", "Soy", "Wheat"]
    assert list(questions[0].correct_answers) == ["Wheat", "Dairy"]


def test_expand_all_keeps_template_order():
    templates = parse_templates([parametric_question(), plain_question()])

    questions = expand_all(templates, _lookup())

    assert len(questions) == 4
    assert questions[-1].id == PLAIN_QUESTION_ID
