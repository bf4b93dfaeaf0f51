import pytest

from serveready.core.errors import (
    LockedContentError,
    NotAssignedError,
    NotFoundError,
    PermissionDeniedError,
    SourceNotFoundError,
)
from serveready.models.lesson.lesson_model import LessonDifficulty
from serveready.models.lesson.progress_model import ProgressStatus
from serveready.models.user.user_model import UserRole
from serveready.services.lesson_service import LessonService
from serveready.services.progress_service import AnswerKeyGrader
from tests.utils import (
    PLAIN_QUESTION_ID,
    actor_for,
    create_menu_items,
    create_restaurant,
    create_user,
    lesson_payload,
    parametric_question,
)


@pytest.fixture()
def world(db_session):
    restaurant = create_restaurant(db_session)
    create_menu_items(db_session, restaurant)
    admin = create_user(db_session, role=UserRole.ADMIN)
    manager = create_user(db_session, role=UserRole.MANAGER, restaurants=[restaurant])
    employee = create_user(db_session, role=UserRole.EMPLOYEE, restaurants=[restaurant])
    return {
        "restaurant": restaurant,
        "admin": LessonService(db_session, actor_for(admin)),
        "manager": LessonService(db_session, actor_for(manager)),
        "employee": LessonService(db_session, actor_for(employee)),
        "employee_user": employee,
    }


def test_parametric_lesson_expands_for_assigned_employee(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))

    with pytest.raises(NotAssignedError):
        admin.get_lesson_for_employee(lesson.id, employee.id)

    admin.assign_lesson(lesson.id, employee.id)
    payload = world["employee"].get_lesson_for_employee(lesson.id, employee.id)

    questions = payload["questions"]
    assert len(questions) == 4
    assert [q["substitution"] for q in questions[:3]] == ["Burger", "Caesar Salad", "Tiramisu"]
    assert questions[0]["question_text"] == "Which allergens are in the Burger?"
    assert questions[0]["correct_answers"] == ["Wheat", "Dairy"]
    assert questions[3]["id"] == PLAIN_QUESTION_ID
    assert payload["progress"]["status"] is ProgressStatus.NOT_STARTED
    assert payload["content"] == {"intro": "Know the menu."}


def test_hidden_answers_are_revealed_once_answered(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    service = LessonService(db_session, actor_for(employee), hide_correct_answers=True)

    service.update_progress(lesson.id, employee.id, {"answers": [{"question_id": PLAIN_QUESTION_ID, "answer": ["Ketchup"]}]})
    questions = service.get_lesson_for_employee(lesson.id, employee.id)["questions"]

    assert all(q["correct_answers"] is None for q in questions[:3])
    assert questions[3]["correct_answers"] == ["Bechamel"]


def test_unknown_source_surfaces_on_the_read_path(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    broken = parametric_question(repeat_for={"key_variable": "wine", "source": "wines"})
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id, questions=[broken]))
    admin.assign_lesson(lesson.id, employee.id)

    with pytest.raises(SourceNotFoundError):
        world["employee"].get_lesson_for_employee(lesson.id, employee.id)


def test_lesson_menu_items_source_follows_lesson_order(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    items = create_menu_items(db_session, world["restaurant"], names=("Risotto", "Gazpacho"))
    question = parametric_question(
        question_text="Name the {dish}",
        options_variable="lesson_menu_items.name",
        correct_answer_variable="dish.name",
        question_type="single_select",
        repeat_for={"key_variable": "dish", "source": "lesson_menu_items"},
    )
    lesson = admin.create_lesson(
        lesson_payload(world["restaurant"].id, menu_items=[items[1].id, items[0].id], questions=[question])
    )
    admin.assign_lesson(lesson.id, employee.id)

    questions = world["employee"].get_lesson_for_employee(lesson.id, employee.id)["questions"]

    assert [q["substitution"] for q in questions] == ["Gazpacho", "Risotto"]
    assert questions[0]["options"] == ["Gazpacho", "Risotto"]


def test_assigned_lesson_is_locked_through_the_service(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)

    with pytest.raises(LockedContentError):
        admin.update_lesson(lesson.id, {"content": {"intro": "Changed"}})
    assert admin.get_lesson(lesson.id).content == {"intro": "Know the menu."}


def test_unassigned_difficulty_update(db_session, world):
    admin = world["admin"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))

    admin.update_lesson(lesson.id, {"difficulty": "intermediate"})

    assert admin.get_lesson(lesson.id).difficulty is LessonDifficulty.INTERMEDIATE


def test_progress_scenario_keeps_score(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    service = world["employee"]

    service.update_progress(lesson.id, employee.id, {"status": "in_progress", "score": 85})
    progress = service.update_progress(lesson.id, employee.id, {"status": "completed"})

    assert progress["status"] is ProgressStatus.COMPLETED
    assert progress["score"] == 85
    assert world["manager"].employee_progress_summary(employee.id)["completed"] == 1


def test_answer_key_grading_reports_correctness(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    service = LessonService(db_session, actor_for(employee), grader=AnswerKeyGrader())

    progress = service.update_progress(
        lesson.id,
        employee.id,
        {"answers": [{"question_id": PLAIN_QUESTION_ID, "answer": ["Bechamel"]}]},
    )

    # One of four expanded questions answered correctly.
    assert progress["score"] == 25
    assert progress["answers"][0]["is_correct"] is True


def test_employees_cannot_manage_lessons(db_session, world):
    employee_service = world["employee"]
    lesson = world["admin"].create_lesson(lesson_payload(world["restaurant"].id))

    with pytest.raises(PermissionDeniedError) as exc:
        employee_service.create_lesson(lesson_payload(world["restaurant"].id))
    assert exc.value.code == "forbidden"
    assert exc.value.status_code == 403

    for call in (
        lambda: employee_service.update_lesson(lesson.id, {"difficulty": "advanced"}),
        lambda: employee_service.delete_lesson(lesson.id),
        lambda: employee_service.assign_lesson(lesson.id, world["employee_user"].id),
        lambda: employee_service.list_lessons(),
        lambda: world["manager"].create_lesson(lesson_payload(world["restaurant"].id)),
    ):
        with pytest.raises(PermissionDeniedError):
            call()


def test_employee_reads_only_their_assignments(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    colleague = create_user(db_session)
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))

    # Unassigned and missing lessons look the same to an employee.
    with pytest.raises(PermissionDeniedError):
        world["employee"].get_lesson(lesson.id)
    with pytest.raises(PermissionDeniedError):
        world["employee"].get_lesson("missing")

    admin.assign_lesson(lesson.id, employee.id)
    assert world["employee"].get_lesson(lesson.id).id == lesson.id
    assert [item.id for item in world["employee"].list_assigned_lessons(employee.id)] == [lesson.id]

    with pytest.raises(PermissionDeniedError):
        world["employee"].list_assigned_lessons(colleague.id)
    with pytest.raises(PermissionDeniedError):
        world["employee"].update_progress(lesson.id, colleague.id, {"status": "in_progress"})
    with pytest.raises(PermissionDeniedError):
        world["employee"].get_lesson_for_employee(lesson.id, colleague.id)


def test_manager_reporting_is_scoped_to_their_restaurants(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    other_restaurant = create_restaurant(db_session, name="Elsewhere")
    foreign = admin.create_lesson(lesson_payload(other_restaurant.id))
    admin.assign_lesson(lesson.id, employee.id)
    manager = world["manager"]

    assert manager.assigned_employees(lesson.id) == [employee.id]
    assert manager.list_lesson_progress(lesson.id) == []
    assert [item.id for item in manager.list_lessons_by_restaurant(world["restaurant"].id)] == [lesson.id]

    with pytest.raises(PermissionDeniedError):
        manager.list_lesson_progress(foreign.id)
    with pytest.raises(PermissionDeniedError):
        manager.list_lessons_by_restaurant(other_restaurant.id)
    with pytest.raises(PermissionDeniedError):
        manager.update_progress(lesson.id, employee.id, {"status": "completed"})


def test_unassign_and_delete(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)

    admin.unassign_lesson(lesson.id, employee.id)
    with pytest.raises(NotFoundError):
        admin.unassign_lesson(lesson.id, employee.id)

    admin.assign_lesson(lesson.id, employee.id)
    admin.delete_lesson(lesson.id)
    with pytest.raises(NotFoundError):
        admin.get_lesson(lesson.id)
    assert world["employee"].list_assigned_lessons(employee.id) == []


def test_hidden_answers_are_withheld_from_lesson_templates(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    learner = LessonService(db_session, actor_for(employee), hide_correct_answers=True)

    views = [learner.get_lesson(lesson.id), *learner.list_assigned_lessons(employee.id)]

    for view in views:
        assert [q.correct_answers for q in view.questions] == [None, None]
        assert [q.correct_answer_variable for q in view.questions] == [None, None]
        assert view.questions[1].options == ["Bechamel", "Ketchup", "Mayonnaise"]

    author = LessonService(db_session, admin.actor, hide_correct_answers=True)
    assert author.get_lesson(lesson.id).questions[1]["correct_answers"] == ["Bechamel"]


def test_answer_key_grading_ignores_values_without_answers(db_session, world):
    admin = world["admin"]
    rice_house = create_restaurant(db_session, name="Rice House")
    create_menu_items(db_session, rice_house, names=("Burger", "Plain Rice"))
    cook = create_user(db_session, restaurants=[rice_house])
    lesson = admin.create_lesson(lesson_payload(rice_house.id))
    admin.assign_lesson(lesson.id, cook.id)
    service = LessonService(db_session, actor_for(cook), grader=AnswerKeyGrader())

    questions = service.get_lesson_for_employee(lesson.id, cook.id)["questions"]
    assert [q["substitution"] for q in questions] == ["Burger", None]

    answers = [{"question_id": q["id"], "answer": q["correct_answers"]} for q in questions]
    progress = service.update_progress(lesson.id, cook.id, {"status": "completed", "answers": answers})

    assert progress["score"] == 100
    assert all(answer["is_correct"] for answer in progress["answers"])


def test_manager_reads_only_staff_of_their_restaurants(db_session, world):
    admin, manager = world["admin"], world["manager"]
    other_restaurant = create_restaurant(db_session, name="Elsewhere")
    outsider = create_user(db_session, restaurants=[other_restaurant])
    floater = create_user(db_session, restaurants=[world["restaurant"], other_restaurant])
    foreign = admin.create_lesson(lesson_payload(other_restaurant.id))
    for person in (outsider, floater):
        admin.assign_lesson(foreign.id, person.id)
        admin.update_progress(foreign.id, person.id, {"status": "in_progress", "score": 40})

    for call in (
        lambda: manager.get_progress(foreign.id, outsider.id),
        lambda: manager.employee_progress_summary(outsider.id),
        lambda: manager.list_assigned_lessons(outsider.id),
        lambda: manager.get_progress(foreign.id, floater.id),
        lambda: manager.employee_progress_summary("missing"),
    ):
        with pytest.raises(PermissionDeniedError):
            call()

    assert manager.employee_progress_summary(floater.id)["assigned_lessons"] == 1
    assert admin.get_progress(foreign.id, outsider.id)["score"] == 40


def test_restaurant_report_is_limited_to_its_managers(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    world["employee"].update_progress(lesson.id, employee.id, {"status": "completed", "score": 70})
    other_restaurant = create_restaurant(db_session, name="Elsewhere")

    report = world["manager"].restaurant_progress_report(world["restaurant"].id)

    assert report["overall"]["completed"] == 1
    assert report["overall"]["average_score"] == 70
    assert [row["employee_id"] for row in report["employees"]] == [employee.id]

    with pytest.raises(PermissionDeniedError):
        world["manager"].restaurant_progress_report(other_restaurant.id)
    with pytest.raises(PermissionDeniedError):
        world["employee"].restaurant_progress_report(world["restaurant"].id)
    assert admin.restaurant_progress_report(other_restaurant.id)["total_lessons"] == 0


def test_correctness_is_reported_only_by_answer_key_grading(db_session, world):
    admin, employee = world["admin"], world["employee_user"]
    lesson = admin.create_lesson(lesson_payload(world["restaurant"].id))
    admin.assign_lesson(lesson.id, employee.id)
    submission = {"answers": [{"question_id": PLAIN_QUESTION_ID, "answer": ["Bechamel"]}]}
    world["employee"].update_progress(lesson.id, employee.id, submission)

    caller_scored = world["employee"]
    read_path = caller_scored.get_lesson_for_employee(lesson.id, employee.id)["progress"]
    assert read_path["answers"][0]["is_correct"] is None
    assert caller_scored.get_progress(lesson.id, employee.id)["answers"][0]["is_correct"] is None

    key_scored = LessonService(db_session, actor_for(employee), grader=AnswerKeyGrader())
    read_path = key_scored.get_lesson_for_employee(lesson.id, employee.id)["progress"]
    assert read_path["answers"][0]["is_correct"] is True
    assert key_scored.get_progress(lesson.id, employee.id)["answers"][0]["is_correct"] is True


def test_progress_of_a_missing_lesson_is_not_found(db_session, world):
    employee = world["employee_user"]

    with pytest.raises(NotFoundError):
        world["employee"].get_progress("missing", employee.id)
