"""Tests for projecting steps into editor views."""
from automation_builder.builder.projection import project_workflow, to_email_steps
from automation_builder.models.workflow import ConditionType, WaitUnit, WorkflowStep
from tests.conftest import condition_step, email_step, forked_steps, wait_step


def _steps(rows):
    return [WorkflowStep.model_validate(row) for row in rows]


def test_wait_email_pair_then_lone_email():
    steps = _steps([
        wait_step("w1", 1, 5, "day"),
        email_step("e1", 2, "Hello"),
        email_step("e2", 3, "Follow up"),
    ])

    emails = to_email_steps(steps)

    assert [email.id for email in emails] == ["e1", "e2"]
    assert emails[0].wait_time == 5
    assert emails[0].wait_unit == WaitUnit.DAY
    # No wait in front of e2: the implicit default applies
    assert emails[1].wait_time == 5
    assert emails[1].wait_unit == WaitUnit.DAY


def test_wait_values_come_from_the_preceding_wait():
    emails = to_email_steps(_steps([
        wait_step("w1", 1, 30, "min"),
        email_step("e1", 2),
        wait_step("w2", 3, 2, "hour"),
        email_step("e2", 4),
    ]))

    assert [(e.wait_time, e.wait_unit) for e in emails] == [(30, WaitUnit.MIN), (2, WaitUnit.HOUR)]


def test_missing_wait_fields_fall_back_to_defaults():
    steps = _steps([
        {"id": "w1", "step_type": "wait", "position": 1, "config": {}},
        email_step("e1", 2),
    ])

    email = to_email_steps(steps)[0]

    assert (email.wait_time, email.wait_unit) == (5, WaitUnit.DAY)


def test_email_fields_come_from_config():
    steps = _steps([
        {
            "id": "e1",
            "step_type": "email",
            "position": 1,
            "config": {
                "sender_id": "snd-2",
                "sender_email": "team@acme.io",
                "template_id": "tpl-9",
                "subject_override": "Hi",
                "content_override": "<p>Body</p>",
            },
        },
        {"id": "e2", "step_type": "email", "position": 2, "config": {}},
    ])

    first, second = to_email_steps(steps)

    assert first.sender_id == "snd-2"
    assert first.sender_email == "team@acme.io"
    assert first.template_id == "tpl-9"
    assert first.subject == "Hi"
    assert first.content == "<p>Body</p>"
    assert second.subject == ""
    assert second.content == ""
    assert second.sender_email == ""
    assert second.template_id is None


def test_branch_steps_are_not_main_path_emails():
    emails = to_email_steps(_steps(forked_steps()))

    assert [email.id for email in emails] == ["email-1"]


def test_output_follows_position_order():
    steps = _steps([
        email_step("late", 9),
        email_step("early", 1),
        email_step("middle", 4),
    ])

    assert [email.id for email in to_email_steps(steps)] == ["early", "middle", "late"]


def test_projection_is_repeatable():
    steps = _steps(forked_steps())

    assert project_workflow(steps) == project_workflow(steps)


def test_full_projection_of_forked_workflow():
    projection = project_workflow(_steps(forked_steps()))

    assert [email.id for email in projection.emails] == ["email-1"]
    assert [email.id for email in projection.merged_emails] == ["email-m1", "email-m2"]
    assert projection.merged_emails[0].wait_time == 2
    assert projection.merged_emails[1].wait_time == 5

    condition = projection.condition
    assert condition.id == "cond"
    assert condition.condition_type == ConditionType.OPENED
    assert condition.email_id == "email-1"
    assert condition.yes_branch.email.subject == "Thanks for reading"
    assert condition.yes_branch.wait_time == 1
    assert condition.no_branch.email.subject == "Did you miss this?"
    assert condition.no_branch.wait_time == 3


def test_empty_branch_keeps_its_wait():
    projection = project_workflow(_steps([
        email_step("e1", 1),
        condition_step("cond", 2, "not_clicked", "e1"),
        wait_step("w-no", 3, 4, "hour", parent="cond", branch="no"),
    ]))

    condition = projection.condition
    assert condition.condition_type == ConditionType.NOT_CLICKED
    assert condition.yes_branch.email is None
    assert (condition.yes_branch.wait_time, condition.yes_branch.wait_unit) == (5, WaitUnit.DAY)
    assert condition.no_branch.email is None
    assert (condition.no_branch.wait_time, condition.no_branch.wait_unit) == (4, WaitUnit.HOUR)


def test_empty_step_list():
    projection = project_workflow([])

    assert projection.emails == []
    assert projection.condition is None
    assert projection.merged_emails == []
