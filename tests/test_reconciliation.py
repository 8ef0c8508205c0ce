"""Tests for reorder position assignment and create requests."""
import pytest

from automation_builder.builder.projection import project_workflow, to_email_steps
from automation_builder.builder.reconciliation import (
    build_create_request,
    build_reorder_request,
    merged_position,
    move_item,
    next_position,
)
from automation_builder.models.projection import EmailForm, EmailStep
from automation_builder.models.workflow import Branch, StepType, WorkflowStep
from tests.conftest import condition_step, email_step, forked_steps, three_pair_steps, wait_step


def _steps(rows):
    return [WorkflowStep.model_validate(row) for row in rows]


class TestMoveItem:

    def test_move_last_to_front(self):
        assert move_item(["a", "b", "c"], 2, 0) == ["c", "a", "b"]

    def test_move_front_to_last(self):
        assert move_item(["a", "b", "c"], 0, 2) == ["b", "c", "a"]

    def test_original_list_untouched(self):
        items = ["a", "b"]
        move_item(items, 0, 1)
        assert items == ["a", "b"]

    def test_out_of_range(self):
        with pytest.raises(IndexError):
            move_item(["a"], 0, 1)


class TestReorderRequest:

    def test_moving_c_to_front_assigns_dense_pair_positions(self):
        steps = _steps(three_pair_steps())
        emails = to_email_steps(steps)

        request = build_reorder_request(move_item(emails, 2, 0), steps)

        assert [(entry.id, entry.position) for entry in request.steps] == [
            ("wait-c", 1),
            ("email-c", 2),
            ("wait-a", 3),
            ("email-a", 4),
            ("wait-b", 5),
            ("email-b", 6),
        ]

    def test_email_without_wait_takes_first_slot_of_its_pair(self):
        steps = _steps([
            wait_step("w1", 1),
            email_step("e1", 2),
            email_step("e2", 3),
        ])
        emails = to_email_steps(steps)

        request = build_reorder_request(move_item(emails, 1, 0), steps)

        assert [(entry.id, entry.position) for entry in request.steps] == [
            ("e2", 1),
            ("w1", 3),
            ("e1", 4),
        ]

    def test_wait_is_taken_from_previous_server_order(self):
        # The wait in front of e2 moves with e2, not with whatever email now precedes it
        steps = _steps(three_pair_steps())
        emails = to_email_steps(steps)

        request = build_reorder_request(move_item(emails, 1, 2), steps)
        positions = {entry.id: entry.position for entry in request.steps}

        assert positions["wait-b"] + 1 == positions["email-b"]
        assert positions["email-b"] == 6

    def test_parent_and_branch_are_carried_over(self):
        steps = _steps(forked_steps())
        by_id = {step.id: step for step in steps}
        merged = project_workflow(steps).merged_emails

        request = build_reorder_request(move_item(merged, 1, 0), steps, merged=True)

        assert request.steps
        for entry in request.steps:
            assert entry.parent_step_id == by_id[entry.id].parent_step_id
            assert entry.branch == by_id[entry.id].branch

    def test_merged_positions_start_after_the_fork(self):
        steps = _steps(forked_steps())
        merged = project_workflow(steps).merged_emails

        request = build_reorder_request(move_item(merged, 1, 0), steps, merged=True)

        assert [(entry.id, entry.position) for entry in request.steps] == [
            ("email-m2", 8),
            ("wait-m1", 10),
            ("email-m1", 11),
        ]

    def test_main_reorder_moves_fork_behind_lone_emails(self):
        steps = _steps([
            email_step("e1", 1),
            email_step("e2", 2),
            condition_step("cond", 3, "opened", "e2"),
            email_step("m1", 4),
        ])
        emails = to_email_steps(steps)

        request = build_reorder_request(move_item(emails, 1, 0), steps)
        positions = [(entry.id, entry.position) for entry in request.steps]

        assert positions == [("e2", 1), ("e1", 3), ("cond", 5), ("m1", 6)]
        assert len({position for _, position in positions}) == len(positions)

    def test_main_reorder_keeps_branch_steps_in_the_fork(self):
        steps = _steps(forked_steps())
        by_id = {step.id: step for step in steps}
        main = project_workflow(steps).emails

        request = build_reorder_request(main, steps)
        moved = [
            by_id[entry.id].model_copy(update={"position": entry.position})
            for entry in request.steps
        ]

        assert len(moved) == len(steps)
        assert len({step.position for step in moved}) == len(moved)
        projection = project_workflow(moved)
        assert [email.id for email in projection.emails] == ["email-1"]
        assert projection.condition.yes_branch.email.id == "email-yes"
        assert [email.id for email in projection.merged_emails] == ["email-m1", "email-m2"]

    def test_merged_positions_follow_sparse_main_positions(self):
        steps = _steps([
            email_step("e1", 1),
            email_step("e2", 3),
            condition_step("cond", 4, "opened", "e2"),
            email_step("m1", 5),
            email_step("m2", 6),
        ])
        merged = project_workflow(steps).merged_emails

        request = build_reorder_request(move_item(merged, 1, 0), steps, merged=True)

        assert [(entry.id, entry.position) for entry in request.steps] == [("m2", 5), ("m1", 7)]

    def test_emails_unknown_to_the_server_are_skipped(self):
        steps = _steps([email_step("e1", 1)])
        emails = [EmailStep(id="local-only"), *to_email_steps(steps)]

        request = build_reorder_request(emails, steps)

        assert [(entry.id, entry.position) for entry in request.steps] == [("e1", 3)]

    def test_body_shape(self):
        steps = _steps(three_pair_steps())

        body = build_reorder_request(to_email_steps(steps), steps).to_body()

        assert body["steps"][0] == {
            "id": "wait-a",
            "position": 1,
            "parent_step_id": None,
            "branch": None,
        }


class TestCreateRequest:

    def test_next_position(self):
        assert next_position(0) == 1
        assert next_position(3) == 4

    def test_merged_position_goes_after_every_step(self):
        assert merged_position(_steps(forked_steps())) == 11
        assert merged_position([]) == 1

    def test_create_request_from_form(self):
        form = EmailForm(sender_id="snd-1", subject="Hi", content="Body", template_id="tpl-1")

        request = build_create_request(form, 4)

        assert request.to_body() == {
            "step_type": "email",
            "position": 4,
            "parent_step_id": None,
            "branch": None,
            "sender_id": "snd-1",
            "template_id": "tpl-1",
            "subject_override": "Hi",
            "content_override": "Body",
        }
        assert request.step_type == StepType.EMAIL

    def test_create_request_in_branch(self):
        form = EmailForm(sender_id="snd-1", subject="Hi", template_id="tpl-1")

        request = build_create_request(form, 5, parent_step_id="cond", branch=Branch.YES)

        assert request.to_body()["branch"] == "yes"
        assert request.to_body()["parent_step_id"] == "cond"
