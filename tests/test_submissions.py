"""
Acceptance tests for taking a quiz: starting, answering and grading.
"""

import json

import pytest
from sqlalchemy.exc import OperationalError
from sqlmodel import Session, select

from conftest import add_choice_question, as_principal, login, make_quiz, test_engine
from quizgate.errors import StorePolicyDenied
from quizgate.models import Question, QuestionOption, QuizInvitation, QuizSubmission
from quizgate.services import invitation_service, submission_service
from quizgate.services.quiz_service import list_options


def _option_ids(question_id):
    with Session(test_engine) as session:
        return [(o.id, o.is_correct) for o in list_options(session, question_id)]


def _invitations(quiz_id):
    with Session(test_engine) as session:
        return session.exec(select(QuizInvitation).where(QuizInvitation.quiz_id == quiz_id)).all()


class TestStartSubmission:
    def test_private_quiz_invitee_flow(self, client, creator_user, taker_user):
        """Acceptance: An invitee of a private quiz can start it and the invitation is accepted."""
        # Given: A creates a private quiz with one question and invites b@x.com
        login(client, "alice@example.com")
        quiz = client.post("/quiz", json={"title": "Q"}).json()
        client.post(
            f"/quiz/{quiz['slug']}/questions",
            json={
                "question_text": "Pick the right one",
                "question_type": "multiple_choice",
                "options": [
                    {"option_text": "Right", "is_correct": True},
                    {"option_text": "Wrong", "is_correct": False},
                ],
            },
        )
        client.post("/invitations", json={"quiz_id": quiz["id"], "invitee_email": "b@x.com"})

        # When: B signs in and starts a submission
        login(client, "b@x.com")
        response = client.post(f"/quiz/{quiz['slug']}/submissions")

        # Then: The submission is open and the invitation accepted
        assert response.status_code == 201
        body = response.json()
        assert body["status"] == "in_progress"
        assert body["score"] == 0
        assert body["user_id"] == taker_user.id
        assert body["submitted_by_name"] == "Bob Taker"
        assert body["submitted_by_email"] == "b@x.com"

        (invitation,) = _invitations(quiz["id"])
        assert invitation.status == "accepted"
        assert invitation.invitee_id == taker_user.id

    def test_auto_accept_happens_once(self, client, creator_user, taker_user, private_quiz):
        login(client, "alice@example.com")
        client.post("/invitations", json={"quiz_id": private_quiz.id, "invitee_email": "b@x.com"})

        login(client, "b@x.com")
        first = client.post(f"/quiz/{private_quiz.slug}/submissions")
        (after_first,) = _invitations(private_quiz.id)
        second = client.post(f"/quiz/{private_quiz.slug}/submissions")
        (after_second,) = _invitations(private_quiz.id)

        assert first.status_code == 201
        assert second.status_code == 201
        assert second.json()["id"] != first.json()["id"]
        assert after_second.status == "accepted"
        assert after_second.responded_at == after_first.responded_at

    def test_uninvited_user_is_denied_on_private_quiz(self, client, taker_user, private_quiz):
        """Acceptance: Without an invitation the store refuses the insert."""
        login(client, "b@x.com")

        response = client.post(f"/quiz/{private_quiz.slug}/submissions")

        assert response.status_code == 403
        body = response.json()
        assert body["error"] == "You don't have permission to take this quiz."
        assert "details" in body
        with Session(test_engine) as session:
            assert session.exec(select(QuizSubmission)).all() == []

    def test_declined_invitation_does_not_grant_access(self, session, creator_user, taker_user, private_quiz):
        invitation, _ = invitation_service.invite(
            session, private_quiz.id, as_principal(creator_user), "b@x.com"
        )
        invitation_service.respond(session, invitation.id, "declined", as_principal(taker_user))

        with pytest.raises(StorePolicyDenied):
            submission_service.start_submission(session, private_quiz.slug, as_principal(taker_user))

    def test_anyone_may_take_public_quiz(self, client, taker_user, public_quiz):
        login(client, "b@x.com")
        assert client.post(f"/quiz/{public_quiz.slug}/submissions").status_code == 201

    def test_creator_may_take_own_private_quiz(self, client, creator_user, private_quiz):
        login(client, "alice@example.com")
        assert client.post(f"/quiz/{private_quiz.slug}/submissions").status_code == 201

    def test_anonymous_is_401(self, client, public_quiz):
        assert client.post(f"/quiz/{public_quiz.slug}/submissions").status_code == 401


class TestSubmitAnswers:
    def test_answers_are_graded(self, client, taker_user, public_quiz):
        """Acceptance: Submitting answers grades the attempt against the answer key."""
        # Given: A public quiz with a choice, a true/false and a short-answer question
        mc = add_choice_question(public_quiz.id, 1, [("A", True), ("B", False), ("C", True)], points=2)
        tf = add_choice_question(
            public_quiz.id, 2, [("True", False), ("False", True)], question_type="true_false"
        )
        sa = add_choice_question(
            public_quiz.id, 3, [("Paris", True)], question_type="short_answer", points=3
        )
        (a, _), (_b, _), (c, _) = _option_ids(mc.id)
        (_t, _), (f, _) = _option_ids(tf.id)

        login(client, "b@x.com")
        submission = client.post(f"/quiz/{public_quiz.slug}/submissions").json()

        # When: B answers mc and short-answer correctly, true/false wrongly
        response = client.post(
            f"/quiz/{public_quiz.slug}/submissions/{submission['id']}",
            json={
                "answers": [
                    {"question_id": mc.id, "user_answer": [c, a]},
                    {"question_id": tf.id, "user_answer": f + 1000},
                    {"question_id": sa.id, "user_answer": "  paris "},
                ]
            },
        )

        # Then: Score and totals follow the question points
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "graded"
        assert body["score"] == 5
        assert body["total_points"] == 6
        assert body["submitted_at"] is not None
        assert body["time_taken"] >= 0

        detail = client.get(f"/quiz/{public_quiz.slug}/submissions/{submission['id']}").json()
        by_question = {ans["question_id"]: ans for ans in detail["answers"]}
        assert by_question[mc.id]["is_correct"] is True
        assert json.loads(by_question[mc.id]["user_answer"]) == [c, a]
        assert by_question[tf.id]["points_earned"] == 0
        assert by_question[sa.id]["points_earned"] == 3

    def test_text_answer_with_special_characters(self, client, creator_user, taker_user, public_quiz):
        """Acceptance: Answers containing &, < or > grade against the text the creator typed."""
        # Given: The creator adds a short-answer question through the API
        login(client, "alice@example.com")
        created = client.post(
            f"/quiz/{public_quiz.slug}/questions",
            json={
                "question_text": "Which department builds prototypes?",
                "question_type": "short_answer",
                "options": [{"option_text": "R&D", "is_correct": True}],
            },
        ).json()
        assert created["question_options"][0]["option_text"] == "R&D"

        # When: B answers with the same text
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        response = client.post(
            f"/quiz/{public_quiz.slug}/submissions/{sid}",
            json={"answers": [{"question_id": created["id"], "user_answer": "r&d"}]},
        )

        # Then: Full marks
        assert response.json()["score"] == 1
        assert response.json()["total_points"] == 1

    def test_partial_multiple_choice_is_wrong(self):
        question = Question(id=1, quiz_id=1, question_text="?", question_type="multiple_choice", points=2, order=1)
        options = [
            QuestionOption(id=10, question_id=1, option_text="A", is_correct=True, order=1),
            QuestionOption(id=11, question_id=1, option_text="B", is_correct=True, order=2),
            QuestionOption(id=12, question_id=1, option_text="C", is_correct=False, order=3),
        ]

        assert submission_service.grade_answer(question, options, [10]) == (False, 0)
        assert submission_service.grade_answer(question, options, ["10", "11"]) == (True, 2)
        assert submission_service.grade_answer(question, options, [10, 11, 12]) == (False, 0)

    def test_second_submit_is_rejected(self, client, taker_user, public_quiz):
        q = add_choice_question(public_quiz.id, 1, [("A", True)], question_type="true_false")
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        answers = {"answers": [{"question_id": q.id, "user_answer": 0}]}

        assert client.post(f"/quiz/{public_quiz.slug}/submissions/{sid}", json=answers).status_code == 200
        again = client.post(f"/quiz/{public_quiz.slug}/submissions/{sid}", json=answers)
        assert again.status_code == 400

    def test_bad_payloads(self, client, creator_user, taker_user, public_quiz):
        q = add_choice_question(public_quiz.id, 1, [("A", True)])
        elsewhere = make_quiz(creator_user.id, slug="elsewhere")
        foreign = add_choice_question(elsewhere.id, 1, [("A", True)])
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        url = f"/quiz/{public_quiz.slug}/submissions/{sid}"

        assert client.post(url, json={"answers": []}).status_code == 400
        assert client.post(url, json={"answers": "A"}).status_code == 400
        assert client.post(
            url, json={"answers": [{"question_id": foreign.id, "user_answer": 1}]}
        ).status_code == 404
        # still open after the rejected attempts
        ok = client.post(url, json={"answers": [{"question_id": q.id, "user_answer": 1}]})
        assert ok.status_code == 200

    def test_other_users_submission_is_not_found(self, client, taker_user, other_user, public_quiz):
        q = add_choice_question(public_quiz.id, 1, [("A", True)])
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]

        login(client, "carol@example.com")
        response = client.post(
            f"/quiz/{public_quiz.slug}/submissions/{sid}",
            json={"answers": [{"question_id": q.id, "user_answer": 1}]},
        )
        assert response.status_code == 404


    def test_store_failure_on_start_is_500_not_403(self, client, taker_user, public_quiz, monkeypatch):
        def broken_policy(session, quiz, taker):
            raise OperationalError("INSERT INTO quizsubmission", {}, Exception("disk I/O error"))

        monkeypatch.setattr(submission_service, "check_submission_insert", broken_policy)
        login(client, "b@x.com")

        response = client.post(f"/quiz/{public_quiz.slug}/submissions")

        assert response.status_code == 500
        assert response.json() == {"error": "disk I/O error"}


class TestCreatorGrading:
    def _graded_submission(self, client, public_quiz):
        q = add_choice_question(public_quiz.id, 1, [("A", True), ("B", False)], points=4)
        (a, _), _ = _option_ids(q.id)
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        client.post(
            f"/quiz/{public_quiz.slug}/submissions/{sid}",
            json={"answers": [{"question_id": q.id, "user_answer": a}]},
        )
        return sid

    def test_manual_score(self, client, creator_user, taker_user, public_quiz):
        sid = self._graded_submission(client, public_quiz)
        login(client, "alice@example.com")

        response = client.put(f"/quiz/{public_quiz.slug}/submissions/{sid}", json={"manual_score": 1})

        assert response.status_code == 200
        assert response.json()["score"] == 1
        assert response.json()["status"] == "graded"

        out_of_range = client.put(
            f"/quiz/{public_quiz.slug}/submissions/{sid}", json={"manual_score": 99}
        )
        assert out_of_range.status_code == 400

    def test_regrade_recomputes_from_answers(self, client, creator_user, taker_user, public_quiz):
        sid = self._graded_submission(client, public_quiz)
        login(client, "alice@example.com")
        client.put(f"/quiz/{public_quiz.slug}/submissions/{sid}", json={"manual_score": 0})

        response = client.put(f"/quiz/{public_quiz.slug}/submissions/{sid}", json={})

        assert response.json()["score"] == 4

    def test_only_creator_may_grade(self, client, creator_user, taker_user, public_quiz):
        sid = self._graded_submission(client, public_quiz)
        response = client.put(f"/quiz/{public_quiz.slug}/submissions/{sid}", json={"manual_score": 4})
        assert response.status_code == 403

    def test_in_progress_cannot_be_graded(self, client, creator_user, taker_user, public_quiz):
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        login(client, "alice@example.com")
        assert client.put(f"/quiz/{public_quiz.slug}/submissions/{sid}", json={}).status_code == 400


class TestSubmissionReads:
    def test_creator_list_is_unredacted(self, client, creator_user, taker_user, public_quiz):
        login(client, "b@x.com")
        client.post(f"/quiz/{public_quiz.slug}/submissions")

        login(client, "alice@example.com")
        body = client.get(f"/quiz/{public_quiz.slug}/submissions").json()

        assert [s["submitted_by_email"] for s in body] == ["b@x.com"]

    def test_creator_list_is_owner_only(self, client, taker_user, public_quiz):
        login(client, "b@x.com")
        assert client.get(f"/quiz/{public_quiz.slug}/submissions").status_code == 403

    def test_detail_visible_to_taker_and_creator_only(
        self, client, creator_user, taker_user, other_user, public_quiz
    ):
        login(client, "b@x.com")
        sid = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        assert client.get(f"/quiz/{public_quiz.slug}/submissions/{sid}").status_code == 200

        login(client, "alice@example.com")
        assert client.get(f"/quiz/{public_quiz.slug}/submissions/{sid}").status_code == 200

        login(client, "carol@example.com")
        assert client.get(f"/quiz/{public_quiz.slug}/submissions/{sid}").status_code == 403

    def test_my_submissions(self, client, taker_user, public_quiz):
        login(client, "b@x.com")
        first = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]
        second = client.post(f"/quiz/{public_quiz.slug}/submissions").json()["id"]

        body = client.get("/submissions").json()

        assert [s["id"] for s in body] == [second, first]
