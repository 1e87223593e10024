"""
Tests for submitting weekly input and the cycle lifecycle
"""
from datetime import timedelta

import pytest

from ritual import crud
from ritual.coordinator import current_cycle, cycle_status, set_city, snapshot, submit_input
from ritual.errors import ConcurrentSubmission, InvalidInput, NotAPartner, RATE_LIMITED
from ritual.schemas import CycleStatus, PreferencePayload
from tests.conftest import WEDNESDAY, ProviderError, ScriptedGenerator


class TestCurrentCycle:
    def test_both_partners_share_the_cycle(self, alice, bob):
        assert current_cycle(alice, now=WEDNESDAY).id == current_cycle(bob, now=WEDNESDAY).id

    def test_outsider_rejected(self, make_context):
        with pytest.raises(NotAPartner):
            current_cycle(make_context("mallory"), now=WEDNESDAY)

    def test_new_cycle_is_empty(self, alice, cycle_id):
        assert cycle_status(alice, cycle_id) == CycleStatus.EMPTY


class TestSetCity:
    def test_city_reaches_generation(self, alice, bob, runner, cycle_id, cozy, adventurous, generator, session_factory, couple):
        assert set_city(bob, "Sydney") == "Sydney"
        db = session_factory()
        try:
            assert crud.get_couple(db, couple.id).preferred_city == "Sydney"
        finally:
            db.close()

        submit_input(alice, cycle_id, cozy)
        submit_input(bob, cycle_id, adventurous)
        assert runner.drain(5)
        assert generator.last_location["city"] == "Sydney"

    def test_unknown_city(self, alice):
        with pytest.raises(InvalidInput):
            set_city(alice, "Atlantis")

    def test_outsider_cannot_move_couple(self, make_context):
        with pytest.raises(NotAPartner):
            set_city(make_context("mallory"), "Sydney")


class TestSubmitInput:
    def test_first_submission(self, alice, bob, cycle_id, cozy, generator):
        assert submit_input(alice, cycle_id, cozy) == CycleStatus.ONE_SUBMITTED
        assert generator.calls == 0

        mine = snapshot(alice, cycle_id)
        theirs = snapshot(bob, cycle_id)
        assert mine.my_input_done and not mine.partner_input_done
        assert theirs.partner_input_done and not theirs.my_input_done

    def test_second_submission_triggers_generation(self, alice, bob, runner, cycle_id, cozy, adventurous, generator):
        submit_input(alice, cycle_id, cozy)
        status = submit_input(bob, cycle_id, adventurous)
        assert status in (CycleStatus.BOTH_SUBMITTED, CycleStatus.GENERATING, CycleStatus.PROPOSALS_READY)

        assert runner.drain(5)
        assert generator.calls == 1
        assert cycle_status(alice, cycle_id) == CycleStatus.PROPOSALS_READY
        assert len(snapshot(bob, cycle_id).rituals) == 5

    def test_resubmission_rejected(self, alice, cycle_id, cozy, session_factory):
        submit_input(alice, cycle_id, cozy)
        with pytest.raises(ConcurrentSubmission) as exc:
            submit_input(alice, cycle_id, PreferencePayload(mood_tags=["tired"]))
        assert exc.value.partner_slot == "partner_one"

        db = session_factory()
        try:
            assert crud.get_cycle(db, cycle_id).partner_one_input["mood_tags"] == ["cozy", "deep-talk"]
        finally:
            db.close()

    def test_outsider_cannot_submit(self, make_context, cycle_id, cozy):
        with pytest.raises(NotAPartner):
            submit_input(make_context("mallory"), cycle_id, cozy)

    def test_payload_limits(self, alice, cycle_id):
        with pytest.raises(InvalidInput):
            submit_input(alice, cycle_id, PreferencePayload(mood_tags=[]))
        with pytest.raises(InvalidInput):
            submit_input(alice, cycle_id, PreferencePayload(mood_tags=["a", "b", "c", "d", "e", "f"]))
        with pytest.raises(InvalidInput):
            submit_input(alice, cycle_id, PreferencePayload(mood_tags=["cozy"], desire="x" * 501))

    def test_payload_is_normalised(self):
        payload = PreferencePayload(mood_tags=[" Cozy", "cozy", "Deep-Talk "], desire="   ")
        assert payload.mood_tags == ["cozy", "deep-talk"]
        assert payload.desire is None

    def test_generation_failure_does_not_fail_submission(self, make_context, runner, cycle_id, cozy, adventurous):
        failing = ScriptedGenerator(error=ProviderError(429, "Too Many Requests"))
        alice = make_context("alice", gen=failing)
        bob = make_context("bob", gen=failing)

        submit_input(alice, cycle_id, cozy)
        submit_input(bob, cycle_id, adventurous)
        assert runner.drain(5)

        snap = snapshot(alice, cycle_id)
        assert snap.status == CycleStatus.FAILED
        assert snap.generation_error_code == RATE_LIMITED
        assert snap.rituals == []


class TestOrderIndependence:
    def final_state(self, first, second, first_payload, second_payload, runner, cycle_id):
        submit_input(first, cycle_id, first_payload)
        submit_input(second, cycle_id, second_payload)
        assert runner.drain(5)
        snap = snapshot(first.for_user("alice"), cycle_id)
        return snap.status, [r.title for r in snap.rituals]

    def test_same_outcome_either_order(self, make_context, runner, couple, session_factory, cozy, adventurous):
        alice, bob = make_context("alice"), make_context("bob")
        week_one = current_cycle(alice, now=WEDNESDAY).id

        db = session_factory()
        try:
            week_two = crud.get_or_create_cycle(db, couple.id, WEDNESDAY.date() + timedelta(days=5)).id
        finally:
            db.close()

        a_then_b = self.final_state(alice, bob, cozy, adventurous, runner, week_one)
        b_then_a = self.final_state(bob, alice, adventurous, cozy, runner, week_two)
        assert a_then_b == b_then_a
        assert a_then_b[0] == CycleStatus.PROPOSALS_READY
