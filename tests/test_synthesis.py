"""
Tests for at-most-once generation, retries and swaps
"""
import threading
from datetime import date, datetime, timedelta

import pytest

from ritual import crud
from ritual.errors import (
    MALFORMED_RESPONSE,
    QUOTA_EXCEEDED,
    RATE_LIMITED,
    GenerationFailed,
    GenerationTimeout,
    InvalidInput,
    NotReady,
)
from ritual.schemas import GenerationStatus
from ritual.synthesis import build_history, invoke_generation, request_generation, swap_ritual
from tests.conftest import REPLACEMENT, SAMPLE_RITUALS, ScriptedGenerator, ProviderError

NOW = datetime(2026, 10, 14, 12, 0)


@pytest.fixture
def inputs_in(session_factory, cycle_id):
    """Both inputs stored directly, with no background generation started"""
    db = session_factory()
    try:
        crud.record_partner_input(db, cycle_id, "partner_one", "alice", {"mood_tags": ["cozy"], "desire": "quiet night"}, NOW)
        crud.record_partner_input(db, cycle_id, "partner_two", "bob", {"mood_tags": ["adventure"], "desire": None}, NOW)
    finally:
        db.close()
    return cycle_id


def stored_cycle(session_factory, cycle_id):
    db = session_factory()
    try:
        return crud.get_cycle(db, cycle_id)
    finally:
        db.close()


class TestInvokeGeneration:
    def test_waiting_for_partner(self, alice, session_factory, cycle_id, generator):
        db = session_factory()
        try:
            crud.record_partner_input(db, cycle_id, "partner_one", "alice", {"mood_tags": ["cozy"]}, NOW)
        finally:
            db.close()
        assert invoke_generation(alice, cycle_id).status == GenerationStatus.WAITING
        assert generator.calls == 0

    def test_ready_after_generation(self, alice, inputs_in, generator, session_factory):
        result = invoke_generation(alice, inputs_in)
        assert result.status == GenerationStatus.READY
        assert len(result.rituals) == 5

        cycle = stored_cycle(session_factory, inputs_in)
        assert cycle.sync_completed_at is not None
        assert cycle.generation_error_code is None

    def test_second_call_reuses_output(self, alice, bob, inputs_in, generator):
        invoke_generation(alice, inputs_in)
        again = invoke_generation(bob, inputs_in)
        assert again.status == GenerationStatus.READY
        assert generator.calls == 1

    def test_concurrent_calls_generate_once(self, make_context, inputs_in, session_factory):
        gate = threading.Event()
        gen = ScriptedGenerator(gate=gate)
        contexts = [make_context("alice", gen=gen), make_context("bob", gen=gen)] * 3
        results = []
        lock = threading.Lock()

        def call(ctx):
            outcome = invoke_generation(ctx, inputs_in)
            with lock:
                results.append(outcome.status)

        threads = [threading.Thread(target=call, args=(ctx,)) for ctx in contexts]
        for t in threads:
            t.start()
        # Let every caller hit the claim before the winner finishes
        for t in threads:
            t.join(timeout=0.3)
        gate.set()
        for t in threads:
            t.join(timeout=5)

        assert gen.calls == 1
        assert results.count(GenerationStatus.READY) >= 1
        assert set(results) <= {GenerationStatus.READY, GenerationStatus.GENERATING}
        assert len(stored_cycle(session_factory, inputs_in).rituals) == 5

    def test_rate_limit_is_retry_later(self, make_context, inputs_in, session_factory):
        ctx = make_context("alice", gen=ScriptedGenerator(error=ProviderError(429)))
        result = invoke_generation(ctx, inputs_in)

        assert result.status == GenerationStatus.FAILED
        assert result.error_code == RATE_LIMITED
        assert result.retry_later
        cycle = stored_cycle(session_factory, inputs_in)
        assert cycle.generation_started_at is None
        assert cycle.synthesized_output is None

    def test_quota_is_distinguishable(self, make_context, inputs_in):
        ctx = make_context("alice", gen=ScriptedGenerator(error=ProviderError(402, "Payment required")))
        result = invoke_generation(ctx, inputs_in)
        assert result.error_code == QUOTA_EXCEEDED

    def test_malformed_is_not_retry_later(self, make_context, inputs_in):
        failure = GenerationFailed(MALFORMED_RESPONSE, "bad json")
        result = invoke_generation(make_context("alice", gen=ScriptedGenerator(error=failure)), inputs_in)
        assert result.error_code == MALFORMED_RESPONSE
        assert not result.retry_later

    def test_too_few_rituals_is_malformed(self, make_context, inputs_in, session_factory):
        short = make_context("alice", gen=ScriptedGenerator(rituals=SAMPLE_RITUALS[:2]))
        result = invoke_generation(short, inputs_in)

        assert result.status == GenerationStatus.FAILED
        assert result.error_code == MALFORMED_RESPONSE
        cycle = stored_cycle(session_factory, inputs_in)
        assert cycle.synthesized_output is None
        assert cycle.generation_started_at is None

        # The claim was released, so a full reply can still land
        retry = invoke_generation(make_context("bob"), inputs_in)
        assert retry.status == GenerationStatus.READY
        assert len(retry.rituals) == 5

    def test_retry_after_failure(self, make_context, inputs_in):
        gen = ScriptedGenerator(error=ProviderError(429))
        ctx = make_context("alice", gen=gen)
        assert invoke_generation(ctx, inputs_in).status == GenerationStatus.FAILED

        gen.error = None
        assert invoke_generation(ctx, inputs_in).status == GenerationStatus.READY
        assert gen.calls == 2

    def test_live_claim_blocks_second_generator(self, alice, inputs_in, session_factory, generator):
        db = session_factory()
        try:
            crud.claim_generation(db, inputs_in, "other-client", NOW, NOW - timedelta(seconds=90))
        finally:
            db.close()
        assert invoke_generation(alice, inputs_in, now=NOW + timedelta(seconds=10)).status == GenerationStatus.GENERATING
        assert generator.calls == 0

    def test_abandoned_claim_is_retaken(self, alice, inputs_in, session_factory, generator):
        db = session_factory()
        try:
            crud.claim_generation(db, inputs_in, "crashed-client", NOW, NOW - timedelta(seconds=90))
        finally:
            db.close()
        result = invoke_generation(alice, inputs_in, now=NOW + timedelta(seconds=300))
        assert result.status == GenerationStatus.READY
        assert generator.calls == 1

    def test_notifies_subscribers(self, alice, inputs_in, channel):
        events = []
        channel.subscribe(inputs_in, lambda _cycle_id, event: events.append(event))
        invoke_generation(alice, inputs_in)
        assert events == ["generation_started", "proposals_ready"]


class TestRequestGeneration:
    def test_returns_rituals(self, alice, inputs_in):
        result = request_generation(alice, inputs_in)
        assert [r.title for r in result.rituals] == [r["title"] for r in SAMPLE_RITUALS]

    def test_failure_raises(self, make_context, inputs_in):
        ctx = make_context("alice", gen=ScriptedGenerator(error=ProviderError(429)))
        with pytest.raises(GenerationFailed) as exc:
            request_generation(ctx, inputs_in)
        assert exc.value.retry_later

    def test_timeout_is_local_give_up(self, make_context, runner, inputs_in, session_factory):
        gate = threading.Event()
        ctx = make_context("alice", gen=ScriptedGenerator(gate=gate))
        with pytest.raises(GenerationTimeout):
            request_generation(ctx, inputs_in, timeout=0.1)

        gate.set()
        assert runner.drain(5)
        assert len(stored_cycle(session_factory, inputs_in).rituals) == 5

    def test_retry_never_clears_existing_output(self, alice, inputs_in, generator):
        first = request_generation(alice, inputs_in)
        second = request_generation(alice, inputs_in)
        assert [r.title for r in second.rituals] == [r.title for r in first.rituals]
        assert generator.calls == 1


class TestSwapRitual:
    def test_needs_proposals(self, alice, inputs_in):
        with pytest.raises(NotReady):
            swap_ritual(alice, inputs_in, "Sunrise Walk")

    def test_unknown_title(self, alice, inputs_in):
        invoke_generation(alice, inputs_in)
        with pytest.raises(InvalidInput):
            swap_ritual(alice, inputs_in, "Not On The List")

    def test_excludes_current_and_completed(self, alice, couple, inputs_in, generator, session_factory):
        invoke_generation(alice, inputs_in)
        db = session_factory()
        try:
            crud.record_completion(db, inputs_in, "Pottery Date", NOW - timedelta(days=30))
        finally:
            db.close()

        replacement = swap_ritual(alice, inputs_in, "Sunrise Walk")
        assert replacement.title == REPLACEMENT["title"]

        excluded = generator.swap_calls[0]
        assert "Sunrise Walk" in excluded
        assert "Pottery Date" in excluded
        assert set(r["title"] for r in SAMPLE_RITUALS) <= set(excluded)

    def test_leaves_stored_proposals_alone(self, alice, inputs_in, session_factory):
        invoke_generation(alice, inputs_in)
        before = stored_cycle(session_factory, inputs_in).rituals
        swap_ritual(alice, inputs_in, "Sunrise Walk")
        assert stored_cycle(session_factory, inputs_in).rituals == before

    def test_repeated_title_rejected(self, make_context, inputs_in):
        gen = ScriptedGenerator(replacement=SAMPLE_RITUALS[0])
        ctx = make_context("alice", gen=gen)
        invoke_generation(ctx, inputs_in)
        with pytest.raises(GenerationFailed) as exc:
            swap_ritual(ctx, inputs_in, "Sunrise Walk")
        assert exc.value.code == MALFORMED_RESPONSE


class TestHistory:
    def test_history_feeds_generation(self, alice, couple, inputs_in, generator, session_factory):
        db = session_factory()
        try:
            pottery = crud.get_or_create_cycle(db, couple.id, date(2026, 9, 14))
            board_games = crud.get_or_create_cycle(db, couple.id, date(2026, 9, 21))
            crud.record_completion(db, pottery.id, "Pottery Date", NOW - timedelta(days=30))
            crud.add_memory(db, couple.id, pottery.id, "Pottery Date", date(2026, 9, 14), rating=5, notes="Messy and fun")
            crud.add_memory(db, couple.id, board_games.id, "Board Games", date(2026, 9, 21), rating=2)
            history = build_history(db, couple.id)
        finally:
            db.close()

        assert history["completed_titles"] == ["Pottery Date"]
        assert history["highly_rated"] == [{"title": "Pottery Date", "rating": 5}]
        assert history["reflections"] == [{"title": "Pottery Date", "notes": "Messy and fun"}]

        invoke_generation(alice, inputs_in)
        assert generator.last_history == history
        assert generator.last_location["city"] == "London"
