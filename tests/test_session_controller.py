import asyncio
from datetime import date

import pytest

from pmcoach.exceptions import (
    EmptyInput,
    EvaluationContractViolation,
    GenerationFailure,
    InsufficientInput,
    NotReady,
    QuestionUnavailable,
    SessionAlreadyActive,
    StoreUnavailable,
)
from pmcoach.schemas.interview import Question, Role
from pmcoach.services.evaluation import EvaluationGateway
from pmcoach.services.interviewer import InterviewerTurnGenerator
from pmcoach.services.rubrics import RUBRICS
from pmcoach.services.session_controller import SessionState, TERMINAL_STATES
from pmcoach.services.session_registry import SessionRegistry
from pmcoach.services.stores import SqlSessionStore

from conftest import FakeLLM, evaluation_for


async def _wait_until_terminal(controller, spins=20000):
    for _ in range(spins):
        if controller.state in TERMINAL_STATES:
            return
        await asyncio.sleep(0)
    raise AssertionError(f"controller stuck in {controller.state}")


class CountingSessionStore(SqlSessionStore):
    def __init__(self, session_factory):
        super().__init__(session_factory)
        self.updates = []

    def update_session(self, session_id, patch):
        self.updates.append((session_id, patch))
        return super().update_session(session_id, patch)


class ListQuestionStore:
    def __init__(self, questions):
        self.questions = list(questions)

    def list_questions(self, category=None):
        return [q for q in self.questions if category is None or q.category == category]


class GatedLLM(FakeLLM):
    """Holds every call until ``gate`` is set."""

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.gate = asyncio.Event()
        self.waiting = 0

    async def generate(self, prompt, schema=None, temperature=None):
        self.waiting += 1
        await self.gate.wait()
        return await super().generate(prompt, schema, temperature=temperature)


async def _wait_for_call(llm, spins=1000):
    for _ in range(spins):
        if llm.waiting:
            return
        await asyncio.sleep(0)
    raise AssertionError("generator was never called")


class FlakyStatsStore:
    def __init__(self, inner, failures=1):
        self.inner = inner
        self.failures = failures
        self.calls = 0

    def upsert_user_stats(self, user_id, stats):
        self.calls += 1
        if self.failures:
            self.failures -= 1
            raise StoreUnavailable("stats table locked")
        return self.inner.upsert_user_stats(user_id, stats)


# ------------------------
# Idle -> Ready
# ------------------------
def test_load_question_for_category(make_controller):
    controller = make_controller()
    question = controller.load_question("rca")

    assert question.category == "rca"
    assert controller.state == SessionState.READY


def test_load_random_question_draws_from_full_pool(make_controller, stores):
    controller = make_controller()
    pool_ids = {q.id for q in stores.questions.list_questions()}

    question = controller.load_question("random")

    assert question.id in pool_ids
    assert controller.state == SessionState.READY


def test_load_question_unknown_category_is_unavailable(make_controller):
    controller = make_controller()

    with pytest.raises(QuestionUnavailable):
        controller.load_question("behavioral")
    assert controller.state == SessionState.IDLE


def test_load_question_with_no_questions_in_category(make_controller):
    store = ListQuestionStore([
        Question(id="q-1", question_text="Design a bike lock.", category="design"),
    ])
    controller = make_controller(question_store=store)

    with pytest.raises(QuestionUnavailable):
        controller.load_question("guesstimate")
    assert controller.state == SessionState.IDLE

    assert controller.load_question("random").id == "q-1"


def test_reload_while_ready_replaces_question(make_controller):
    store = ListQuestionStore([
        Question(id="q-1", question_text="Design a bike lock.", category="design"),
        Question(id="q-2", question_text="Why did DAU drop 10%?", category="rca"),
    ])
    controller = make_controller(question_store=store)

    controller.load_question("design")
    assert controller.load_question("rca").id == "q-2"
    assert controller.state == SessionState.READY


# ------------------------
# Ready -> Active
# ------------------------
def test_start_requires_loaded_question(make_controller):
    controller = make_controller()

    with pytest.raises(NotReady):
        asyncio.run(controller.start())
    assert controller.state == SessionState.IDLE


def test_start_greets_with_question_and_creates_record(make_controller, stores):
    controller = make_controller()
    question = controller.load_question("design")

    async def scenario():
        greeting = await controller.start()
        controller.close()
        return greeting

    greeting = asyncio.run(scenario())

    assert controller.state == SessionState.ACTIVE
    assert greeting.role == Role.INTERVIEWER
    assert question.question_text in greeting.message
    assert "30 minutes" in greeting.message
    assert len(controller.turns) == 1

    record = stores.sessions.get_session("user-1", controller.session_id)
    assert record.completed is False
    assert record.composite_score is None
    assert record.question_id == question.id


# ------------------------
# Active -> Active
# ------------------------
@pytest.mark.parametrize("text", ["", "   ", "\n\t"])
def test_blank_input_never_touches_the_log(make_controller, llm, text):
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        with pytest.raises(EmptyInput):
            await controller.submit_candidate_turn(text)
        controller.close()

    asyncio.run(scenario())

    assert controller.state == SessionState.ACTIVE
    assert len(controller.turns) == 1
    assert llm.text_calls == []


def test_candidate_turn_gets_interviewer_reply(make_controller, llm):
    llm.replies = ["Who are the parents you have in mind?"]
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        result = await controller.submit_candidate_turn("I'd start by clarifying the goal.")
        controller.close()
        return result

    candidate, reply = asyncio.run(scenario())

    assert candidate.role == Role.CANDIDATE
    assert reply.role == Role.INTERVIEWER
    assert reply.message == "Who are the parents you have in mind?"
    assert [t.role for t in controller.turns] == [Role.INTERVIEWER, Role.CANDIDATE, Role.INTERVIEWER]
    # the generator saw the whole log so far, including the new candidate turn
    assert "I'd start by clarifying the goal." in llm.text_calls[0]
    assert "50 words" in llm.text_calls[0]


def test_generation_failure_keeps_candidate_turn(make_controller, llm):
    llm.replies = [GenerationFailure("upstream 500"), "Go on."]
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        with pytest.raises(GenerationFailure):
            await controller.submit_candidate_turn("First idea.")
        after_failure = [t.role for t in controller.turns]
        await controller.submit_candidate_turn("First idea, again.")
        controller.close()
        return after_failure

    after_failure = asyncio.run(scenario())

    assert after_failure == [Role.INTERVIEWER, Role.CANDIDATE]
    assert [t.role for t in controller.turns] == [
        Role.INTERVIEWER, Role.CANDIDATE, Role.CANDIDATE, Role.INTERVIEWER,
    ]
    assert controller.state == SessionState.ACTIVE


def test_empty_interviewer_reply_is_a_generation_failure(make_controller, llm):
    llm.replies = ["   "]
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        with pytest.raises(GenerationFailure):
            await controller.submit_candidate_turn("Hello")
        controller.close()

    asyncio.run(scenario())
    assert controller.turns[-1].role == Role.CANDIDATE


# ------------------------
# Finalizing -> Aborted
# ------------------------
def test_end_without_candidate_input_aborts(make_controller, llm, stores):
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        with pytest.raises(InsufficientInput):
            await controller.end_session()
        # terminal: a second end is a no-op
        return await controller.end_session()

    second = asyncio.run(scenario())

    assert second is None
    assert controller.state == SessionState.ABORTED
    assert llm.schema_calls == []
    record = stores.sessions.get_session("user-1", controller.session_id)
    assert record.completed is False
    assert stores.stats.get_user_stats("user-1") is None


# ------------------------
# Finalizing -> Completed
# ------------------------
def test_end_session_persists_evaluation_and_stats(make_controller, llm, stores, clock):
    llm.evaluations = [evaluation_for(RUBRICS["design"], score=4.0)]
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("Let's segment parents by family size.")
        clock.advance(600)
        return await controller.end_session()

    outcome = asyncio.run(scenario())

    assert controller.state == SessionState.COMPLETED
    assert outcome.evaluation.composite_score == 4.0
    assert outcome.duration_minutes == pytest.approx(controller.elapsed_seconds / 60)
    assert outcome.duration_minutes >= 10

    record = stores.sessions.get_session("user-1", outcome.session_id)
    assert record.completed is True
    assert record.composite_score == 4.0
    assert set(record.dimension_scores) == set(RUBRICS["design"])
    assert record.feedback.what_worked_well == "Clear structure."
    assert record.date == date(2024, 1, 5)
    assert [t.role for t in record.conversation] == [Role.INTERVIEWER, Role.CANDIDATE, Role.INTERVIEWER]

    stats = stores.stats.get_user_stats("user-1")
    assert stats.total_solved == 1
    assert stats.current_streak == 1
    assert stats.category_averages == {"design": 4.0}
    assert outcome.stats == stats


def test_completed_session_rejects_new_turns(make_controller):
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        await controller.end_session()
        with pytest.raises(NotReady):
            await controller.submit_candidate_turn("One more thing")

    asyncio.run(scenario())
    assert controller.log.frozen
    assert len(controller.turns) == 3


def test_repeated_end_after_completion_is_a_no_op(make_controller, llm):
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        first = await controller.end_session()
        second = await controller.end_session()
        return first, second

    first, second = asyncio.run(scenario())

    assert first is second
    assert len(llm.schema_calls) == 1


def test_concurrent_end_triggers_evaluate_once(make_controller, llm, session_factory):
    counting = CountingSessionStore(session_factory)
    controller = make_controller(session_store=counting)
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        return await asyncio.gather(controller.end_session(), controller.end_session())

    results = asyncio.run(scenario())

    assert len(llm.schema_calls) == 1
    assert len(counting.updates) == 1
    assert sum(r is not None for r in results) == 1
    assert controller.state == SessionState.COMPLETED


def test_contract_violation_leaves_session_finalizing(make_controller, llm, stores):
    bad = evaluation_for(RUBRICS["design"])
    bad["dimension_scores"].pop(RUBRICS["design"][0])
    llm.evaluations = [bad]
    controller = make_controller()
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        with pytest.raises(EvaluationContractViolation):
            await controller.end_session()
        state_after_failure = controller.state
        record_after_failure = stores.sessions.get_session("user-1", controller.session_id)
        # retry with a well-formed response
        outcome = await controller.end_session()
        return state_after_failure, record_after_failure, outcome

    state_after_failure, record_after_failure, outcome = asyncio.run(scenario())

    assert state_after_failure == SessionState.FINALIZING
    assert record_after_failure.completed is False
    assert record_after_failure.composite_score is None
    assert outcome is not None
    assert controller.state == SessionState.COMPLETED
    assert len(llm.schema_calls) == 2


def test_stats_failure_is_retried_without_reevaluating(make_controller, llm, stores):
    flaky = FlakyStatsStore(stores.stats)
    controller = make_controller(stats_store=flaky)
    controller.load_question("rca")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("Check whether the drop is global.")
        with pytest.raises(StoreUnavailable):
            await controller.end_session()
        assert controller.state == SessionState.COMPLETED
        assert controller.last_error is not None
        return await controller.end_session()

    outcome = asyncio.run(scenario())

    assert outcome.stats is not None
    assert outcome.stats.total_solved == 1
    assert flaky.calls == 2
    assert len(llm.schema_calls) == 1
    assert controller.last_error is None


# ------------------------
# countdown
# ------------------------
def test_countdown_expiry_finalizes(make_controller, llm, stores):
    controller = make_controller(duration_seconds=5)
    controller.load_question("guesstimate")
    ticks = []
    controller.add_tick_listener(ticks.append)

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("Start with NYC population.")
        await _wait_until_terminal(controller)

    asyncio.run(scenario())

    assert controller.state == SessionState.COMPLETED
    assert ticks == [4, 3, 2, 1, 0]
    assert controller.time_remaining == 0
    assert len(llm.schema_calls) == 1
    record = stores.sessions.get_session("user-1", controller.session_id)
    assert record.completed is True
    assert record.duration_minutes == pytest.approx(5 / 60)


def test_countdown_expiry_without_input_aborts(make_controller, llm):
    controller = make_controller(duration_seconds=3)
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await _wait_until_terminal(controller)

    asyncio.run(scenario())

    assert controller.state == SessionState.ABORTED
    assert llm.schema_calls == []


def test_explicit_end_stops_the_countdown(make_controller, llm):
    controller = make_controller(duration_seconds=50)
    controller.load_question("design")
    ticks = []
    controller.add_tick_listener(ticks.append)

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        await controller.end_session()
        ticks_at_end = len(ticks)
        for _ in range(200):
            await asyncio.sleep(0)
        return ticks_at_end

    ticks_at_end = asyncio.run(scenario())

    assert len(ticks) == ticks_at_end
    assert controller.time_remaining > 0
    assert len(llm.schema_calls) == 1


def test_timeout_racing_explicit_end_evaluates_once(make_controller, llm, session_factory):
    counting = CountingSessionStore(session_factory)
    controller = make_controller(duration_seconds=2, session_store=counting)
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        # explicit end races the last ticks of the countdown
        await asyncio.gather(controller.end_session(), _wait_until_terminal(controller))

    asyncio.run(scenario())

    assert controller.state == SessionState.COMPLETED
    assert len(llm.schema_calls) == 1
    assert len(counting.updates) == 1


# ------------------------
# Active | Finalizing -> Aborted (abandon)
# ------------------------
def test_abandon_after_failed_evaluation_frees_the_user(make_controller, llm, stores):
    llm.evaluations = [GenerationFailure("upstream 503")]
    registry = SessionRegistry(lambda user_id: make_controller(user_id))
    controller = registry.open("user-1")
    controller.load_question("rca")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("Was there a release last week?")
        with pytest.raises(GenerationFailure):
            await controller.end_session()

    asyncio.run(scenario())

    assert controller.state == SessionState.FINALIZING
    with pytest.raises(SessionAlreadyActive):
        registry.open("user-1")

    assert registry.abandon("user-1") is controller
    assert controller.state == SessionState.ABORTED
    assert controller.last_error is None
    # nothing was evaluated, nothing is counted
    assert stores.sessions.get_session("user-1", controller.session_id).completed is False
    assert stores.stats.get_user_stats("user-1") is None
    assert asyncio.run(controller.end_session()) is None

    fresh = registry.open("user-1")
    assert fresh is not controller
    assert fresh.state == SessionState.IDLE


def test_abandon_discards_pending_interviewer_reply(make_controller):
    gated = GatedLLM()
    controller = make_controller(interviewer=InterviewerTurnGenerator(gated))
    controller.load_question("design")

    async def scenario():
        await controller.start()
        pending = asyncio.ensure_future(controller.submit_candidate_turn("Let me think."))
        await _wait_for_call(gated)
        controller.abandon()
        gated.gate.set()
        with pytest.raises(NotReady):
            await pending

    asyncio.run(scenario())

    assert controller.state == SessionState.ABORTED
    assert controller.log.frozen
    assert [t.role for t in controller.turns] == [Role.INTERVIEWER, Role.CANDIDATE]


def test_abandon_refused_while_finalizing(make_controller):
    gated = GatedLLM()
    controller = make_controller(evaluator=EvaluationGateway(gated))
    controller.load_question("design")

    async def scenario():
        await controller.start()
        await controller.submit_candidate_turn("My answer.")
        ending = asyncio.ensure_future(controller.end_session())
        await _wait_for_call(gated)
        with pytest.raises(NotReady):
            controller.abandon()
        gated.gate.set()
        return await ending

    outcome = asyncio.run(scenario())

    assert outcome is not None
    assert controller.state == SessionState.COMPLETED
    # terminal: abandoning afterwards changes nothing
    controller.abandon()
    assert controller.state == SessionState.COMPLETED


def test_abandon_before_start(make_controller):
    controller = make_controller()
    controller.load_question("design")

    controller.abandon()

    assert controller.state == SessionState.ABORTED
    assert controller.session_id is None


def test_zero_duration_is_not_replaced_by_default(make_controller, llm):
    controller = make_controller(duration_seconds=0)
    controller.load_question("design")

    assert controller.duration_seconds == 0
    assert controller.time_remaining == 0

    async def scenario():
        await controller.start()
        await _wait_until_terminal(controller)

    asyncio.run(scenario())

    # expired at once, before any candidate input
    assert controller.state == SessionState.ABORTED
    assert llm.schema_calls == []
