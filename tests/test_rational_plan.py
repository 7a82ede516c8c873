import asyncio

from contextualiser.nodes import plan_rationally
from contextualiser.schemas import RationalPlan
from contextualiser.state import NextStep


def test_plan_is_stored_and_key_concepts_follow(tools, scorer, make_state):
    scorer.script(RationalPlan, RationalPlan(status="Planning", rational_plan="1. Find the moon. 2. Read."))

    output = asyncio.run(plan_rationally(make_state(), tools))

    assert output.update["rational_plan"] == "1. Find the moon. 2. Read."
    assert output.update["next_step"] == NextStep.KEY_CONCEPTS
    assert output.update["hops"] == 1
    assert output.update["status"] == ["Planning"]
    assert [event.message for event in output.events] == ["Planning"]
    assert scorer.calls_for(RationalPlan) == [{"question": "What drives tides?"}]


def test_previous_analysis_is_passed_along(tools, scorer, make_state):
    scorer.script(RationalPlan, RationalPlan(status="Planning", rational_plan="plan"))

    asyncio.run(plan_rationally(make_state(previous_analysis="Tides follow the moon."), tools))

    [params] = scorer.calls_for(RationalPlan)
    assert params["analysis"] == "Tides follow the moon."


def test_hop_guard_forces_answer(tools, scorer, make_state):
    output = asyncio.run(plan_rationally(make_state(hops=16, queued_key_concepts=["moon"]), tools))

    assert output.update["next_step"] == NextStep.ANSWER
    assert output.update["queued_key_concepts"] == []
    assert output.update["hops"] == 17
    assert scorer.calls == []
