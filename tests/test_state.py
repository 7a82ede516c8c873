from contextualiser.state import (
    NextStep,
    REDUCERS,
    add_tokens,
    append_notes,
    build_response,
    create_state,
    join_annotations,
    merge_state,
    ordered_union,
    settle_queues,
)


def test_ordered_union_keeps_first_seen_order():
    assert ordered_union(["a", "b"], ["c", "a", "d", "c"]) == ["a", "b", "c", "d"]
    assert ordered_union(None, None) == []


def test_append_notes_keeps_one_entry_per_chunk():
    first = {"chunk_id": "c1", "content": "x", "reason": "r"}
    again = {"chunk_id": "c1", "content": "other", "reason": "r"}
    second = {"chunk_id": "c2", "content": "y", "reason": "r"}

    merged = append_notes([first], [again, second])

    assert merged == [first, second]


def test_join_annotations_skips_text_already_present():
    assert join_annotations("", "a") == "a"
    assert join_annotations("a", "b") == "a\nb"
    assert join_annotations("a\nb", "b") == "a\nb"
    assert join_annotations("a", "") == "a"


def test_add_tokens_sums_both_counters():
    assert add_tokens({"input": 1, "output": 2}, {"input": 10, "output": 20}) == {"input": 11, "output": 22}
    assert add_tokens(None, {"input": 3}) == {"input": 3, "output": 0}


def test_reducers_cover_accumulating_fields_only():
    assert set(REDUCERS) == {
        "processed_key_concepts",
        "processed_chunks",
        "processed_atomic_facts",
        "notebook",
        "annotations",
        "status",
        "ontology",
        "tokens",
    }


def test_create_state_defaults():
    state = create_state("Why?", preselected_chunks=["c1", "c2", "c1"])

    assert state["hops"] == 0
    assert state["chunk_level"] == 0
    assert state["queued_chunks"] == ["c1", "c2"]
    assert state["tokens"] == {"input": 0, "output": 0}
    assert state["next_step"] == NextStep.RATIONAL_PLAN
    assert not state["neighbouring_already_explored"]


def test_merge_state_returns_new_state():
    state = create_state("Why?")
    merged = merge_state(state, {"hops": 1, "processed_chunks": ["c1"], "tokens": {"input": 4, "output": 2}})

    assert merged["hops"] == 1
    assert merged["processed_chunks"] == ["c1"]
    assert merged["tokens"] == {"input": 4, "output": 2}
    assert state["hops"] == 0
    assert state["processed_chunks"] == []


def test_merge_state_never_shrinks_processed_sets():
    state = merge_state(create_state("Why?"), {"processed_key_concepts": ["a", "b"]})
    merged = merge_state(state, {"processed_key_concepts": ["b", "c"]})

    assert merged["processed_key_concepts"] == ["a", "b", "c"]


def test_settle_queues_drops_processed_items():
    state = create_state("Why?")
    state["processed_chunks"] = ["c1"]

    settled = settle_queues(state, {"queued_chunks": ["c1", "c2", "c2"], "processed_chunks": ["c3"]})

    assert settled["queued_chunks"] == ["c2"]


def test_settle_queues_trims_untouched_queue_when_processed_grows():
    state = create_state("Why?")
    state["queued_key_concepts"] = ["tide", "moon"]

    settled = settle_queues(state, {"processed_key_concepts": ["moon"]})

    assert settled["queued_key_concepts"] == ["tide"]
    assert "queued_chunks" not in settled


def test_build_response_collects_evidence():
    state = create_state("Why?")
    state.update({
        "rational_plan": "plan",
        "annotations": "note",
        "notebook": [{"chunk_id": "c1", "content": "x", "reason": "y"}],
        "processed_chunks": ["c1"],
        "processed_key_concepts": ["tide"],
        "processed_atomic_facts": ["f1"],
        "hops": 4,
    })

    response = build_response(state)

    assert response["processed_elements"] == {"chunks": ["c1"], "key_concepts": ["tide"], "atomic_facts": ["f1"]}
    assert response["notebook"][0]["chunk_id"] == "c1"
    assert response["hops"] == 4
