from datetime import datetime

from flowstream.domain.transcript import (
    Speaker,
    TranscriptAggregator,
    TranscriptItem,
    TranscriptionState,
    apply_delta,
    apply_turn_complete,
    begin_recording,
    commit,
    format_transcript,
    replace_item_text,
)


class TestPureTransitions:
    def test_delta_appends_to_buffer(self):
        state = apply_delta(TranscriptionState(), "hel", Speaker.USER)
        state = apply_delta(state, "lo", Speaker.USER)
        assert state.current_text == "hello"
        assert state.history == ()

    def test_speaker_change_commits_prior_buffer(self):
        state = TranscriptionState()
        state = apply_delta(state, "a", Speaker.USER)
        state = apply_delta(state, "b", Speaker.USER)
        state = apply_delta(state, "c", Speaker.SYSTEM)

        assert len(state.history) == 1
        assert state.history[0].text == "ab"
        assert state.history[0].speaker == Speaker.USER
        assert state.current_text == "c"
        assert state.current_speaker == Speaker.SYSTEM

    def test_turn_complete_commits(self):
        state = apply_delta(TranscriptionState(), " hello world ", Speaker.USER)
        state = apply_turn_complete(state, timestamp=123.0)
        assert state.current_text == ""
        item = state.history[0]
        assert item.text == "hello world"
        assert item.is_final
        assert item.timestamp == 123.0

    def test_whitespace_buffer_commits_nothing(self):
        state = TranscriptionState(current_text="  ")
        state = apply_turn_complete(state)
        assert state.history == ()
        assert state.current_text == ""

    def test_empty_commit_keeps_speaker(self):
        state = TranscriptionState(current_speaker=Speaker.SYSTEM)
        assert commit(state).current_speaker == Speaker.SYSTEM

    def test_speaker_change_with_empty_buffer_adds_no_item(self):
        state = apply_delta(TranscriptionState(), "ok", Speaker.SYSTEM)
        assert state.history == ()
        assert state.current_text == "ok"

    def test_transitions_do_not_mutate_input(self):
        original = TranscriptionState(current_text="hi")
        apply_turn_complete(original)
        assert original.current_text == "hi"
        assert original.history == ()

    def test_history_is_append_only(self):
        state = TranscriptionState()
        for speaker, text in [(Speaker.USER, "one"), (Speaker.SYSTEM, "two"), (Speaker.USER, "three")]:
            state = apply_delta(state, text, speaker)
        state = apply_turn_complete(state)
        assert [item.text for item in state.history] == ["one", "two", "three"]

    def test_begin_recording_commits_and_resets_speaker(self):
        state = apply_delta(TranscriptionState(), "pending", Speaker.SYSTEM)
        state = begin_recording(state)
        assert state.history[0].text == "pending"
        assert state.current_speaker == Speaker.USER
        assert state.current_text == ""

    def test_replace_item_text(self):
        state = apply_turn_complete(apply_delta(TranscriptionState(), "raw text", Speaker.USER))
        item_id = state.history[0].id
        state = replace_item_text(state, item_id, "Raw text.")
        assert state.history[0].text == "Raw text."
        assert state.history[0].id == item_id

    def test_items_get_unique_ids(self):
        first = TranscriptItem(text="a", speaker=Speaker.USER)
        second = TranscriptItem(text="a", speaker=Speaker.USER)
        assert first.id != second.id


class TestTranscriptAggregator:
    def test_end_to_end_hello_world(self, aggregator):
        aggregator.on_delta("hello ", Speaker.USER)
        aggregator.on_delta("world", Speaker.USER)
        aggregator.on_turn_complete()

        assert len(aggregator.history) == 1
        item = aggregator.history[0]
        assert item.text == "hello world"
        assert item.speaker == Speaker.USER
        assert item.is_final
        assert aggregator.current_text == ""

    def test_output_delta_switches_to_system(self, aggregator):
        aggregator.on_delta("question", Speaker.USER)
        aggregator.on_delta("ok", Speaker.SYSTEM)

        assert aggregator.history[0].text == "question"
        assert aggregator.current_speaker == Speaker.SYSTEM
        assert aggregator.current_text == "ok"

    def test_whitespace_turn_complete_keeps_history_length(self, aggregator):
        aggregator.on_delta("first", Speaker.USER)
        aggregator.on_turn_complete()
        aggregator.on_delta("  ", Speaker.USER)
        aggregator.on_turn_complete()
        assert len(aggregator.history) == 1

    def test_subscribers_see_every_transition(self, aggregator):
        seen = []
        aggregator.subscribe(lambda state: seen.append(state.current_text))
        aggregator.on_delta("a", Speaker.USER)
        aggregator.on_delta("b", Speaker.USER)
        aggregator.on_turn_complete()
        assert seen == ["a", "ab", ""]

    def test_clear_resets_everything(self, aggregator):
        aggregator.on_delta("a", Speaker.SYSTEM)
        aggregator.on_turn_complete()
        aggregator.on_delta("b", Speaker.SYSTEM)
        aggregator.clear()
        assert aggregator.state == TranscriptionState()

    def test_replace_text_by_id(self, aggregator):
        aggregator.on_delta("draft", Speaker.USER)
        aggregator.on_turn_complete()
        item_id = aggregator.history[0].id
        assert aggregator.replace_text(item_id, "Draft.")
        assert aggregator.find(item_id).text == "Draft."

    def test_replace_text_unknown_id(self, aggregator):
        assert not aggregator.replace_text("missing", "x")


class TestFormatTranscript:
    def test_formats_lines(self):
        timestamp = datetime(2026, 1, 2, 9, 5, 7).timestamp()
        history = [
            TranscriptItem(text="hi", speaker=Speaker.USER, timestamp=timestamp),
            TranscriptItem(text="hello", speaker=Speaker.SYSTEM, timestamp=timestamp),
        ]
        assert format_transcript(history) == "[09:05:07] User: hi\n[09:05:07] System: hello"

    def test_empty_history(self):
        assert format_transcript([]) == ""
