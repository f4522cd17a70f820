import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from time import time

logger = logging.getLogger(__name__)


class Speaker(Enum):
    USER = "user"
    SYSTEM = "system"


@dataclass(frozen=True)
class TranscriptItem:
    text: str
    speaker: Speaker
    timestamp: float = field(default_factory=time)
    is_final: bool = True
    id: str = field(default_factory=lambda: str(uuid.uuid4()))


@dataclass(frozen=True)
class TranscriptionState:
    current_text: str = ""
    current_speaker: Speaker = Speaker.USER
    history: tuple[TranscriptItem, ...] = ()


def commit(state: TranscriptionState, timestamp: float | None = None) -> TranscriptionState:
    text = state.current_text.strip()
    if not text:
        return replace(state, current_text="")
    item = TranscriptItem(
        text=text,
        speaker=state.current_speaker,
        timestamp=time() if timestamp is None else timestamp,
        is_final=True,
    )
    return replace(state, current_text="", history=state.history + (item,))


def apply_delta(
    state: TranscriptionState,
    text: str,
    speaker: Speaker,
    timestamp: float | None = None,
) -> TranscriptionState:
    if speaker != state.current_speaker:
        state = replace(commit(state, timestamp), current_speaker=speaker)
    return replace(state, current_text=state.current_text + text)


def apply_turn_complete(
    state: TranscriptionState, timestamp: float | None = None
) -> TranscriptionState:
    return commit(state, timestamp)


def begin_recording(state: TranscriptionState) -> TranscriptionState:
    return replace(commit(state), current_speaker=Speaker.USER)


def replace_item_text(
    state: TranscriptionState, item_id: str, text: str
) -> TranscriptionState:
    history = tuple(
        replace(item, text=text) if item.id == item_id else item
        for item in state.history
    )
    return replace(state, history=history)


StateListener = Callable[[TranscriptionState], None]


class TranscriptAggregator:
    """Single owner of the transcript state.

    Every mutation goes through one of the pure transitions above; subscribers
    are notified with the new state after each one.
    """

    def __init__(self, state: TranscriptionState | None = None) -> None:
        self._state = state or TranscriptionState()
        self._listeners: list[StateListener] = []

    @property
    def state(self) -> TranscriptionState:
        return self._state

    @property
    def current_text(self) -> str:
        return self._state.current_text

    @property
    def current_speaker(self) -> Speaker:
        return self._state.current_speaker

    @property
    def history(self) -> tuple[TranscriptItem, ...]:
        return self._state.history

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def on_delta(self, text: str, speaker: Speaker) -> None:
        self._set_state(apply_delta(self._state, text, speaker))

    def on_turn_complete(self) -> None:
        self._set_state(apply_turn_complete(self._state))

    def begin_recording(self) -> None:
        self._set_state(begin_recording(self._state))

    def clear(self) -> None:
        self._set_state(TranscriptionState())
        logger.info("Transcript cleared")

    def find(self, item_id: str) -> TranscriptItem | None:
        for item in self._state.history:
            if item.id == item_id:
                return item
        return None

    def replace_text(self, item_id: str, text: str) -> bool:
        if self.find(item_id) is None:
            return False
        self._set_state(replace_item_text(self._state, item_id, text))
        return True

    def _set_state(self, new_state: TranscriptionState) -> None:
        previous_count = len(self._state.history)
        self._state = new_state
        for item in new_state.history[previous_count:]:
            logger.info("Committed [%s]: %s", item.speaker.name, item.text)
        for listener in self._listeners:
            listener(new_state)


def format_transcript(history: tuple[TranscriptItem, ...] | list[TranscriptItem]) -> str:
    lines = []
    for item in history:
        stamp = datetime.fromtimestamp(item.timestamp).strftime("%H:%M:%S")
        label = "User" if item.speaker == Speaker.USER else "System"
        lines.append(f"[{stamp}] {label}: {item.text}")
    return "\n".join(lines)
