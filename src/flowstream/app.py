import logging
from typing import Any

from flowstream.domain.errors import ClassifiedError
from flowstream.domain.recording import ReconnectionController
from flowstream.domain.transcript import TranscriptAggregator, TranscriptionState, format_transcript
from flowstream.ports.control import ControlCommand
from flowstream.ports.refiner import TextRefinerPort

logger = logging.getLogger(__name__)


class TranscriberApp:
    """User-facing actions on top of the recording controller and the transcript."""

    def __init__(
        self,
        controller: ReconnectionController,
        aggregator: TranscriptAggregator,
        refiner: TextRefinerPort,
    ) -> None:
        self._controller = controller
        self._aggregator = aggregator
        self._refiner = refiner
        self._refining = False
        self._last_live_text = ""

        aggregator.subscribe(self._render_live)
        controller.subscribe_errors(self._render_error)

    @property
    def refining(self) -> bool:
        return self._refining

    async def start(self) -> bool:
        return await self._controller.start_recording()

    async def stop(self) -> None:
        await self._controller.stop_recording()

    async def toggle(self) -> bool:
        return await self._controller.toggle()

    def retry(self) -> None:
        self._controller.acknowledge_error()

    def clear(self) -> None:
        self._aggregator.clear()

    def export(self) -> str:
        return format_transcript(self._aggregator.history)

    async def refine_item(self, item_id: str) -> str | None:
        if self._refining:
            logger.warning("Refine already in progress")
            return None
        item = self._aggregator.find(item_id)
        if item is None:
            logger.warning("No transcript item with id %s", item_id)
            return None

        self._refining = True
        try:
            refined = await self._refiner.refine(item.text)
        finally:
            self._refining = False

        self._aggregator.replace_text(item_id, refined)
        logger.info("Refined %s: %s", item_id, refined)
        return refined

    def status(self) -> dict[str, Any]:
        state = self._aggregator.state
        error = self._controller.last_error
        return {
            "status": self._controller.status.name,
            "retry_count": self._controller.retry_count,
            "reconnect_pending": self._controller.reconnect_pending,
            "error": _error_to_dict(error) if error else None,
            "current_speaker": state.current_speaker.name,
            "current_text": state.current_text,
            "history": [
                {
                    "id": item.id,
                    "speaker": item.speaker.name,
                    "text": item.text,
                    "timestamp": item.timestamp,
                    "is_final": item.is_final,
                }
                for item in state.history
            ],
            "refining": self._refining,
        }

    async def handle(self, command: ControlCommand) -> dict[str, Any]:
        action = command.action
        payload = command.payload or {}

        if action == "start":
            started = await self.start()
            return {"status": "ok" if started else "blocked", "recording": self._controller.status.name}
        if action == "stop":
            await self.stop()
            return {"status": "ok", "recording": self._controller.status.name}
        if action == "toggle":
            await self.toggle()
            return {"status": "ok", "recording": self._controller.status.name}
        if action == "retry":
            self.retry()
            return {"status": "ok", "recording": self._controller.status.name}
        if action == "clear":
            self.clear()
            return {"status": "ok"}
        if action == "export":
            return {"status": "ok", "transcript": self.export()}
        if action == "status":
            return {"status": "ok", "state": self.status()}
        if action == "refine":
            item_id = payload.get("id", "")
            refined = await self.refine_item(item_id)
            if refined is None:
                return {"status": "error", "message": f"Cannot refine item {item_id!r}"}
            return {"status": "ok", "id": item_id, "text": refined}

        return {"status": "error", "message": f"Unknown action: {action}"}

    def _render_live(self, state: TranscriptionState) -> None:
        if state.current_text and state.current_text != self._last_live_text:
            logger.info("Live: [%s] %s", state.current_speaker.name, state.current_text)
        self._last_live_text = state.current_text

    def _render_error(self, error: ClassifiedError) -> None:
        title = {
            "NETWORK": "Connection issue",
            "QUOTA": "Limit reached",
        }.get(error.kind.name, "System error")
        logger.warning("%s: %s", title, error.message)


def _error_to_dict(error: ClassifiedError) -> dict[str, Any]:
    return {"kind": error.kind.name, "message": error.message}
