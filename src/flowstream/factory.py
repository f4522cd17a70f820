import logging

from flowstream.adapters.gemini_live import GeminiLiveTransport
from flowstream.adapters.gemini_refiner import GeminiTextRefiner
from flowstream.adapters.sounddevice_audio import SounddeviceAudioSource
from flowstream.adapters.unix_control import UnixSocketControlServer
from flowstream.app import TranscriberApp
from flowstream.config import FlowStreamConfig
from flowstream.domain.recording import ReconnectionController
from flowstream.domain.session import StreamingSessionManager
from flowstream.domain.transcript import TranscriptAggregator
from flowstream.ports.transport import LiveSessionSetup

logger = logging.getLogger(__name__)


def create_audio_source(config: FlowStreamConfig) -> SounddeviceAudioSource:
    return SounddeviceAudioSource(
        device=config.capture_device or None,
        sample_rate=config.sample_rate,
        frame_samples=config.frame_samples,
    )


def create_live_setup(config: FlowStreamConfig) -> LiveSessionSetup:
    return LiveSessionSetup(
        model=config.live_model,
        system_instruction=config.system_instruction,
        sample_rate=config.sample_rate,
    )


def create_session_manager(config: FlowStreamConfig, api_key: str) -> StreamingSessionManager:
    setup = create_live_setup(config)
    return StreamingSessionManager(
        api_key=api_key,
        audio_factory=lambda: create_audio_source(config),
        transport_factory=lambda: GeminiLiveTransport(
            api_key=api_key,
            setup=setup,
            endpoint=config.live_endpoint,
        ),
    )


def create_app(config: FlowStreamConfig) -> tuple[TranscriberApp, ReconnectionController]:
    api_key = config.resolve_api_key()
    if not api_key:
        logger.warning("No API key found, recording will fail until one is configured")

    aggregator = TranscriptAggregator()
    controller = ReconnectionController(
        manager=create_session_manager(config, api_key),
        aggregator=aggregator,
        max_auto_retries=config.max_auto_retries,
        reconnect_delay_seconds=config.reconnect_delay_seconds,
    )
    refiner = GeminiTextRefiner(
        api_key=api_key,
        model=config.refine_model,
        timeout_seconds=config.refine_timeout_seconds,
    )
    return TranscriberApp(controller=controller, aggregator=aggregator, refiner=refiner), controller


def create_control_server(config: FlowStreamConfig) -> UnixSocketControlServer:
    return UnixSocketControlServer(socket_path=config.socket_path)
