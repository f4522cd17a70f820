from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FlowStreamConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="FLOWSTREAM_", populate_by_name=True)

    api_key: str = Field(
        default="",
        validation_alias=AliasChoices("FLOWSTREAM_API_KEY", "GEMINI_API_KEY", "API_KEY"),
    )
    api_key_file: str = ""

    live_endpoint: str = (
        "wss://generativelanguage.googleapis.com/ws/"
        "google.ai.generativelanguage.v1beta.GenerativeService.BidiGenerateContent"
    )
    live_model: str = "gemini-2.5-flash-native-audio-preview-09-2025"
    refine_model: str = "gemini-3-flash-preview"
    refine_timeout_seconds: float = 30.0

    system_instruction: str = (
        "You are a professional voice-to-text transcription engine. "
        "Transcribe spoken words clearly."
    )

    capture_device: str = ""
    sample_rate: int = 16000
    frame_samples: int = 4096

    max_auto_retries: int = 2
    reconnect_delay_seconds: float = 1.0

    socket_path: str = "/tmp/flowstream.sock"
    log_file: str = ""

    def read_secret(self, path: str) -> str:
        if not path:
            return ""
        try:
            with open(path) as f:
                return f.read().strip()
        except FileNotFoundError:
            return ""

    def resolve_api_key(self) -> str:
        return self.api_key.strip() or self.read_secret(self.api_key_file)
