import logging
from dataclasses import dataclass

import sounddevice as sd

from flowstream.config import FlowStreamConfig

logger = logging.getLogger(__name__)


@dataclass
class HealthCheckResult:
    name: str
    passed: bool
    detail: str


def run_startup_checks(config: FlowStreamConfig) -> list[HealthCheckResult]:
    results = [
        _check_audio_device(config),
        _check_api_key(config),
    ]

    passed = sum(1 for r in results if r.passed)

    logger.info("Health check: %d/%d passed", passed, len(results))
    for result in results:
        level = logging.INFO if result.passed else logging.WARNING
        symbol = "OK" if result.passed else "FAIL"
        logger.log(level, "  [%s] %s: %s", symbol, result.name, result.detail)

    return results


def has_critical_failures(results: list[HealthCheckResult]) -> bool:
    critical_checks = {"audio_device"}
    return any(not r.passed and r.name in critical_checks for r in results)


def _check_audio_device(config: FlowStreamConfig) -> HealthCheckResult:
    name = "audio_device"
    try:
        if config.capture_device:
            for dev in sd.query_devices():
                if config.capture_device.lower() in dev["name"].lower() and dev["max_input_channels"] > 0:
                    return HealthCheckResult(name=name, passed=True, detail=f"Device '{dev['name']}' found")
            return HealthCheckResult(
                name=name, passed=False, detail=f"No input device matching '{config.capture_device}'"
            )

        default = sd.query_devices(kind="input")
        return HealthCheckResult(name=name, passed=True, detail=f"Default input: {default['name']}")
    except sd.PortAudioError:
        return HealthCheckResult(name=name, passed=False, detail="No input devices available")
    except Exception as exc:
        return HealthCheckResult(name=name, passed=False, detail=str(exc))


def _check_api_key(config: FlowStreamConfig) -> HealthCheckResult:
    name = "api_key"
    if config.resolve_api_key():
        return HealthCheckResult(name=name, passed=True, detail="API key loaded")
    source = config.api_key_file or "FLOWSTREAM_API_KEY / GEMINI_API_KEY / API_KEY"
    return HealthCheckResult(name=name, passed=False, detail=f"Missing ({source})")
