import logging

import httpx

logger = logging.getLogger(__name__)

GENERATE_ENDPOINT = "https://generativelanguage.googleapis.com/v1beta/models/{model}:generateContent"
REFINE_PROMPT = 'Format and punctuate this text. Keep it professional and verbatim: "{text}"'


def build_refine_prompt(text: str) -> str:
    return REFINE_PROMPT.format(text=text)


def extract_text(data: dict) -> str:
    candidates = data.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts).strip()


class GeminiTextRefiner:
    def __init__(
        self,
        api_key: str,
        model: str = "gemini-3-flash-preview",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._api_key = api_key
        self._model = model
        self._timeout = httpx.Timeout(timeout_seconds)
        self._transport = transport

    async def refine(self, text: str) -> str:
        payload = {"contents": [{"parts": [{"text": build_refine_prompt(text)}]}]}
        headers = {"Content-Type": "application/json", "x-goog-api-key": self._api_key}

        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    GENERATE_ENDPOINT.format(model=self._model),
                    json=payload,
                    headers=headers,
                )
                response.raise_for_status()
                refined = extract_text(response.json())
        except httpx.HTTPStatusError as exc:
            logger.error("Refine failed: HTTP %s", exc.response.status_code)
            return text
        except Exception:
            logger.exception("Refine failed")
            return text

        return refined or text
