from typing import Protocol


class TextRefinerPort(Protocol):
    async def refine(self, text: str) -> str: ...
