"""Fakes and payload builders shared by the unit and e2e tests."""

import base64
import json
from collections import defaultdict, deque

JPEG_MAGIC = b"\xff\xd8\xff\xe0"
PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
WEBP_HEADER = b"RIFF\x00\x00\x00\x00WEBPVP8 "

DEFAULT_MEAL_REPLY = json.dumps({
    "mealSummary": "Grilled chicken salad with olive oil",
    "ingredients": [
        {"name": "Chicken", "isOrganic": False},
        {"name": " lettuce ", "isOrganic": True},
        {"name": "LETTUCE", "isOrganic": False},
        {"name": "olive oil", "isOrganic": False},
    ],
})

class FakeClock:
    """Controllable epoch-seconds clock."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start

    def now(self) -> float:
        return self.current

    def advance(self, seconds: float):
        self.current += seconds

def zone_all_green(messages) -> str:
    """Zoning reply that classifies every input name as green."""
    content = messages[0]["content"]
    names = json.loads(content.rsplit("Input: ", 1)[1])
    return json.dumps({
        "ingredients": [
            {"name": name, "zone": "green", "category": "whole food", "group": "test"}
            for name in names
        ]
    })

class ScriptedInferenceClient:
    """
    Stands in for OpenRouterClient.

    Replies queued per service are used first (strings are returned,
    exceptions raised); afterwards the default responder answers.
    """

    def __init__(self, configured: bool = True):
        self.configured = configured
        self.calls = []
        self._scripts = defaultdict(deque)
        self.defaults = {
            "image-analysis": lambda messages: DEFAULT_MEAL_REPLY,
            "ingredient-zoning": zone_all_green,
        }

    def queue(self, service: str, *replies):
        self._scripts[service].extend(replies)

    def calls_for(self, service: str):
        return [call for call in self.calls if call["service"] == service]

    async def complete(self, service, model, messages, max_tokens=1024, temperature=0.1, response_format=None):
        self.calls.append({"service": service, "model": model, "messages": messages})
        script = self._scripts[service]
        reply = script.popleft() if script else self.defaults[service](messages)
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def aclose(self):
        pass

def data_url(mime_type: str, data: bytes) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('ascii')}"

def jpeg_bytes(size: int) -> bytes:
    return JPEG_MAGIC + b"\x00" * max(0, size - len(JPEG_MAGIC))

