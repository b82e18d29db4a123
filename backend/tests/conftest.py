"""Shared fixtures: a scriptable in-memory provider and pipeline wiring."""

import base64
import io

import pytest
from PIL import Image

from screencoder.core.config import AppConfig
from screencoder.services.llm.base import LLMProvider
from screencoder.services.llm.models import (
    ChatResult,
    DefaultModels,
    ModelInfo,
    ProviderDescriptor,
    ScreenshotData,
    SetupInstructions,
)
from screencoder.services.llm.orchestrator import ProcessingPipeline
from screencoder.services.llm.registry import ProviderRegistry


EXTRACTION_JSON = (
    '{"problem_statement": "Reverse a linked list.", "constraints": "n <= 5000", '
    '"example_input": "1->2->3", "example_output": "3->2->1"}'
)

SOLUTION_MARKDOWN = """### Code
```java
class Solution { }
```

### Thoughts
- Iterate once and flip pointers

### Time complexity
O(n) - one pass

### Space complexity
O(1) - constant pointers
"""


class FakeProvider(LLMProvider):
    """Provider whose chat answers come from a test-supplied async handler."""

    provider_id = "fake"
    descriptor = ProviderDescriptor(
        id="fake",
        display_name="Fake",
        is_free=True,
        color_hint="gray",
        requires_api_key=False,
        setup_instructions=SetupInstructions(
            signup_url="https://example.com", description="In-memory test backend"
        ),
    )
    builtin_models = DefaultModels(
        extraction="fake-vision", solution="fake-coder", debugging="fake-debugger"
    )

    def __init__(self, config, handler=None, requires_key=False, key_valid=True):
        super().__init__(config)
        self.handler = handler
        self.key_valid = key_valid
        self.calls = []
        if requires_key:
            self.descriptor = self.descriptor.model_copy(update={"requires_api_key": True})

    def get_static_models(self):
        return [ModelInfo(id="fake-coder", name="Fake Coder")]

    async def _fetch_models(self):
        return self.get_static_models()

    async def _check_credentials(self):
        return self.key_valid

    async def chat(self, messages, model_id, options=None):
        self.calls.append((messages, model_id, options))
        return ChatResult(content=await self.handler(messages, model_id))


def is_extraction(messages) -> bool:
    from screencoder.services.llm import prompts

    return messages[0].content == prompts.EXTRACT_SYSTEM_PROMPT


async def default_handler(messages, model_id):
    if is_extraction(messages):
        return EXTRACTION_JSON
    return SOLUTION_MARKDOWN


class PipelineHarness:
    """A pipeline wired to FakeProviders, recording every sink call."""

    def __init__(self, handler=default_handler, requires_key=False, key_valid=True, api_key=""):
        self.handler = handler
        self.providers: list[FakeProvider] = []
        self.progress = []
        self.events = []

        def factory(config):
            provider = FakeProvider(
                config,
                handler=lambda m, model: self.handler(m, model),
                requires_key=requires_key,
                key_valid=key_valid,
            )
            self.providers.append(provider)
            return provider

        self.registry = ProviderRegistry({"fake": factory})
        self.pipeline = ProcessingPipeline(
            AppConfig(provider_id="fake", api_key=api_key),
            registry=self.registry,
            progress_sink=self.progress.append,
            result_sink=self.events.append,
        )

    @property
    def provider(self) -> FakeProvider:
        return self.providers[0]

    @property
    def event_kinds(self):
        return [e.kind for e in self.events]


@pytest.fixture
def harness():
    return PipelineHarness()


def make_png(color=(255, 255, 255), size=(8, 8)) -> bytes:
    buffer = io.BytesIO()
    Image.new("RGB", size, color).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def screenshots():
    data = base64.b64encode(make_png()).decode("ascii")
    return [ScreenshotData(path="shot-1.png", base64_data=data)]
