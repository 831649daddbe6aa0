"""Wires agent, coordinator and panel contexts around one router.

The CLI and the TUI both run every context in-process on the same event
loop. Contexts still share nothing but the router.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path

from webinsight.adapters.event_bus import EventBus
from webinsight.engine.agent import PageAgent
from webinsight.engine.capture import ScreenCapturer, StaticScreenCapturer
from webinsight.engine.coordinator import Coordinator
from webinsight.engine.inference import GeminiClient, InferenceClient, OfflineInferenceClient
from webinsight.engine.message_router import MessageRouter
from webinsight.engine.page import PageDocument
from webinsight.engine.panel import PanelController
from webinsight.engine.report import MarkdownReportRenderer
from webinsight.engine.store import ContentStore, InMemoryContentStore, JsonContentStore
from webinsight.engine.yaml_config import WebInsightConfig

logger = logging.getLogger(__name__)


@dataclass
class WebInsightRuntime:
    config: WebInsightConfig
    router: MessageRouter
    coordinator: Coordinator
    panel: PanelController
    bus: EventBus | None = None
    agents: dict[int, PageAgent] = field(default_factory=dict)

    async def start(self, filter_tag_id: int | None = None) -> None:
        self.coordinator.start()
        await self.panel.start(filter_tag_id)

    def open_tab(self, tab_id: int, document: PageDocument) -> PageAgent:
        """Inject an agent into a new tab and make it the active one."""
        agent = PageAgent(self.router, tab_id, document, self.config.engine)
        agent.start()
        self.agents[tab_id] = agent
        self.coordinator.set_active_tab(tab_id)
        return agent

    def close_tab(self, tab_id: int) -> None:
        agent = self.agents.pop(tab_id, None)
        if agent is not None:
            agent.stop()
        if self.coordinator.active_tab_id == tab_id:
            self.coordinator.set_active_tab(next(iter(self.agents), None))

    async def shutdown(self) -> None:
        for tab_id in list(self.agents):
            self.close_tab(tab_id)
        await self.panel.close()
        self.coordinator.stop()
        close = getattr(self.coordinator.inference, "close", None)
        if close is not None:
            await close()
        if self.bus is not None:
            self.bus.close()
        await self.router.close()
        logger.info("Runtime shut down (metrics=%s)", self.router.metrics.snapshot())


def default_inference(config: WebInsightConfig, offline: bool = False) -> InferenceClient:
    if offline or not config.inference.api_key():
        if not offline:
            logger.warning(
                "%s not set; using offline key points", config.inference.api_key_env
            )
        return OfflineInferenceClient()
    return GeminiClient(config.inference)


def build_runtime(
    config: WebInsightConfig,
    store: ContentStore | None = None,
    store_path: Path | None = None,
    inference: InferenceClient | None = None,
    capturer: ScreenCapturer | None = None,
    bus: EventBus | None = None,
    offline: bool = False,
) -> WebInsightRuntime:
    """Assemble a runtime. Only start() needs a running event loop."""
    engine = config.engine
    router = MessageRouter(
        queue_maxsize=engine.queue_size,
        event_callback=bus.make_callback() if bus is not None else None,
    )
    if store is None:
        store = JsonContentStore(store_path) if store_path else InMemoryContentStore()
    coordinator = Coordinator(
        router,
        store,
        inference or default_inference(config, offline),
        MarkdownReportRenderer(Path(engine.reports_dir)),
        capturer or StaticScreenCapturer(),
        engine,
    )
    panel = PanelController(router, engine)
    return WebInsightRuntime(
        config=config, router=router, coordinator=coordinator, panel=panel, bus=bus,
    )
