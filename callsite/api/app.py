"""FastAPI application factory and lifespan management."""

from __future__ import annotations

import asyncio
import pathlib
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from callsite import __version__
from callsite.api.index_routes import index_router
from callsite.api.pipeline_routes import pipeline_router
from callsite.config import Settings, settings
from callsite.core.index_manager import IndexManager
from callsite.core.watcher import SourceWatcher, on_loop
from callsite.logging import setup_logging
from callsite.pipeline.supervisor import PipelineSupervisor


def create_app(
    config: Settings | None = None,
    index_manager: IndexManager | None = None,
    supervisor: PipelineSupervisor | None = None,
) -> FastAPI:
    """Build and return the configured FastAPI application.

    The index manager and supervisor are created inside the lifespan
    unless supplied, and are exposed as ``app.state.index_manager`` and
    ``app.state.supervisor``.

    Args:
        config: Settings; defaults to :data:`callsite.config.settings`.
        index_manager: Pre-built manager (tests inject one with a fake
            watcher).
        supervisor: Pre-built supervisor.

    Returns:
        A fully wired :class:`FastAPI` instance.
    """
    config = config or settings

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        setup_logging(config.log_level, json_logs=config.log_json)
        root = supervisor.project_root if supervisor else pathlib.Path(config.project_root).resolve()
        manager = index_manager or (supervisor.index_manager if supervisor else IndexManager(config))
        runner = supervisor or PipelineSupervisor(root, manager, config)

        source_watcher = None
        if config.auto_regenerate_on_save:
            trigger = on_loop(asyncio.get_running_loop(), runner.trigger_debounced)
            source_watcher = SourceWatcher(
                root,
                on_change=lambda _path: trigger(),
                patterns=config.watch_patterns,
                blacklist=config.watch_blacklist,
            )
            source_watcher.start()

        app.state.project_root = root
        app.state.index_manager = manager
        app.state.supervisor = runner
        try:
            yield
        finally:
            if source_watcher is not None:
                source_watcher.stop()
            await runner.shutdown()
            manager.clear()

    app = FastAPI(
        title=config.app_name,
        version=__version__,
        description=(
            "Callsite keeps a live, multi-keyed index over the call graph "
            "produced by scip-callgraph and supervises regeneration runs of "
            "the pipeline."
        ),
        lifespan=lifespan,
    )
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_methods=["*"],
            allow_headers=["*"],
        )
    app.include_router(index_router, tags=["Index"])
    app.include_router(pipeline_router, tags=["Pipeline"])
    return app


app = create_app()
