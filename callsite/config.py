"""Application-wide configuration and settings.

Uses ``pydantic-settings`` so values can be overridden via environment
variables prefixed with ``CALLSITE_``.
"""

from __future__ import annotations

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Global settings for the Callsite index service.

    Attributes:
        app_name: Display name of the application.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_json: Emit JSON log lines instead of the console format.
        cors_origins: Browser origins allowed to call the HTTP API.  Empty
            disables CORS.
        project_root: Project whose call graph the HTTP API serves.
        index_path: Custom location of the call-graph JSON file.  Absolute,
            or relative to the project root.  Empty means the default
            ``.vscode/call_graph_index.json``.
        pipeline_repo_path: Local checkout of ``scip-callgraph``.  When set,
            the pipeline is run from there (release binary or ``cargo run``).
        pipeline_command: Command used when no checkout is configured.
        skip_verification: Pass ``--skip-verification`` unless overridden.
        skip_similar_lemmas: Pass ``--skip-similar-lemmas`` unless overridden.
        pipeline_timeout_s: Hard ceiling for one pipeline run; ``0`` disables.
        auto_regenerate_on_save: Re-run the pipeline when sources change.
        debounce_delay_ms: Quiet period before an automatic run starts.
        watch_patterns: Gitwildmatch patterns of sources that trigger a run.
        watch_blacklist: Patterns excluded from source watching.
        output_buffer_lines: Pipeline output lines retained for display.
        diagnostic_tail_lines: Output lines attached to a failed run.
    """

    app_name: str = "Callsite"
    log_level: str = "INFO"
    log_json: bool = False
    cors_origins: list[str] = []
    project_root: str = "."

    # Index location
    index_path: str = ""

    # External pipeline
    pipeline_repo_path: str = ""
    pipeline_command: str = "pipeline"
    skip_verification: bool = False
    skip_similar_lemmas: bool = True
    pipeline_timeout_s: float = 1800.0

    # Auto-regeneration
    auto_regenerate_on_save: bool = False
    debounce_delay_ms: int = 3000
    watch_patterns: list[str] = ["*.rs"]
    watch_blacklist: list[str] = [
        ".git",
        "target",
        "node_modules",
        ".vscode",
    ]

    # Output capture
    output_buffer_lines: int = 2000
    diagnostic_tail_lines: int = 40

    model_config = {"env_prefix": "CALLSITE_", "env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}


settings = Settings()
