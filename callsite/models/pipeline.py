"""Options accepted by a single pipeline run."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class PipelineOptions(BaseModel):
    """Per-run flags for the ``scip-callgraph`` pipeline.

    ``None`` for the two skip flags means "use the configured default".

    Attributes:
        skip_verification: Skip Verus verification (faster, no status).
        skip_similar_lemmas: Skip similar-lemma enrichment.
        use_cached_scip: Reuse cached SCIP data if available.
        package: Package name for Cargo workspaces.
        github_url: Base URL for source links.
    """

    skip_verification: Optional[bool] = Field(None, description="Pass --skip-verification.")
    skip_similar_lemmas: Optional[bool] = Field(None, description="Pass --skip-similar-lemmas.")
    use_cached_scip: bool = Field(False, description="Pass --use-cached-scip.")
    package: Optional[str] = Field(None, description="Pass -p <package>.")
    github_url: Optional[str] = Field(None, description="Pass --github-url <url>.")
