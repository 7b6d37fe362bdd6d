"""Marketplace quotation pipeline for public-tender items."""

from .config import ProviderConfig, ProviderDescriptor, WebSearchConfig
from .errors import BlockedByPortalError, HivemindError, PipelineAborted, ProviderError
from .orchestrator import Pipeline, PipelineDeps, PipelineResult, run_pipeline
from .pipeline_types import DefenseReport, GoldIdentity, JudgedCandidate, MatchStatus, TenderItem
from .worker import ItemOutcome, process_items

__all__ = [
    "BlockedByPortalError",
    "DefenseReport",
    "GoldIdentity",
    "HivemindError",
    "ItemOutcome",
    "JudgedCandidate",
    "MatchStatus",
    "Pipeline",
    "PipelineAborted",
    "PipelineDeps",
    "PipelineResult",
    "ProviderConfig",
    "ProviderDescriptor",
    "ProviderError",
    "TenderItem",
    "WebSearchConfig",
    "process_items",
    "run_pipeline",
]
