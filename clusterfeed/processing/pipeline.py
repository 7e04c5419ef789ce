"""
Cluster Orchestrator
===================

Drives each cluster end to end::

    read sources → resolve → fetch all → (no items? skip) → merge → build → write

Source-level failures cost only that source's items; cluster-level failures
(missing input, nothing fetched) skip the cluster and the run moves on.
Only the absence of any cluster to work on is fatal, and that is raised by
``discover_clusters`` before any work starts.
"""

import time
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Sequence

from ..config.settings import ClusterFeedSettings, OutputSettings, get_settings
from ..delivery.output_builder import OutputBuilder, render, write_atomic
from ..ingestion.fetcher import FetchExecutor, FetchResult
from ..ingestion.resolver import PlaceholderResolver, read_source_lines
from ..models import Cluster, SourceSpec
from ..utils.exceptions import (
    ClusterError,
    ClusterFeedError,
    ConfigurationError,
    ErrorCode,
    handle_exception,
)
from ..utils.logging import PerformanceLogger, get_logger_for_component
from .merge import MergeEngine


class ClusterStatus(str, Enum):
    """How a cluster run ended."""
    WRITTEN = "written"
    MISSING_INPUT = "missing_input"
    UNREADABLE_INPUT = "unreadable_input"
    EMPTY = "empty"
    FAILED = "failed"


@dataclass
class ClusterOutcome:
    """Summary of one cluster run."""
    cluster: Cluster
    status: ClusterStatus
    sources_total: int = 0
    sources_resolved: int = 0
    sources_fetched: int = 0
    item_count: int = 0
    fetch_attempts: int = 0
    rejections: Dict[str, int] = field(default_factory=dict)
    error: Optional[str] = None
    duration: float = 0.0

    @property
    def written(self) -> bool:
        return self.status == ClusterStatus.WRITTEN


def discover_clusters(
    settings: Optional[OutputSettings] = None, names: Optional[Iterable[str]] = None
) -> List[Cluster]:
    """Find the clusters to run.

    Every source list in the input directory is a cluster, unless ``names``
    selects clusters explicitly; an explicitly named cluster whose input file
    does not exist is still returned and later skipped.

    Raises:
        ConfigurationError: If the input directory does not exist
        ClusterError: If no cluster could be discovered
    """
    settings = settings or get_settings().output
    input_dir = Path(settings.input_dir)

    if not input_dir.is_dir():
        raise ConfigurationError(
            f"Input directory not found: {input_dir}",
            config_key="output.input_dir",
            error_code=ErrorCode.CONFIG_MISSING,
        )

    names = [n.strip() for n in names or () if n and n.strip()]
    if not names:
        names = sorted(
            p.stem for p in input_dir.iterdir()
            if p.is_file() and p.suffix == settings.input_suffix
        )

    if not names:
        raise ClusterError(
            f"No clusters found in {input_dir} (expected *{settings.input_suffix} files)",
            error_code=ErrorCode.CLUSTER_NONE_DISCOVERED,
            recoverable=False,
        )

    output_dir = Path(settings.output_dir)
    titles_dir = Path(settings.titles_dir) if settings.titles_dir else None

    return [
        Cluster(
            name=name,
            input_path=input_dir / f"{name}{settings.input_suffix}",
            output_path=output_dir / f"{name}.xml",
            title_path=(titles_dir / f"{name}.txt") if titles_dir else None,
        )
        for name in names
    ]


class ClusterOrchestrator:
    """Run clusters sequentially, fetching each cluster's sources concurrently."""

    def __init__(
        self,
        settings: Optional[ClusterFeedSettings] = None,
        executor: Optional[FetchExecutor] = None,
        builder: Optional[OutputBuilder] = None,
    ):
        """Initialize orchestrator.

        Args:
            settings: Explicit settings instead of the global instance
            executor: Fetch executor shared by every cluster
            builder: Output builder
        """
        self.settings = settings or get_settings()
        self.executor = executor or FetchExecutor(settings=self.settings)
        self.builder = builder or OutputBuilder(self.settings.output)
        self.logger = get_logger_for_component("orchestrator")

    async def run(self, clusters: Sequence[Cluster], session=None) -> List[ClusterOutcome]:
        """Run every cluster; one cluster's failure never stops the next.

        Args:
            clusters: Clusters to run, in order
            session: HTTP session to reuse; a new one is opened when omitted
        """
        if session is None:
            async with self.executor.get_session() as own_session:
                return await self._run_all(clusters, own_session)
        return await self._run_all(clusters, session)

    async def _run_all(self, clusters: Sequence[Cluster], session) -> List[ClusterOutcome]:
        outcomes = []
        for cluster in clusters:
            start = time.monotonic()
            try:
                outcome = await self.run_cluster(cluster, session)
            except Exception as e:
                error = handle_exception(
                    e, self.logger.bind(cluster=cluster.name), "run_cluster",
                    context={"cluster": cluster.name},
                )
                outcome = ClusterOutcome(cluster=cluster, status=ClusterStatus.FAILED, error=str(error))
            outcome.duration = time.monotonic() - start
            outcomes.append(outcome)

        counts = Counter(o.status.value for o in outcomes)
        self.logger.info(
            f"Run complete: {counts.get(ClusterStatus.WRITTEN.value, 0)}/{len(outcomes)} clusters written",
            extra={"outcomes": dict(counts)},
        )
        return outcomes

    async def run_cluster(self, cluster: Cluster, session) -> ClusterOutcome:
        """Run one cluster through every stage."""
        logger = self.logger.bind(cluster=cluster.name)

        with PerformanceLogger(logger, f"cluster {cluster.name}"):
            try:
                sources = self.read_sources(cluster)
            except ClusterError as e:
                logger.error(f"Skipping cluster: {e}", extra=e.to_dict())
                status = (
                    ClusterStatus.MISSING_INPUT
                    if e.error_code == ErrorCode.CLUSTER_INPUT_MISSING
                    else ClusterStatus.UNREADABLE_INPUT
                )
                return ClusterOutcome(cluster=cluster, status=status, error=str(e))

            resolver = PlaceholderResolver(self.settings.origin, cluster=cluster.name)
            resolved = resolver.resolve_all(sources)
            outcome = ClusterOutcome(
                cluster=cluster,
                status=ClusterStatus.EMPTY,
                sources_total=len(sources),
                sources_resolved=len(resolved),
                rejections={code.value: n for code, n in resolver.rejections.items()},
            )

            results: List[FetchResult] = await self.executor.fetch_all(session, resolved)
            fetched = [r for r in results if r.success]
            outcome.sources_fetched = len(fetched)
            outcome.fetch_attempts = sum(r.attempts.count for r in results)

            if not any(r.item_count for r in fetched):
                logger.warning(
                    f"No items from any of {len(resolved)} resolved sources "
                    f"({len(sources)} listed); no output written for {cluster.name}"
                )
                outcome.error = "no items"
                return outcome

            merger = MergeEngine(settings=self.settings, cluster=cluster.name)
            items = merger.merge([(r.feed, r.source.label) for r in fetched])

            result = self.builder.cluster_result(cluster.name, items, title=self.read_title(cluster))
            try:
                document = self.builder.build(result)
                write_atomic(cluster.output_path, render(document))
            except ClusterFeedError as e:
                logger.error(f"Could not write {cluster.output_path}: {e}", extra=e.to_dict())
                outcome.status = ClusterStatus.FAILED
                outcome.error = str(e)
                return outcome

            outcome.status = ClusterStatus.WRITTEN
            outcome.item_count = len(items)
            logger.info(
                f"Wrote {cluster.output_path} with {len(items)} items "
                f"from {len(fetched)}/{len(resolved)} sources"
            )
            return outcome

    def read_sources(self, cluster: Cluster) -> List[SourceSpec]:
        """Read a cluster's source list.

        Raises:
            ClusterError: If the input file is missing or unreadable
        """
        try:
            text = cluster.input_path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ClusterError(
                f"Input file not found: {cluster.input_path}",
                cluster=cluster.name,
                error_code=ErrorCode.CLUSTER_INPUT_MISSING,
            ) from e
        except (OSError, UnicodeDecodeError) as e:
            raise ClusterError(
                f"Cannot read {cluster.input_path}: {e}",
                cluster=cluster.name,
                error_code=ErrorCode.CLUSTER_INPUT_UNREADABLE,
            ) from e

        return read_source_lines(text)

    def read_title(self, cluster: Cluster) -> Optional[str]:
        """Channel title override: first non-blank line of the title file."""
        if cluster.title_path is None or not cluster.title_path.is_file():
            return None
        try:
            text = cluster.title_path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            self.logger.warning(f"Ignoring unreadable title file {cluster.title_path}: {e}")
            return None
        for line in text.splitlines():
            if line.strip():
                return line.strip()
        return None
