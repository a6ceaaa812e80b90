"""Curated-list source adapters.

Each adapter turns one external list of beginner-friendly repositories into
RepoReference objects. A bad entry is logged and skipped; an unreadable
payload yields an empty list.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

import requests

from models.data_models import RepoReference, SourceBatch
from pipeline.exceptions import SourceFormatError

logger = logging.getLogger(__name__)


GITHUB_REPO_PATTERN = re.compile(r"github\.com/([^/\s]+)/([^/\s?#]+)", re.IGNORECASE)


@dataclass
class DataSourceConfig:
    """A configured curated-list source."""
    id: str
    url: str
    enabled: bool = True


DATA_SOURCE_CONFIGS = [
    DataSourceConfig(
        id="awesome-for-beginners",
        url="https://raw.githubusercontent.com/MunGell/awesome-for-beginners/master/data.json",
        enabled=True,
    ),
]


def parse_github_link(link: str) -> tuple[str, str]:
    """
    Extract (owner, name) from a GitHub repository URL.

    Raises:
        SourceFormatError: If the link is not a GitHub repository URL
    """
    match = GITHUB_REPO_PATTERN.search(link or "")
    if not match:
        raise SourceFormatError(f"Could not parse GitHub URL: {link!r}")
    owner, name = match.group(1), match.group(2)
    if name.endswith(".git"):
        name = name[:-4]
    return owner, name


class SourceAdapter:
    """Base class for curated-list adapters."""

    source_id = ""
    display_name = ""

    def __init__(self, timeout: float = 30.0):
        self.timeout = timeout

    def fetch(self, source_url: str) -> list[RepoReference]:
        raise NotImplementedError


class AwesomeForBeginnersAdapter(SourceAdapter):
    """
    Adapter for MunGell/awesome-for-beginners data.json.

    Payload shape:
        {"repositories": [{"name", "link", "label", "technologies", "description"}, ...]}
    """

    source_id = "awesome-for-beginners"
    display_name = "Awesome for Beginners"

    def fetch(self, source_url: str) -> list[RepoReference]:
        """
        Download and parse the source.

        Raises:
            requests.RequestException: If the download itself fails
        """
        logger.info(f"Fetching data from {source_url}")
        response = requests.get(source_url, timeout=self.timeout)
        response.raise_for_status()

        try:
            data = response.json()
        except ValueError as e:
            logger.warning(f"{self.display_name}: response is not valid JSON ({e})")
            return []

        return self.parse(data)

    def parse(self, data: Any) -> list[RepoReference]:
        """Normalize a decoded payload, skipping malformed entries."""
        repositories = data.get("repositories") if isinstance(data, dict) else None
        if not isinstance(repositories, list):
            logger.warning(f"{self.display_name}: no repositories array found in data")
            return []

        results: list[RepoReference] = []
        seen: set[tuple[str, str]] = set()
        for entry in repositories:
            try:
                reference = self.parse_entry(entry)
            except SourceFormatError as e:
                logger.warning(f"Skipping entry: {e}")
                continue

            key = (reference.owner.lower(), reference.name.lower())
            if key in seen:
                logger.debug(f"Duplicate entry {reference.full_name}, keeping the first")
                continue
            seen.add(key)
            results.append(reference)

        logger.info(f"Parsed {len(results)} repos from {self.display_name}")
        return results

    def parse_entry(self, entry: Any) -> RepoReference:
        if not isinstance(entry, dict):
            raise SourceFormatError(f"Entry is not an object: {entry!r}")

        owner, name = parse_github_link(entry.get("link", ""))

        label = entry.get("label")
        if not isinstance(label, str) or not label.strip():
            raise SourceFormatError(f"Entry {owner}/{name} has no label")

        return RepoReference(owner=owner, name=name, source_id=self.source_id, label=label.strip())


class AdapterRegistry:
    """Maps source identifiers to adapters and their configured URLs."""

    def __init__(
        self,
        configs: Optional[Iterable[DataSourceConfig]] = None,
        disabled: Iterable[str] = (),
    ):
        """
        Args:
            configs: Source configurations (default: DATA_SOURCE_CONFIGS)
            disabled: Source ids to turn off regardless of their config
        """
        self.adapters: dict[str, SourceAdapter] = {}
        disabled_ids = set(disabled)
        self.configs = [
            DataSourceConfig(id=c.id, url=c.url, enabled=c.enabled and c.id not in disabled_ids)
            for c in (configs if configs is not None else DATA_SOURCE_CONFIGS)
        ]
        self.register(AwesomeForBeginnersAdapter())

    def register(self, adapter: SourceAdapter) -> None:
        self.adapters[adapter.source_id] = adapter
        logger.debug(f"Registered adapter: {adapter.display_name} ({adapter.source_id})")

    def get(self, source_id: str) -> Optional[SourceAdapter]:
        return self.adapters.get(source_id)

    def enabled_sources(self) -> list[DataSourceConfig]:
        return [c for c in self.configs if c.enabled]

    def discover(self, start_source: Optional[str] = None) -> list[SourceBatch]:
        """
        Fetch every enabled source in configuration order.

        A source that fails (no adapter, download error) yields an empty
        batch so the other sources still contribute.

        Args:
            start_source: Skip enabled sources configured before this one
                          (used when resuming from a cursor)

        Returns:
            One SourceBatch per enabled source that was attempted
        """
        sources = self.enabled_sources()
        if start_source is not None:
            ids = [c.id for c in sources]
            if start_source in ids:
                sources = sources[ids.index(start_source):]
            else:
                logger.warning(f"Resume source {start_source!r} is not enabled, starting from the first source")

        batches: list[SourceBatch] = []
        for config in sources:
            adapter = self.get(config.id)
            if adapter is None:
                logger.warning(f"No adapter found for source: {config.id}")
                batches.append(SourceBatch(source_id=config.id))
                continue

            try:
                references = adapter.fetch(config.url)
            except requests.RequestException as e:
                logger.error(f"Error fetching source {config.id}: {e}")
                references = []

            logger.info(f"✓ {config.id}: {len(references)} repositories")
            batches.append(SourceBatch(source_id=config.id, references=references))

        return batches
