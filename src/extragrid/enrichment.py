"""AI enrichment and generation of table rows.

The external collaborator (``EnrichmentClient``) looks up company names and
per-company field values by *column title*. ``EnrichmentRunner`` drives
batches over a ``Grid``: rows are processed strictly one at a time, each
targeted cell moves through the ``ProgressTracker`` phases, and results are
merged back through ``Grid.update`` against the current table.
"""

from __future__ import annotations

import re
import ssl
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import certifi
import httpx
from loguru import logger

from extragrid.exceptions import EnrichmentError
from extragrid.models import (
    Column,
    Row,
    coerce_value,
    new_column_id,
    reindex_columns,
    value_to_text,
)
from extragrid.progress import (
    DEFAULT_CLEAR_DELAY,
    EnrichmentPhase,
    EnrichmentResult,
    GenerationPhase,
    GenerationProgress,
)

if TYPE_CHECKING:
    from extragrid.grid import Grid
    from extragrid.models import CellValue, Table

GEMINI_API_BASE = "https://generativelanguage.googleapis.com/v1beta/models"
DEFAULT_MODEL = "gemini-2.5-flash"
DEFAULT_TIMEOUT = 60
DEFAULT_GENERATION_QUERY = "日本の実在する企業"

KEY_EMPTY_MESSAGE = "The company name / domain key is empty"
NOT_AVAILABLE = "N/A"

_NEW_COLUMN_SPLIT_RE = re.compile(r"[,、]")
_KEY_COLUMN_HINTS = (
    "会社",
    "企業",
    "社名",
    "company",
    "name",
    "domain",
    "ドメイン",
    "website",
    "サイト",
    "url",
)
_NAME_COLUMN_HINTS = ("会社", "企業", "company", "name")
_FINANCIAL_HINTS = ("売上", "revenue", "sales", "financial", "資本金", "利益")
_STATUS_TITLES = ("ステータス",)


@dataclass(frozen=True)
class ScrapeResult:
    """Field values keyed by column title, plus grounding source URLs."""

    data: dict[str, str] = field(default_factory=dict)
    sources: list[str] = field(default_factory=list)


class EnrichmentClient(ABC):
    """The external lookup collaborator."""

    @abstractmethod
    async def identify_companies(self, query: str, count: int) -> list[str]:
        """Return up to ``count`` company names matching ``query``.

        Raises:
            EnrichmentError: If the lookup fails
        """
        ...

    @abstractmethod
    async def scrape_company_details(
        self,
        key: str,
        field_titles: list[str],
        context: str | None = None,
    ) -> ScrapeResult:
        """Look up values for ``field_titles`` of the company ``key``.

        Raises:
            EnrichmentError: If the lookup fails
        """
        ...

    async def close(self) -> None:  # noqa: B027 - optional hook
        """Release any open connections."""


class GeminiEnrichmentClient(EnrichmentClient):
    """Gemini ``generateContent`` over httpx with Google Search grounding."""

    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_MODEL,
        timeout: int = DEFAULT_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            api_key: Gemini API key
            model: Model name
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests use ``httpx.MockTransport``)
        """
        self._model = model
        ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._client = httpx.AsyncClient(
            timeout=timeout,
            verify=ssl_context,
            transport=transport,
            headers={
                "x-goog-api-key": api_key,
                "Content-Type": "application/json",
            },
        )

    async def identify_companies(self, query: str, count: int) -> list[str]:
        prompt = (
            f'List exactly {count} Japanese companies that match the description: "{query}".\n'
            "Return ONLY a list of company names separated by newlines. "
            "Do not add numbering or bullet points."
        )
        response = await self._generate(prompt)
        names = [line.strip() for line in _response_text(response).split("\n")]
        return [name for name in names if name][:count]

    async def scrape_company_details(
        self,
        key: str,
        field_titles: list[str],
        context: str | None = None,
    ) -> ScrapeResult:
        titles = [t for t in field_titles if not is_status_title(t)]
        if not titles:
            return ScrapeResult()

        prompt = (
            f'I need accurate information for the Japanese company "{key}".\n'
            f"Use Google Search to find values for ALL of these fields: [{', '.join(titles)}].\n"
            'Only use "N/A" when nothing can be found.\n'
            'Format the output as lines of "KEY::VALUE", using the exact field names as KEY.'
        )
        if context:
            prompt += f'\nEvaluate fit against this company context: "{context}"'

        response = await self._generate(prompt)
        data = parse_key_value_lines(_response_text(response), titles)
        return ScrapeResult(data=data, sources=_grounding_sources(response))

    async def _generate(self, prompt: str) -> dict[str, Any]:
        url = f"{GEMINI_API_BASE}/{self._model}:generateContent"
        body = {
            "contents": [{"parts": [{"text": prompt}]}],
            "tools": [{"google_search": {}}],
        }
        try:
            response = await self._client.post(url, json=body)
            response.raise_for_status()
            result: dict[str, Any] = response.json()
            return result
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            raise EnrichmentError(f"Gemini API error ({status}): {e.response.text}") from e
        except httpx.RequestError as e:
            raise EnrichmentError(f"Network error: {e}") from e
        except ValueError as e:
            raise EnrichmentError(f"Invalid Gemini response: {e}") from e

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()


def is_status_title(title: str) -> bool:
    return title in _STATUS_TITLES or "status" in title.lower()


def parse_key_value_lines(text: str, titles: list[str]) -> dict[str, str]:
    """Parse ``KEY::VALUE`` lines onto the requested titles.

    Keys match a title exactly, else case-insensitively by containment.
    The first non-``N/A`` value wins; titles left without a value get ``N/A``.
    """
    data: dict[str, str] = {}
    for line in text.split("\n"):
        if "::" not in line:
            continue
        raw_key, _, raw_value = line.partition("::")
        key = raw_key.strip().strip("-* ")
        value = raw_value.strip()
        if not key or not value:
            continue
        title = _match_title(key, titles)
        if title is None:
            continue
        current = data.get(title)
        if current is None or (current == NOT_AVAILABLE and value.upper() != NOT_AVAILABLE):
            data[title] = value
    for title in titles:
        data.setdefault(title, NOT_AVAILABLE)
    return data


def _match_title(key: str, titles: list[str]) -> str | None:
    if key in titles:
        return key
    lowered = key.lower()
    for title in titles:
        t = title.lower()
        if t in lowered or lowered in t:
            return title
    return None


def _response_text(response: dict[str, Any]) -> str:
    candidates = response.get("candidates") or []
    if not candidates:
        return ""
    parts = (candidates[0].get("content") or {}).get("parts") or []
    return "".join(part.get("text", "") for part in parts)


def _grounding_sources(response: dict[str, Any]) -> list[str]:
    candidates = response.get("candidates") or []
    if not candidates:
        return []
    chunks = (candidates[0].get("groundingMetadata") or {}).get("groundingChunks") or []
    return [chunk["web"]["uri"] for chunk in chunks if chunk.get("web", {}).get("uri")]


def find_key_column(columns: list[Column]) -> Column | None:
    """The column holding the company name or domain used as lookup key."""
    for column in columns:
        if column.id == "company_name":
            return column
    for column in columns:
        title = column.title.lower()
        if any(hint in title for hint in _KEY_COLUMN_HINTS):
            return column
    return None


def find_name_column(columns: list[Column]) -> Column | None:
    """The column generated company names are written into."""
    for column in columns:
        if column.id == "company_name":
            return column
    for column in columns:
        title = column.title.lower()
        if any(hint in title for hint in _NAME_COLUMN_HINTS):
            return column
    return columns[0] if columns else None


def phase_for_column(column: Column) -> EnrichmentPhase:
    title = column.title.lower()
    if any(hint in title for hint in _FINANCIAL_HINTS):
        return EnrichmentPhase.FINANCIAL
    return EnrichmentPhase.EXTRACTION


class EnrichmentRunner:
    """Runs enrichment and generation batches against a grid.

    Args:
        grid: Target grid; all writes go through ``grid.update``
        client: External lookup collaborator
        clear_delay: Seconds progress entries stay visible after a batch
    """

    def __init__(
        self,
        grid: Grid,
        client: EnrichmentClient,
        clear_delay: float = DEFAULT_CLEAR_DELAY,
    ) -> None:
        self._grid = grid
        self._client = client
        self._clear_delay = clear_delay

    @property
    def grid(self) -> Grid:
        return self._grid

    @property
    def client(self) -> EnrichmentClient:
        return self._client

    async def enrich_rows(
        self,
        column_ids: list[str],
        row_ids: list[str] | None = None,
    ) -> int:
        """Fill ``column_ids`` of each row from the external lookup.

        ``row_ids`` defaults to the grid's selected rows, in table order.

        Returns:
            Number of rows that completed successfully
        """
        table = self._grid.table
        wanted = set(column_ids)
        targets = [c for c in table.columns if c.id in wanted]
        if row_ids is None:
            row_ids = [r.id for r in table.rows if r.id in self._grid.selection.rows]
        if not targets or not row_ids:
            return 0

        key_column = find_key_column(table.columns)
        if key_column is None:
            self._grid.report_error("Enrichment failed: no column holds a company name or domain")
            return 0

        logger.info(f"Enriching {len(row_ids)} rows x {len(targets)} columns")
        completed = 0
        try:
            for row_id in row_ids:
                row = self._current_row(row_id)
                if row is None:
                    continue
                key = value_to_text(row.get(key_column.id)).strip()
                if not key:
                    self._grid.progress.fail_row(
                        row.id, [c.id for c in targets], KEY_EMPTY_MESSAGE
                    )
                    continue
                if await self._enrich_row(row.id, key, targets):
                    completed += 1
        finally:
            self._grid.progress.schedule_clear(self._clear_delay)
        return completed

    async def generate(
        self,
        query: str,
        count: int,
        column_ids: list[str] | None = None,
        new_column_names: str = "",
    ) -> list[str]:
        """Generate ``count`` new company rows and enrich them.

        Columns named in ``new_column_names`` (split on ``,`` or ``、``) are
        appended as text columns before any row is touched and are enriched
        along with ``column_ids``.

        Returns:
            Ids of the rows that received a generated name
        """
        progress = self._grid.progress
        new_columns = self._append_generation_columns(new_column_names)
        wanted = set(column_ids or []) | {c.id for c in new_columns}

        progress.set_generation(GenerationProgress(GenerationPhase.GENERATING_NAMES, 0, count))
        try:
            try:
                names = await self._client.identify_companies(
                    query or DEFAULT_GENERATION_QUERY, count
                )
            except Exception as e:
                logger.error(f"Company identification failed: {e}")
                self._grid.report_error(f"Generation failed: {e}")
                return []
            names = names[:count]
            if not names:
                self._grid.report_error("Generation failed: no company names returned")
                return []

            name_column = find_name_column(self._grid.table.columns)
            if name_column is None:
                self._grid.report_error("Generation failed: the table has no columns")
                return []

            placed: list[str] = []
            self._grid.update(lambda t: _place_names(t, name_column.id, names, placed))

            targets = [c for c in self._grid.table.columns if c.id in wanted]
            total = len(placed)
            for i, row_id in enumerate(placed):
                row = self._current_row(row_id)
                if row is None:
                    continue
                progress.set_generation(
                    GenerationProgress(
                        GenerationPhase.ENRICHING_DETAILS,
                        i + 1,
                        total,
                        current_column=name_column.title,
                        row_id=row.id,
                    )
                )
                if not targets:
                    continue
                progress.generating_rows.add(row.id)
                try:
                    await self._enrich_row(row.id, value_to_text(row.get(name_column.id)), targets)
                finally:
                    progress.generating_rows.discard(self._grid.resolve_row_id(row.id))

            progress.set_generation(GenerationProgress(GenerationPhase.COMPLETE, total, total))
            return [self._grid.resolve_row_id(row_id) for row_id in placed]
        finally:
            progress.schedule_clear(self._clear_delay)

    async def _enrich_row(self, row_id: str, key: str, targets: list[Column]) -> bool:
        progress = self._grid.progress
        target_ids = [c.id for c in targets]
        progress.start_row(row_id, target_ids)
        for phase in (EnrichmentPhase.EXTRACTION, EnrichmentPhase.FINANCIAL):
            ids = [c.id for c in targets if phase_for_column(c) is phase]
            if ids:
                progress.advance_row(row_id, ids, phase)

        try:
            result = await self._client.scrape_company_details(key, [c.title for c in targets])
        except Exception as e:
            row_id = self._grid.resolve_row_id(row_id)
            logger.error(f"Enrichment failed for row {row_id}: {e}")
            progress.fail_row(row_id, target_ids, str(e))
            return False

        row_id = self._grid.resolve_row_id(row_id)
        values: dict[str, CellValue] = {
            c.id: coerce_value(c, result.data[c.title]) for c in targets if c.title in result.data
        }
        self._grid.update(lambda t: self._merge_values(t, row_id, values))
        row_id = self._grid.resolve_row_id(row_id)
        progress.complete_row(
            row_id,
            target_ids,
            {
                c.id: EnrichmentResult(field=c.title, value=values[c.id])
                for c in targets
                if c.id in values
            },
        )
        return True

    def _merge_values(self, table: Table, row_id: str, values: dict[str, CellValue]) -> Table:
        current_id = self._grid.resolve_row_id(row_id)
        row = table.find_row(current_id)
        if row is None:
            return table
        present = {k: v for k, v in values.items() if table.find_column(k) is not None}
        return table.replace_row(row.with_values(present))

    def _current_row(self, row_id: str) -> Row | None:
        return self._grid.table.find_row(self._grid.resolve_row_id(row_id))

    def _append_generation_columns(self, new_column_names: str) -> list[Column]:
        names = [s.strip() for s in _NEW_COLUMN_SPLIT_RE.split(new_column_names) if s.strip()]
        if not names:
            return []
        created = [
            Column(id=new_column_id("gen_col"), title=name, description=name) for name in names
        ]
        self._grid.update(lambda t: t.with_columns(reindex_columns(t.columns + created)))
        return created


def _place_names(table: Table, name_column_id: str, names: list[str], placed: list[str]) -> Table:
    """Write names into the rows below the last row holding any data."""
    rows = list(table.rows)
    last_filled = -1
    for i, row in enumerate(rows):
        if any(value_to_text(row.get(c.id)).strip() for c in table.columns):
            last_filled = i

    placed.clear()
    for n, name in enumerate(names):
        index = last_filled + 1 + n
        if index < len(rows):
            rows[index] = rows[index].with_values({name_column_id: name})
        else:
            rows.append(Row.placeholder({name_column_id: name}))
        placed.append(rows[index].id)
    return table.with_rows(rows)
