"""GridClient - Main API for extragrid.

Opens tables from a store into padded, synchronized grids, and wires the
pieces that need settings (enrichment, file import) to them.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

from loguru import logger

from extragrid.config import Settings, get_settings
from extragrid.enrichment import EnrichmentRunner, GeminiEnrichmentClient
from extragrid.exceptions import ExtraGridError
from extragrid.grid import Grid
from extragrid.importer import read_import_file
from extragrid.models import table_from_dict, table_to_dict

if TYPE_CHECKING:
    from collections.abc import Callable
    from pathlib import Path

    from extragrid.enrichment import EnrichmentClient
    from extragrid.importer import ImportSource
    from extragrid.models import Table
    from extragrid.transport import TableStore


class GridClient:
    """Client for working with tables held in a TableStore.

    Example:
        >>> from extragrid.transport import SupabaseTransport
        >>> store = SupabaseTransport("https://xyz.supabase.co", api_key="...")
        >>> client = GridClient(store)
        >>> grid = await client.open_table("3f1c...")
        >>> grid.set_cell(grid.table.rows[0].id, grid.table.columns[0].id, "Acme")
        >>> await grid.flush()
    """

    def __init__(self, store: TableStore, settings: Settings | None = None) -> None:
        """Initialize the client.

        Args:
            store: Persistence collaborator
            settings: Settings; defaults to the cached environment settings
        """
        self._store = store
        self._settings = settings or get_settings()
        self._enrichment_client: EnrichmentClient | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    async def fetch_table(self, table_id: str) -> Table:
        """Fetch the durable state of a table without opening a grid.

        Raises:
            NotFoundError: If the table does not exist
        """
        return await self._store.get_table(table_id)

    async def open_table(
        self,
        table_id: str,
        *,
        on_error: Callable[[str], None] | None = None,
        sync: bool = True,
    ) -> Grid:
        """Load a table and return a grid kept in sync with the store.

        The grid is padded with placeholder rows and auto-named columns up to
        the configured minimums. The synchronized snapshot is the table as
        loaded, so padding columns are written back on the first pass while
        empty padding rows are not.

        Raises:
            NotFoundError: If the table does not exist
        """
        table = await self._store.get_table(table_id)
        logger.info(
            f"Opened table {table.id} ({len(table.columns)} columns, {len(table.rows)} rows)"
        )
        grid = Grid(table, self._store, on_error=on_error, sync=sync, snapshot=table)
        grid.ensure_padding(self._settings.min_rows, self._settings.min_columns)
        return grid

    async def pull(self, table_id: str, output_path: Path) -> Path:
        """Write the durable state of a table to a JSON file.

        Returns:
            The path written
        """
        table = await self._store.get_table(table_id)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(
            json.dumps(table_to_dict(table), indent=2, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )
        logger.info(f"Wrote table {table_id} to {output_path}")
        return output_path

    def read_import(self, path: Path) -> ImportSource:
        """Read an import file under the configured size and row caps.

        Raises:
            ImportValidationError: If the file is unsupported, too large or empty
        """
        return read_import_file(
            path,
            max_file_bytes=self._settings.import_max_file_bytes,
            max_rows=self._settings.import_max_rows,
        )

    def enrichment_runner(
        self, grid: Grid, client: EnrichmentClient | None = None
    ) -> EnrichmentRunner:
        """Build an enrichment runner for ``grid``.

        Without ``client`` a Gemini client is created from settings.

        Raises:
            ExtraGridError: If no client is given and no Gemini API key is set
        """
        if client is None:
            if self._enrichment_client is None:
                if not self._settings.has_enrichment:
                    raise ExtraGridError("No Gemini API key configured")
                self._enrichment_client = GeminiEnrichmentClient(
                    self._settings.gemini_api_key,
                    model=self._settings.gemini_model,
                    timeout=self._settings.request_timeout,
                )
            client = self._enrichment_client
        return EnrichmentRunner(grid, client, clear_delay=self._settings.progress_clear_delay)

    async def close(self) -> None:
        """Close the store and any enrichment client this client created."""
        if self._enrichment_client is not None:
            await self._enrichment_client.close()
            self._enrichment_client = None
        await self._store.close()


def load_table_file(path: Path) -> Table:
    """Read a table written by ``GridClient.pull``."""
    return table_from_dict(json.loads(path.read_text(encoding="utf-8")))
