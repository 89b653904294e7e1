"""Identity mapping loaders (Google Sheets or YAML file).

Sheet layout, header in row 1, data from row 2:
    A: primary email  B: comma-separated secondary emails  C: status (active/inactive)
"""

from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence

import yaml
from googleapiclient.discovery import build
from pydantic import ValidationError

from calendar_sync.logging_config import get_logger
from calendar_sync.models.mapping import IdentityMapping, MappingsFile
from calendar_sync.models.settings import MappingSource, Settings
from calendar_sync.repositories.mapping_store import IdentityMappingStore
from calendar_sync.services.google_credentials import SHEETS_READONLY_SCOPES, build_credentials

logger = get_logger(__name__)


class MappingLoadError(Exception):
    """Raised when mappings cannot be read from their source."""

    pass


def parse_sheet_rows(rows: Iterable[Sequence[Any]]) -> List[IdentityMapping]:
    """Turn raw sheet rows into mappings.

    Rows without a primary, inactive rows and rows with no valid secondary
    email are skipped.
    """
    mappings = []
    for index, row in enumerate(rows, start=2):
        cells = [str(cell).strip() for cell in row] + ["", "", ""]
        primary, secondaries_cell, status = cells[0], cells[1], cells[2]
        if not primary or not secondaries_cell:
            continue

        try:
            mapping = IdentityMapping(
                primary=primary,
                secondaries=secondaries_cell.split(","),
                status=status or "active",
            )
        except ValidationError as e:
            logger.warning("mapping_row_invalid", row=index, primary=primary, error=str(e))
            continue

        if not mapping.is_active:
            logger.debug("mapping_row_inactive", row=index, primary=mapping.primary)
            continue
        if not mapping.secondaries:
            logger.warning("mapping_row_without_secondaries", row=index, primary=mapping.primary)
            continue
        mappings.append(mapping)
    return mappings


class SheetMappingLoader:
    """Reads mappings from a Google Sheets range."""

    def __init__(
        self,
        spreadsheet_id: str,
        sheet_name: str = "User Mappings",
        service_account_info: Optional[Dict[str, Any]] = None,
        service_factory: Optional[Callable[[], Any]] = None,
    ):
        self.spreadsheet_id = spreadsheet_id
        self.sheet_name = sheet_name
        self._service_account_info = service_account_info
        self._service_factory = service_factory

    @property
    def range(self) -> str:
        return f"'{self.sheet_name}'!A2:C"

    def _service(self) -> Any:
        if self._service_factory is not None:
            return self._service_factory()
        if self._service_account_info is None:
            raise MappingLoadError("no service account key configured for Google Sheets")
        credentials = build_credentials(self._service_account_info, SHEETS_READONLY_SCOPES)
        return build("sheets", "v4", credentials=credentials, cache_discovery=False)

    def load(self) -> List[IdentityMapping]:
        try:
            response = (
                self._service()
                .spreadsheets()
                .values()
                .get(spreadsheetId=self.spreadsheet_id, range=self.range)
                .execute()
            )
        except MappingLoadError:
            raise
        except Exception as e:
            raise MappingLoadError(f"failed to read spreadsheet {self.spreadsheet_id}: {e}") from e

        mappings = parse_sheet_rows(response.get("values", []))
        logger.info("mappings_read_from_sheet", spreadsheet_id=self.spreadsheet_id, mapping_count=len(mappings))
        return mappings


class FileMappingLoader:
    """Reads mappings from a YAML file."""

    def __init__(self, path: str):
        self.path = Path(path)

    def load(self) -> List[IdentityMapping]:
        if not self.path.exists():
            raise MappingLoadError(f"mappings file not found: {self.path}")
        try:
            with open(self.path, encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
            mappings_file = MappingsFile(**raw)
        except yaml.YAMLError as e:
            raise MappingLoadError(f"failed to parse {self.path}: {e}")
        except (TypeError, ValidationError) as e:
            raise MappingLoadError(f"invalid mappings file {self.path}: {e}")

        mappings = [m for m in mappings_file.mappings if m.is_active and m.secondaries]
        logger.info("mappings_read_from_file", path=str(self.path), mapping_count=len(mappings))
        return mappings


def create_mapping_loader(settings: Settings, service_account_info: Optional[Dict[str, Any]]):
    """Pick the loader for the configured mapping source."""
    if settings.mapping_source == MappingSource.FILE:
        return FileMappingLoader(settings.mappings_path)
    return SheetMappingLoader(
        spreadsheet_id=settings.spreadsheet_id,
        sheet_name=settings.sheet_name,
        service_account_info=service_account_info,
    )


def refresh_mappings(loader, store: IdentityMappingStore) -> int:
    """Load mappings from their source into the store.

    On failure the store keeps its previous mapping and the failure is counted.

    Returns:
        Number of primaries loaded

    Raises:
        MappingLoadError: If the source could not be read
    """
    try:
        mappings = loader.load()
    except MappingLoadError as e:
        store.record_load_failure(e)
        raise
    return store.load(mappings)
