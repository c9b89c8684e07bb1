"""
Saving and exporting sweep results.
"""

import json
import logging
import shutil
from pathlib import Path
from typing import Any, Dict, MutableMapping, Optional, Union

from .sweep_result import SweepResult

LOGGER = logging.getLogger(__name__)


class FileResultSink:
    """
    Writes a sweep as ``<stem>.json`` (full record) and ``<stem>.csv``
    (one row per reading).

    Args:
        namespace: Caller-owned mapping that ``export_to_caller`` writes into
        export_name: Key used in the namespace
        settings_file: Optional station config copied next to the data
    """

    def __init__(self,
                 namespace: Optional[MutableMapping[str, Any]] = None,
                 export_name: str = "power_measurements",
                 settings_file: Optional[Union[str, Path]] = None):
        self.namespace = namespace if namespace is not None else {}
        self.export_name = export_name
        self.settings_file = Path(settings_file) if settings_file else None

    def save(self, result: SweepResult, destination_path: Union[str, Path], file_name_stem: str) -> Path:
        """
        Save the result.

        Returns:
            Path of the JSON record
        """
        destination = Path(destination_path)
        destination.mkdir(parents=True, exist_ok=True)

        record_path = destination / f"{file_name_stem}.json"
        with open(record_path, 'w') as f:
            json.dump(result.to_record(), f, indent=2)

        csv_path = destination / f"{file_name_stem}.csv"
        result.to_dataframe().to_csv(csv_path, index=False)

        if self.settings_file is not None:
            if self.settings_file.exists():
                shutil.copy2(self.settings_file, destination / self.settings_file.name)
            else:
                LOGGER.warning(f"Settings file not found, not copied: {self.settings_file}")

        LOGGER.info(f"Saved sweep data to {record_path} ({result.num_steps * result.sample_reps} readings)")
        return record_path

    def export_to_caller(self, result: SweepResult) -> None:
        self.namespace[self.export_name] = result
        LOGGER.info(f"Sweep result exported as '{self.export_name}'")


def load_result(filepath: Union[str, Path]) -> SweepResult:
    """Load a sweep result saved by FileResultSink"""
    with open(filepath, 'r') as f:
        record: Dict[str, Any] = json.load(f)
    return SweepResult.from_record(record)
