"""
Parquet persistence for verification results.
"""

import os
import logging
from typing import List, Optional
from datetime import datetime

import pandas as pd

from persistence.record import ChunkReadRecord

logger = logging.getLogger(__name__)

RECORD_COLUMNS = [
    'object_key', 'chunk_index', 'range_start', 'range_len', 'bytes',
    'latency_ms', 'reconnects', 'matched', 'start_ts', 'end_ts',
]


class ParquetPersistence:
    """Parquet file persistence for chunk read records.

    Records are kept in memory during a run and written to a single
    timestamped Parquet file at the end.

    Attributes:
        output_dir: Directory where Parquet files will be saved
        records: Chunk read records accumulated during the run
    """

    def __init__(self, output_dir: str = "results"):
        """Initialize Parquet persistence.

        Args:
            output_dir: Directory for saving Parquet files (default: 'results')
        """
        self.output_dir: str = output_dir
        self.records: List[ChunkReadRecord] = []

        os.makedirs(output_dir, exist_ok=True)

    def store_record(self, record: ChunkReadRecord) -> None:
        """Store a chunk read record in memory."""
        self.records.append(record)

    def to_dataframe(self) -> pd.DataFrame:
        return pd.DataFrame([r.to_dict() for r in self.records], columns=RECORD_COLUMNS)

    def save_to_file(self, filename_prefix: str = "verification") -> Optional[str]:
        """Save all records to a Parquet file.

        Args:
            filename_prefix: Prefix for the generated filename (default: 'verification')

        Returns:
            Path to the saved file, or None if no records to save
        """
        if not self.records:
            return None

        logger.info(f"Saving {len(self.records)} records to file")
        df = self.to_dataframe()

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filename = f"{filename_prefix}_{timestamp}.parquet"
        filepath = os.path.join(self.output_dir, filename)

        df.to_parquet(filepath, index=False)

        return filepath
