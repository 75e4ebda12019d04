from __future__ import annotations
from dataclasses import dataclass, field
from typing import Dict, Any, List
import pandas as pd

@dataclass
class MetricsStore:
    network_rows: List[Dict[str, Any]] = field(default_factory=list)
    pool_rows: List[Dict[str, Any]] = field(default_factory=list)

    def add_network(self, row: Dict[str, Any]) -> None:
        self.network_rows.append(row)

    def add_pool_rows(self, rows: List[Dict[str, Any]]) -> None:
        self.pool_rows.extend(rows)

    def network_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.network_rows)

    def pool_df(self) -> pd.DataFrame:
        return pd.DataFrame(self.pool_rows)

    def fee_distribution(self) -> pd.DataFrame:
        """Per-tick mean fee (ppm) split by trader population."""
        df = self.network_df()
        if df.empty:
            return df
        cols = [c for c in ("tick", "fee_ppm_mean_casual", "fee_ppm_mean_spam") if c in df.columns]
        return df[cols].set_index("tick")
