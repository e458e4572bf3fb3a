"""
Order Report Exporter

Writes the orders of an analytics period to an Excel workbook with two
sheets: one row per order, and totals per status / type / location.

Several workers may export at the same time, so every write happens under
a file lock on the report directory.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from filelock import FileLock, Timeout

from tortillas.core.config import get_settings

logger = logging.getLogger(__name__)


class ReportExporter:
    """Excel writer for order reports."""

    ORDER_COLUMNS = [
        "order_id",
        "created_at",
        "location_id",
        "order_type",
        "table_id",
        "customer_name",
        "customer_phone",
        "items",
        "subtotal",
        "delivery_fee",
        "total_amount",
        "payment_method",
        "payment_status",
        "status",
    ]

    def __init__(self, data_dir: Optional[str] = None, lock_timeout: Optional[int] = None):
        settings = get_settings()
        self.data_dir = Path(data_dir or settings.data_directory)
        self.lock_timeout = lock_timeout if lock_timeout is not None else settings.report_lock_timeout
        self.lock_path = self.data_dir / "reports.lock"

    def _ensure_data_dir(self) -> None:
        if not self.data_dir.exists():
            self.data_dir.mkdir(parents=True, exist_ok=True)
            logger.info(f"Created data directory: {self.data_dir}")

    def report_path(self, period: str, generated_at: datetime) -> Path:
        return self.data_dir / f"orders_{period}_{generated_at:%Y%m%d_%H%M%S}.xlsx"

    @staticmethod
    def summarize(df: pd.DataFrame) -> pd.DataFrame:
        """Order count and revenue per status, type and location."""
        if df.empty:
            return pd.DataFrame(columns=["dimension", "value", "orders", "revenue"])

        frames = []
        for dimension in ("status", "order_type", "location_id"):
            grouped = (
                df.groupby(dimension)
                .agg(orders=("order_id", "count"), revenue=("total_amount", "sum"))
                .reset_index()
                .rename(columns={dimension: "value"})
            )
            grouped.insert(0, "dimension", dimension)
            frames.append(grouped)
        return pd.concat(frames, ignore_index=True)

    def export_orders(self, period: str, rows: list[dict[str, Any]]) -> dict[str, Any]:
        """
        Write one workbook for ``rows``.

        Returns:
            dict with success, message, path and the number of orders
        """
        self._ensure_data_dir()
        generated_at = datetime.now(timezone.utc)
        path = self.report_path(period, generated_at)
        result = {
            "success": False,
            "message": "",
            "period": period,
            "orders": len(rows),
            "path": None,
        }

        df = pd.DataFrame(rows, columns=self.ORDER_COLUMNS)
        for column in ("subtotal", "delivery_fee", "total_amount"):
            df[column] = df[column].map(lambda v: float(Decimal(str(v))), na_action="ignore")

        try:
            with FileLock(str(self.lock_path), timeout=self.lock_timeout):
                logger.debug(f"Lock acquired for {path.name}")
                with pd.ExcelWriter(path, engine="openpyxl") as writer:
                    df.to_excel(writer, sheet_name="Orders", index=False)
                    self.summarize(df).to_excel(writer, sheet_name="Summary", index=False)

            logger.info(f"Report {path.name} written ({len(rows)} orders)")
            result.update(success=True, message=f"{len(rows)} orders exported", path=str(path))

        except Timeout:
            result["message"] = f"Lock timeout ({self.lock_timeout}s)"
            logger.error(f"Lock timeout while writing {path.name}")

        except OSError as e:
            result["message"] = str(e)
            logger.exception(f"Error writing {path.name}")

        return result

    def list_reports(self) -> list[Path]:
        if not self.data_dir.exists():
            return []
        return sorted(self.data_dir.glob("orders_*.xlsx"))

    def read_report(self, path: Path) -> pd.DataFrame:
        return pd.read_excel(path, sheet_name="Orders", engine="openpyxl")
