from __future__ import annotations

from pathlib import Path
from typing import Any

import pandas as pd

from salestrack.core.db import SalestrackRepository, from_db_time
from salestrack.core.dedupe import weekly_window

from .notifications import WEEKLY_SHARES

SHARE_COLUMNS = [f"share_{round(ratio * 100)}" for ratio in WEEKLY_SHARES]


def _reporting_week(created_at: str) -> str | None:
    created = from_db_time(created_at)
    window = weekly_window(created)
    # Продажи с 22:00 воскресенья до 06:00 понедельника в итоги недели не входят.
    return window.key if window.contains(created) else None


def weekly_margin_frame(sales: pd.DataFrame) -> pd.DataFrame:
    columns = ["week", "sales_count", "total_margin", *SHARE_COLUMNS]
    if sales.empty:
        return pd.DataFrame(columns=columns)

    frame = pd.DataFrame(
        {
            "week": sales["created_at"].map(_reporting_week),
            "margin": sales["margin"].astype(float),
        }
    ).dropna(subset=["week"])
    weekly = (
        frame.groupby("week", sort=True)
        .agg(sales_count=("margin", "size"), total_margin=("margin", "sum"))
        .reset_index()
    )
    for column, ratio in zip(SHARE_COLUMNS, WEEKLY_SHARES):
        weekly[column] = (weekly["total_margin"] * ratio).round(2)
    return weekly[columns]


def build_frames(rows: list[dict[str, Any]]) -> dict[str, pd.DataFrame]:
    sales = pd.DataFrame(rows)
    return {"sales": sales, "weekly_margin": weekly_margin_frame(sales)}


def export_data(repository: SalestrackRepository, formats: list[str], out_dir: Path) -> list[Path]:
    out_dir.mkdir(parents=True, exist_ok=True)
    frames = build_frames(repository.fetch_export_rows())

    created_files: list[Path] = []
    if "csv" in formats:
        for name, frame in frames.items():
            csv_path = (out_dir / f"salestrack_{name}.csv").resolve()
            frame.to_csv(csv_path, index=False, encoding="utf-8-sig")
            created_files.append(csv_path)

    if "xlsx" in formats:
        xlsx_path = (out_dir / "salestrack_export.xlsx").resolve()
        with pd.ExcelWriter(xlsx_path, engine="openpyxl") as writer:
            for name, frame in frames.items():
                frame.to_excel(writer, index=False, sheet_name=name)
        created_files.append(xlsx_path)

    return created_files
