"""Output manager for the cleaned dataset, report and charts.

This module decides where a run's files go and writes them.  Every text
file is written to a temporary sibling first and then renamed, so an
interrupted run never leaves a half-written CSV or report behind.
"""

import json
import logging
import os
import tempfile
from datetime import datetime
from pathlib import Path
from typing import List, Optional

import pandas as pd

from .config import (
    CLEANED_CSV_NAME,
    OUTPUT_COLUMNS,
    OUTPUT_DIR_ENV,
    REPORT_NAME,
    SUMMARY_NAME,
)
from .pipeline import AnalysisResult
from .report import dashboard_summary, render_report

logger = logging.getLogger(__name__)


class ChartExportError(RuntimeError):
    """Raised when chart export fails after the text outputs were written."""


def resolve_output_dir(explicit: Optional[str | Path] = None) -> Path:
    """Select a writable directory for the run's outputs.

    The lookup order is:

    1. ``explicit``, when given.
    2. The ``NCRB_OUTPUT_DIR`` environment variable, if set.
    3. An ``output`` folder in the current working directory.
    4. A temporary directory in ``/tmp``.

    Each candidate is tested for writability by creating and deleting a
    sentinel file; the first one that succeeds is returned.
    """
    candidates: list[Path] = []
    if explicit:
        candidates.append(Path(explicit).expanduser().resolve())
    env = os.getenv(OUTPUT_DIR_ENV)
    if env:
        candidates.append(Path(env).expanduser().resolve())
    candidates.append(Path.cwd() / "output")
    candidates.append(Path(tempfile.gettempdir()) / "ncrb_analysis_output")

    for path in candidates:
        try:
            path.mkdir(parents=True, exist_ok=True)
            test_file = path / ".write_test"
            test_file.write_text("ok", encoding="utf-8")
            test_file.unlink()
            return path
        except OSError as exc:
            logger.warning("Output directory %s is not writable: %s", path, exc)
            continue

    raise OSError(f"No writable output directory among: {[str(p) for p in candidates]}")


def _atomic_write_text(text: str, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    tmp_path.write_text(text, encoding="utf-8")
    tmp_path.replace(path)


def _atomic_to_csv(df: pd.DataFrame, path: Path) -> None:
    """Write a DataFrame to CSV atomically.

    The CSV is first written to a temporary file in the same directory
    and then renamed to the final location.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    df.to_csv(tmp_path, index=False, lineterminator="\n")
    tmp_path.replace(path)


def cleaned_frame(result: AnalysisResult) -> pd.DataFrame:
    """The dataset in its fixed output column order."""
    return result.dataset[OUTPUT_COLUMNS].reset_index(drop=True)


def write_outputs(
    result: AnalysisResult,
    output_dir: Path,
    *,
    charts: bool = True,
    generated_at: Optional[datetime] = None,
) -> List[Path]:
    """Persist the cleaned CSV, text report, JSON summary and (optionally) charts.

    Returns
    -------
    List[Path]
        Paths of every file written, in write order.
    """
    generated_at = generated_at or datetime.now()
    written: List[Path] = []

    csv_path = output_dir / CLEANED_CSV_NAME
    _atomic_to_csv(cleaned_frame(result), csv_path)
    written.append(csv_path)

    report_path = output_dir / REPORT_NAME
    _atomic_write_text(render_report(result, generated_at=generated_at), report_path)
    written.append(report_path)

    summary_path = output_dir / SUMMARY_NAME
    summary = dashboard_summary(result, generated_at=generated_at)
    _atomic_write_text(json.dumps(summary, indent=2, ensure_ascii=False) + "\n", summary_path)
    written.append(summary_path)

    if charts:
        # Imported lazily: plotly/kaleido are only needed when charts are on
        from .plotting import build_figures, save_figures

        try:
            written.extend(save_figures(build_figures(result), output_dir))
        except (RuntimeError, ValueError, OSError) as exc:
            # Typically kaleido missing or unable to start its browser
            raise ChartExportError(f"Chart export to {output_dir} failed: {exc}") from exc

    logger.info("Wrote %d files to %s", len(written), output_dir)
    return written
