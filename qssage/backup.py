"""
Report backup: dump every stored report to timestamped CSV and PDF files.

Run:
    python -m qssage.backup [backup_dir] [--mail]
"""

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import pandas as pd
from fpdf import FPDF
from fpdf.enums import XPos, YPos

from qssage import db, notifier
from qssage.config import setup_logging

logger = logging.getLogger("backup")

BACKUP_DIR = os.getenv("QSSAGE_BACKUP_DIR", "backup")
COLUMNS = ["id", "url", "location", "note", "source", "risk", "score",
           "detected_at", "dispatched", "dispatched_at"]


def _stamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


def _latin1(text: Any) -> str:
    # core PDF fonts only cover latin-1
    return str(text).encode("latin-1", "replace").decode("latin-1")


def export_reports_csv(backup_dir: str = BACKUP_DIR, rows: Optional[List[Dict[str, Any]]] = None,
                       stamp: Optional[str] = None) -> Optional[str]:
    """Write all reports to CSV; returns the file path, or None when there is nothing to back up."""
    rows = db.list_reports() if rows is None else rows
    if not rows:
        logger.info("No reports to back up")
        return None
    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, f"reports-{stamp or _stamp()}.csv")
    pd.DataFrame(rows, columns=COLUMNS).to_csv(path, index=False)
    logger.info("Backed up %d reports to %s", len(rows), path)
    return path


def export_reports_pdf(backup_dir: str = BACKUP_DIR, rows: Optional[List[Dict[str, Any]]] = None,
                       stamp: Optional[str] = None) -> Optional[str]:
    """Printable listing: one numbered line per report with URL, location and time."""
    rows = db.list_reports() if rows is None else rows
    if not rows:
        return None
    os.makedirs(backup_dir, exist_ok=True)
    path = os.path.join(backup_dir, f"reports-{stamp or _stamp()}.pdf")

    pdf = FPDF()
    pdf.add_page()
    pdf.set_font("Helvetica", size=16)
    pdf.cell(0, 10, "QSSAGE report backup", align="C", new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.ln(4)
    pdf.set_font("Helvetica", size=10)
    for i, r in enumerate(rows, 1):
        line = f"{i}. URL: {r['url']} | Location: {r.get('location') or '-'} | Time: {r.get('detected_at') or '-'}"
        pdf.multi_cell(0, 6, _latin1(line), new_x=XPos.LMARGIN, new_y=YPos.NEXT)
    pdf.output(path)
    logger.info("Wrote PDF listing of %d reports to %s", len(rows), path)
    return path


def backup_reports(backup_dir: str = BACKUP_DIR) -> List[str]:
    """CSV and PDF of the same snapshot; empty list when there are no reports."""
    rows = db.list_reports()
    if not rows:
        logger.info("No reports to back up")
        return []
    stamp = _stamp()
    return [export_reports_csv(backup_dir, rows, stamp), export_reports_pdf(backup_dir, rows, stamp)]


def main(argv=None) -> int:
    setup_logging()
    args = list(sys.argv[1:] if argv is None else argv)
    send = "--mail" in args
    args = [a for a in args if a != "--mail"]
    db.init_db()
    paths = backup_reports(args[0] if args else BACKUP_DIR)
    if paths and send:
        try:
            notifier.send_mail("[QSSAGE] report backup",
                               "Backup files: " + ", ".join(os.path.basename(p) for p in paths),
                               attachments=paths)
        except notifier.NotificationError as e:
            logger.error("Backup mail not sent: %s", e)
            return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
