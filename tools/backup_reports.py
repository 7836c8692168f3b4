"""
Dump every stored report to a CSV file under QSSAGE_BACKUP_DIR.

Run: python3 tools/backup_reports.py [backup_dir] [--mail]
"""
import sys

from qssage.backup import main

if __name__ == '__main__':
    sys.exit(main())
