"""
Quick local smoke test: run the full scan pipeline (real headless Chromium)
on a few sample URLs and print one JSON line per verdict.

Needs `playwright install chromium` once.

Run: python3 tools/run_local_smoke.py [url ...]
"""
import json
import sys

from qssage.app.scanner import scan_url
from qssage.config import load_settings, setup_logging
from qssage.errors import ScanError

SAMPLES = [
    "google.com",
    "https://example.com",
    "http://neverssl.com",
    "http://phishingsite.invalid/login",
]


def main():
    setup_logging()
    settings = load_settings()
    for u in sys.argv[1:] or SAMPLES:
        try:
            result = scan_url(u, settings=settings)
            line = {k: result[k] for k in ("url", "risk", "score", "reason", "redirects", "final_url")}
        except ScanError as e:
            line = {"url": u, "error": type(e).__name__, "detail": str(e)}
        print(json.dumps(line, ensure_ascii=False))


if __name__ == '__main__':
    main()
