"""Guard against Qt imports in core modules.

Run this script in CI or locally to ensure everything except the Qt bridge
stays importable without a Qt binding.
"""

from __future__ import annotations

from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parent.parent

CORE_MODULES = [
    "src/image_preview/__init__.py",
    "src/image_preview/config.py",
    "src/image_preview/decoder.py",
    "src/image_preview/format_settings.py",
    "src/image_preview/formats.py",
    "src/image_preview/local_settings.py",
    "src/image_preview/logger.py",
    "src/image_preview/message_router.py",
    "src/image_preview/messages.py",
    "src/image_preview/observers.py",
    "src/image_preview/preview.py",
    "src/image_preview/sequence_guard.py",
    "src/image_preview/status_entries.py",
    "src/image_preview/surface.py",
    "src/image_preview/sync_protocol.py",
    "src/image_preview/view_cache.py",
]

FORBIDDEN = ("PyQt", "PySide", "QtCore", "QtWidgets", "qt_compat")


def find_violations(root: Path = ROOT) -> list:
    bad = []
    for rel in CORE_MODULES:
        path = root / rel
        if not path.exists():
            bad.append(f"{rel} is missing")
            continue
        text = path.read_text(encoding="utf-8", errors="ignore")
        for token in FORBIDDEN:
            if token in text:
                bad.append(f"{rel} contains '{token}'")
                break
    return bad


def main() -> int:
    bad = find_violations()
    if bad:
        sys.stderr.write("Qt import guard failed:\n")
        sys.stderr.write("\n".join(bad))
        sys.stderr.write("\n")
        return 2
    print("Qt import guard passed.")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
