from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
SYNC_ROOT = ROOT / "mls_sync"

if str(SYNC_ROOT) not in sys.path:
    sys.path.insert(0, str(SYNC_ROOT))

os.environ.setdefault("MLS_SYNC_CONFIG_FILE", str(Path(tempfile.gettempdir()) / "mls-sync-tests" / "config.toml"))
