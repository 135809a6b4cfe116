from __future__ import annotations

import sys
from pathlib import Path

# Ensure the local checkout takes precedence over any installed "echonode".
ROOT = Path(__file__).resolve().parents[1]

root_str = str(ROOT)
if root_str not in sys.path:
    sys.path.insert(0, root_str)
