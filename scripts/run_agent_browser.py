#!/usr/bin/env python3
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent.parent
sys.path.insert(0, str(ROOT))

print(
    f"[agent-browser] cdp={os.environ.get('AGENT_BROWSER_CDP_HOST', '127.0.0.1')}:"
    f"{os.environ.get('AGENT_BROWSER_PORT', '9222')} | "
    f"allow={os.environ.get('AGENT_BROWSER_ALLOW_HOSTS', '-')} | "
    f"block={os.environ.get('AGENT_BROWSER_BLOCK_HOSTS', '-')}",
    file=sys.stderr,
)

from agent_browser.main import main  # noqa: E402

if __name__ == "__main__":
    main()
