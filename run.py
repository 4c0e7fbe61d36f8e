"""Launch the watermark app in the browser (``streamlit run watermark_app.py``)."""

import os
import sys
from typing import List, Optional

import streamlit.web.cli as stcli

APP_SCRIPT = "watermark_app.py"


def app_path() -> str:
    if getattr(sys, "frozen", False):
        current_dir = sys._MEIPASS
    else:
        current_dir = os.path.dirname(os.path.abspath(__file__))
    return os.path.join(current_dir, APP_SCRIPT)


def build_argv(extra: Optional[List[str]] = None) -> List[str]:
    argv = [
        "streamlit",
        "run",
        app_path(),
        "--global.developmentMode=false",
        "--client.toolbarMode=minimal",
        # Property photo batches easily exceed the 200 MB default
        f"--server.maxUploadSize={os.getenv('ALV_MAX_UPLOAD_MB', '1000')}",
    ]
    port = os.getenv("ALV_PORT")
    if port:
        argv.append(f"--server.port={port}")
    return argv + list(extra or [])


def main() -> None:
    sys.argv = build_argv(sys.argv[1:])
    sys.exit(stcli.main())


if __name__ == "__main__":
    main()
