"""Tutor Chat — dev launcher. Starts the API server in watch mode."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "13013"))
LOG_LEVEL = os.getenv("TUTOR_CHAT_LOG_LEVEL", "INFO")


def main():
    parser = argparse.ArgumentParser(description="Tutor Chat dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Persist general/menu histories under this directory "
                             "(default: memory only)")
    parser.add_argument("--no-reload", action="store_true",
                        help="Disable auto-reload")
    args = parser.parse_args()

    logging.basicConfig(
        level=LOG_LEVEL.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    # The app reads its configuration from the environment at import time
    if args.data_dir:
        os.environ["TUTOR_CHAT_DATA_DIR"] = str(args.data_dir.resolve())

    print(f"Starting API on http://localhost:{PORT} ...")
    uvicorn.run(
        "tutor_chat.app:app",
        host=HOST, port=PORT,
        reload=not args.no_reload,
        app_dir=str(ROOT),
    )


if __name__ == "__main__":
    main()
