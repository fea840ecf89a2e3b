"""Game Forge dev launcher. Starts the API server."""

import argparse
import logging
import os
from pathlib import Path

import uvicorn
from dotenv import load_dotenv

ROOT = Path(__file__).parent
load_dotenv(ROOT / ".env")

HOST = os.getenv("HOST", "0.0.0.0")
PORT = os.getenv("PORT", "13013")


def main():
    parser = argparse.ArgumentParser(description="Game Forge dev launcher")
    parser.add_argument("--data-dir", type=Path, default=None,
                        help="Data storage directory (default: ./data)")
    parser.add_argument("--demo", action="store_true",
                        help="Seed the built-in reference documents")
    parser.add_argument("--host", default=HOST)
    parser.add_argument("--port", type=int, default=int(PORT))
    parser.add_argument("--reload", action="store_true", help="Restart on code changes")
    args = parser.parse_args()

    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.data_dir:
        os.environ["DATA_DIR"] = str(args.data_dir.resolve())

    if args.demo:
        from game_forge import storage
        from game_forge.demo import create_demo_documents
        storage.init_storage(args.data_dir or ROOT / "data")
        count = create_demo_documents()
        print(f"Seeded {count} reference documents")

    print(f"Starting API on http://localhost:{args.port} ...")
    uvicorn.run("game_forge.app:app", host=args.host, port=args.port, reload=args.reload)


if __name__ == "__main__":
    main()
