"""Application entry point for the receipt OCR API server."""

import argparse

import uvicorn

from receipt_ocr.api.app import app
from receipt_ocr.utils.config import load_config
from receipt_ocr.utils.logger import setup_logging


def main(argv: list[str] | None = None) -> None:
    """Start the FastAPI application server.

    Args:
        argv: Command-line arguments (defaults to sys.argv).
    """
    parser = argparse.ArgumentParser(description="Receipt OCR API server")
    parser.add_argument("--host", default="0.0.0.0", help="Bind address (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    args = parser.parse_args(argv)

    config = load_config()
    setup_logging(config.log_level)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
