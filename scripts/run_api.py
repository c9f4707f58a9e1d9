#!/usr/bin/env python
"""
Start the pricing API under uvicorn.

Usage:
    python scripts/run_api.py [--port 8000] [--data-dir path/to/csvs] [--no-reload]
"""
import argparse
import os
import subprocess
import sys
from pathlib import Path


def main():
    parser = argparse.ArgumentParser(description="Run the tiered pricing API")
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    parser.add_argument("--data-dir", help="Directory holding the pricing CSV files")
    parser.add_argument("--cache-ttl", type=float, help="Result cache TTL in seconds")
    parser.add_argument("--no-reload", action="store_true")
    args = parser.parse_args()

    project_root = Path(__file__).parent.parent
    os.chdir(project_root)

    # Ensure src is in python path
    env = os.environ.copy()
    src_path = str(project_root / "src")
    if "PYTHONPATH" in env:
        env["PYTHONPATH"] = f"{src_path}{os.pathsep}{env['PYTHONPATH']}"
    else:
        env["PYTHONPATH"] = src_path
    if args.data_dir:
        env["PRICING_DATA_DIR"] = str(Path(args.data_dir).resolve())
    if args.cache_ttl is not None:
        env["PRICING_CACHE_TTL_SECONDS"] = str(args.cache_ttl)

    command = [
        sys.executable, "-m", "uvicorn",
        "tiered_pricing.api.main:app",
        "--host", args.host,
        "--port", str(args.port),
    ]
    if not args.no_reload:
        command.append("--reload")

    print(f"Starting Tiered Pricing API on {args.host}:{args.port}...")
    try:
        subprocess.run(command, env=env)
    except KeyboardInterrupt:
        print("\nAPI stopped.")


if __name__ == "__main__":
    main()
