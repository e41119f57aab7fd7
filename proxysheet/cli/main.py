import argparse
import logging

from proxysheet.core.engine import run_job_from_manifest
from proxysheet.core.errors import UserFacingError
from proxysheet.core.types import UpscaleProgress

def _print_upscale_progress(p: UpscaleProgress) -> None:
    if p.done:
        print(f"upscale: {p.current}/{p.total} done")
    elif p.current:
        print(f"upscale: {p.current}/{p.total}")

def main(argv=None):
    ap = argparse.ArgumentParser(prog="proxysheet")
    ap.add_argument("--manifest", required=True)
    ap.add_argument("--verbose", action="store_true")
    args = ap.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )
    try:
        output = run_job_from_manifest(
            args.manifest,
            upscale_progress_cb=_print_upscale_progress,
            log_cb=print,
        )
        print(f"OK: {output}")
    except UserFacingError as e:
        print(f"ERROR: {e}")
        raise SystemExit(2)

if __name__ == "__main__":
    main()
