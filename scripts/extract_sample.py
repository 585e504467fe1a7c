"""Run the extraction pipeline on one image file, URL or text snippet.

Usage:
    python scripts/extract_sample.py --url https://www.youtube.com/watch?v=...
    python scripts/extract_sample.py --image flyer.jpg
    python scripts/extract_sample.py --text "Jazz Night, Friday Nov 21 at 8pm, Blue Room"
"""

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from eventide.config import settings
from eventide.extraction.orchestrator import build_orchestrator
from eventide.pipeline_config import InputKind


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__, formatter_class=argparse.RawDescriptionHelpFormatter)
    group = parser.add_mutually_exclusive_group(required=True)
    group.add_argument("--image", type=Path, help="Flyer image file")
    group.add_argument("--url", help="Video or web page URL")
    group.add_argument("--text", help="Free text describing an event")
    parser.add_argument("--frames", type=int, default=None, help="Frames to sample from a video")
    args = parser.parse_args()

    logging.basicConfig(level=settings.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")

    if args.image:
        if not args.image.exists():
            print(f"Image file not found: {args.image}")
            sys.exit(1)
        kind, data = InputKind.IMAGE, args.image.read_bytes()
    elif args.url:
        kind, data = InputKind.URL, args.url
    else:
        kind, data = InputKind.TEXT, args.text

    orchestrator = build_orchestrator(settings)
    result = asyncio.run(orchestrator.extract(kind, data, frame_count=args.frames))

    print(f"Winner: {result.winner.value if result.winner else 'text evidence'}")
    if result.qr_code_url:
        print(f"QR code: {result.qr_code_url}")
    print(json.dumps(result.draft.to_dict(), indent=2))
    print("\nTracks:")
    for name, outcome in result.source_metadata.get("tracks", {}).items():
        print(f"  {name:<12} {outcome['status']:<10} {outcome['elapsed']:.1f}s")


if __name__ == "__main__":
    main()
