"""
Local CLI entrypoint for DISC-E.

Architectural role:
- Runs the generation client and the compositor without Discord, so operators
  can check provider connectivity and output from a terminal.
- Shares configuration loading with the bot (`disce.config.load_config`).

Request lifecycle:
1. Parse arguments (`prompt`, optional `--output`, `--retries`).
2. Build a `GenerationRequest` with a local identity.
3. Call the generation client.
4. Composite fragment results and write the JPEG, write decoded single-shot
   bytes, or print the image URL.

Error handling strategy:
- `GenerationFailure` / `CompositionFailure` print a message and exit with
  status 1; no traceback is shown.
- Invalid configuration (`ValueError`) exits with status 2.
"""

import argparse
import dataclasses
import logging
import sys
import time

from disce.config import load_config
from disce.core.errors import CompositionFailure, GenerationFailure
from disce.core.request_types import FragmentResult, GenerationRequest
from disce.image.client import GenerationClient
from disce.image.compositor import ImageCompositor


LOCAL_USER_ID = 0
LOCAL_CHANNEL_ID = 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="disce-generate",
        description="Generate an image for a prompt with the configured provider.",
    )
    parser.add_argument("prompt", nargs="+", help="Prompt text")
    parser.add_argument("-o", "--output", default=None, help="Output file (default: <id>.jpg)")
    parser.add_argument("--retries", type=int, default=None, help="Override DALLE_RETRIES")
    parser.add_argument("-v", "--verbose", action="store_true", help="Debug logging")
    return parser


def main(argv=None) -> int:
    """
    Run one generation and write or print its result.

    Returns:
    - 0 on success, 1 on generation/composition failure, 2 on bad configuration.
    """
    args = build_parser().parse_args(argv)

    try:
        config = load_config()
        if args.retries is not None:
            config = dataclasses.replace(config, max_attempts=args.retries)
    except ValueError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    logging.basicConfig(
        level="DEBUG" if args.verbose else config.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    prompt = " ".join(args.prompt).strip()
    if not prompt:
        print("Prompt must not be empty.", file=sys.stderr)
        return 2

    request = GenerationRequest(
        id=int(time.time() * 1000),
        prompt=prompt,
        author_id=LOCAL_USER_ID,
        author_name="cli",
        channel_id=LOCAL_CHANNEL_ID,
    )

    client = GenerationClient(config)
    compositor = ImageCompositor(config.scratch_dir, quality=config.jpeg_quality)

    try:
        result = client.generate(request)

        if isinstance(result, FragmentResult):
            data = compositor.compose(request.id, result.fragments)
            output = args.output or f"{request.id}.jpg"
        elif result.url:
            print(result.url)
            print(f"Generated in {result.duration:.1f}s")
            return 0
        else:
            data = result.data
            output = args.output or f"{request.id}.png"

    except (GenerationFailure, CompositionFailure) as exc:
        print(f"Generation failed: {exc}", file=sys.stderr)
        return 1

    with open(output, "wb") as f:
        f.write(data)

    print(f"Wrote {output} ({len(data)} bytes) in {result.duration:.1f}s "
          f"after {result.attempts} attempt(s)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
