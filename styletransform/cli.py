# styletransform/cli.py
import argparse
import logging
import sys
from typing import Optional

from dotenv import load_dotenv

from styletransform.runtime.models import GenerationMode, GenerationRequest, GenerationSettings
from styletransform.runtime.orchestrator import GenerationError, build_orchestrator


def main(argv: Optional[list] = None) -> int:
    load_dotenv()

    parser = argparse.ArgumentParser(
        prog="styletransform",
        description="Generate one image through the provider fallback chain",
    )
    parser.add_argument("prompt", nargs="+", help='Prompt text, e.g. "a red bicycle"')
    parser.add_argument(
        "--mode",
        choices=[m.value for m in GenerationMode],
        default=GenerationMode.TEXT_TO_IMAGE.value,
    )
    parser.add_argument("--image", default=None, help="Input image URL (image-to-image)")
    parser.add_argument("--style", default=None, help="Style preset name or free text")
    parser.add_argument("--width", type=int, default=512)
    parser.add_argument("--height", type=int, default=512)
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument(
        "--tiers",
        default=None,
        help="Colon-separated tier order overriding GENERATION_TIERS, e.g. pollinations:replicate",
    )
    parser.add_argument("-v", "--verbose", action="store_true")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )

    try:
        request = GenerationRequest(
            prompt=" ".join(args.prompt),
            mode=GenerationMode(args.mode),
            input_image_ref=args.image,
            style_preset=args.style,
            settings=GenerationSettings(width=args.width, height=args.height, seed=args.seed),
        )
    except ValueError as e:
        print(f"[FAIL] {e}")
        return 2

    order = [t.strip().lower() for t in args.tiers.split(":") if t.strip()] if args.tiers else None
    try:
        orchestrator = build_orchestrator(order=order)
    except ValueError as e:
        print(f"[FAIL] {e}")
        return 2

    try:
        result = orchestrator.orchestrate(request)
    except GenerationError as e:
        print(f"[FAIL] {e}")
        return 1

    print(f"[OK] method={result.method}  cost={result.cost}  url={result.image_url}")
    for entry in result.meta.get("error_chain") or []:
        print(f"  skipped {entry['provider']}: {entry['kind']} {entry['message']}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
