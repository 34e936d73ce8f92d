#!/usr/bin/env python3
"""
render_card.py - Render a music card to a PNG file

Looks a track up on NetEase (or reads its metadata from a JSON file shaped
like the /metadata response) and writes the rendered card to disk.

Usage:
    python scripts/render_card.py --id 1901371647
    python scripts/render_card.py --id 1901371647 --variant phone --gradient
    python scripts/render_card.py --info track.json --variant spotify -o card.png
    python scripts/render_card.py --info track.json --variant phone \\
        --background-image https://example.com/bg.jpg --blur 8 --opacity 0.6

Flags:
    --variant     poster (default), spotify or phone
    --theme       built-in theme id (default: the variant's own)
    --lyric-lines number of lyric lines to keep from a metadata lookup
    --json        print a JSON summary instead of a human-readable one
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from songcard.errors import CardError
from songcard.models import BackgroundConfig, GradientConfig, MusicCardInfo
from songcard.services.compositor import RenderRequest
from songcard.services.context import CardServices
from songcard.services.metadata import process_lyrics
from songcard.utils import sanitize_filename
from songcard.variants import VARIANTS, get_theme, get_variant

DEFAULT_GRADIENT = GradientConfig(
    angle_degrees=180,
    colors=["rgba(0, 0, 0, 0.7)", "rgba(0, 0, 0, 0.3)"],
    stops=[0.0, 1.0],
)


def _load_info(path: Path) -> MusicCardInfo:
    data = json.loads(path.read_text(encoding="utf-8"))
    return MusicCardInfo.from_payload(data)


async def render(args: argparse.Namespace) -> Path:
    variant = get_variant(args.variant)
    services = CardServices.create()
    try:
        if args.info:
            info = _load_info(Path(args.info))
        else:
            fetched = await services.metadata.get(args.platform, args.id)
            lines = args.lyric_lines or (1 if variant.name == "phone" else 5)
            info = fetched.with_overrides(lyrics=process_lyrics(fetched.lyrics, lines))

        background: Optional[BackgroundConfig] = None
        if args.background_image:
            background = BackgroundConfig(
                image_url=args.background_image,
                blur_radius=args.blur,
                opacity=args.opacity,
                gradient=DEFAULT_GRADIENT,
            )

        request = RenderRequest.build(
            info,
            variant,
            theme=get_theme(args.theme or variant.default_theme),
            background=background,
            use_gradient=args.gradient,
        )
        png = await services.compositor.render_png(request)
    finally:
        await services.aclose()

    output = Path(args.output) if args.output else Path(
        sanitize_filename(f"{info.artist} - {info.title} ({variant.name})") + ".png"
    )
    output.write_bytes(png)
    return output


def main() -> int:
    parser = argparse.ArgumentParser(
        description="Render a music card to a PNG file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    source = parser.add_mutually_exclusive_group(required=True)
    source.add_argument("--id", help="Track id on the platform")
    source.add_argument("--info", help="JSON file with title/artist/coverUrl/lyrics/duration")
    parser.add_argument("--platform", default="netease", help="Music platform (default: netease)")
    parser.add_argument("--variant", default="poster", choices=sorted(VARIANTS))
    parser.add_argument("--theme", help="Built-in theme id")
    parser.add_argument("--lyric-lines", type=int, help="Lyric lines kept from a lookup")
    parser.add_argument("--background-image", help="Custom background (phone)")
    parser.add_argument("--blur", type=float, default=0.0, help="Background blur radius 0-20")
    parser.add_argument("--opacity", type=float, default=1.0, help="Background opacity 0-1")
    parser.add_argument("--gradient", action="store_true", help="Apply the gradient overlay")
    parser.add_argument("--output", "-o", help="Output PNG path")
    parser.add_argument("--json", action="store_true", help="Output result as JSON")

    args = parser.parse_args()

    try:
        output = asyncio.run(render(args))
    except (CardError, ValueError) as e:
        if args.json:
            print(json.dumps({"ok": False, "error": str(e)}))
        else:
            print(f"❌ {e}")
        return 1

    logger.debug("Card written to {}", output)
    if args.json:
        print(json.dumps({"ok": True, "output": str(output), "variant": args.variant}))
    else:
        print(f"✅ Card written to {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
