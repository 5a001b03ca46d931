"""
Command Line Interface

Transforms an XForm file and writes form.html, model.xml and result.json.

Usage:
    xform-transformer <xform> [--media NAME=PATH ...] [--theme NAME] [--out-dir DIR]

Examples:
    # Transform into the current directory
    xform-transformer survey.xml

    # Map media and force a theme
    xform-transformer survey.xml --media logo.png=/media/logo.png --theme grid

    # Plain lxml backend, no Markdown
    xform-transformer survey.xml --backend host --no-markdown -o out/
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Dict, List, Optional

from xform_transformer import __version__
from xform_transformer.config import TransformerConfig, get_config, load_config, set_config
from xform_transformer.dom import get_backend
from xform_transformer.errors import XFormTransformerError
from xform_transformer.transform import reload_sheets
from xform_transformer.transformer import Survey, transform

logger = logging.getLogger(__name__)


def parse_media(pairs: Optional[List[str]]) -> Dict[str, str]:
    """Turn ``NAME=PATH`` arguments into a media map."""
    media = {}
    for pair in pairs or []:
        name, separator, path = pair.partition("=")
        if not separator or not name:
            raise argparse.ArgumentTypeError(f"Expected NAME=PATH, got '{pair}'")
        media[name] = path
    return media


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="xform-transformer",
        description="Transform an ODK XForm into an HTML form and an XML model",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s survey.xml
  %(prog)s survey.xml --media logo.png=/media/logo.png --theme grid
  %(prog)s survey.xml --backend host --no-markdown -o out/
        """
    )

    parser.add_argument(
        "xform",
        type=Path,
        help="Path to the XForm file"
    )

    parser.add_argument(
        "-m", "--media",
        action="append",
        metavar="NAME=PATH",
        help="Media mapping; repeat for more files"
    )

    parser.add_argument(
        "--theme",
        default=None,
        help="Theme replacing the form's theme-* class"
    )

    parser.add_argument(
        "--no-markdown",
        action="store_true",
        help="Leave labels and hints unrendered"
    )

    parser.add_argument(
        "--openclinica",
        action="store_true",
        help="Emit OpenClinica attributes"
    )

    parser.add_argument(
        "--backend",
        choices=["native", "host"],
        default=None,
        help="Document backend (default: from configuration)"
    )

    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="YAML or JSON configuration file"
    )

    parser.add_argument(
        "-o", "--out-dir",
        type=Path,
        default=Path("."),
        help="Output directory (default: current directory)"
    )

    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: from configuration)"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    try:
        media = parse_media(args.media)
    except argparse.ArgumentTypeError as e:
        parser.error(str(e))

    if args.config:
        set_config(load_config(args.config))
        reload_sheets()
    config = get_config()
    if args.backend:
        config = TransformerConfig.from_dict({**config.to_dict(), 'backend': args.backend})

    logging.basicConfig(
        level=(args.log_level or config.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    xform_path = args.xform.resolve()
    if not xform_path.exists():
        print(f"Error: XForm not found: {xform_path}", file=sys.stderr)
        return 1

    survey = Survey(
        xform=xform_path.read_text(encoding="utf-8"),
        media=media,
        theme=args.theme,
        markdown=False if args.no_markdown else None,
        openclinica=args.openclinica,
    )

    try:
        result = transform(survey, backend=get_backend(config.backend))
    except XFormTransformerError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    out_dir = args.out_dir.resolve()
    out_dir.mkdir(parents=True, exist_ok=True)
    (out_dir / "form.html").write_text(result.form, encoding="utf-8")
    (out_dir / "model.xml").write_text(result.model, encoding="utf-8")
    with open(out_dir / "result.json", 'w', encoding='utf-8') as f:
        json.dump(result.to_dict(), f, indent=2, ensure_ascii=False)

    logger.info(f"Wrote form.html, model.xml and result.json to {out_dir}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
