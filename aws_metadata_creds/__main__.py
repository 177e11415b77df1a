from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from typing import Iterable, Optional

from aws_metadata_creds.aws import InvalidEnvironment, get_credentials
from aws_metadata_creds.client import HttpClient, HttpError

logger = logging.getLogger("aws_metadata_creds")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="aws-metadata-creds",
        description="Print temporary AWS credentials from the ECS or EC2 metadata service.",
    )
    parser.add_argument(
        "--max-redirects",
        type=int,
        default=10,
        help="Give up after following this many redirects",
    )
    parser.add_argument(
        "--show-secret",
        action="store_true",
        help="Print the secret key and session token instead of redacting them",
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    client = HttpClient(max_redirects=args.max_redirects)
    try:
        creds = asyncio.run(get_credentials(client))
    except (HttpError, InvalidEnvironment):
        logger.exception("Could not retrieve credentials")
        return 1

    exclude = None if args.show_secret else {"secret_key", "session_token"}
    sys.stdout.write(creds.model_dump_json(by_alias=True, exclude=exclude, indent=2) + "\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
