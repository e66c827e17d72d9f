#!/usr/bin/env python3
"""CLI for the EduVerse certificate service.

Usage:
    python -m cli <command>

Commands:
    render    Render a certificate PNG locally without publishing it
    generate  Run the full pipeline and print the JSON response envelope
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

from pydantic import ValidationError

from core.config import get_settings
from core.http_client import close_http_client
from core.logger import configure_logging, get_logger
from rendering.compositor import CompositionError, FontSet, compose
from rendering.layout import NameTooLongError
from rendering.optimizer import OptimizeError, optimize
from rendering.qr import QrEncodeError
from schemas import CertificateGenerationRequest, PipelineFailure
from services.certificate_pipeline import (
    build_certificate_request,
    generate_with_retry,
    get_certificate_pipeline,
)
from services.template_service import TemplateFetchError, fetch_template

# Logs go to stderr so stdout stays machine-readable
configure_logging(stream=sys.stderr)
logger = get_logger(__name__)


def _add_request_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--student-name", required=True)
    parser.add_argument("--course-name", required=True)
    parser.add_argument("--course-id", required=True)
    parser.add_argument("--completion-date")
    parser.add_argument("--instructor-name")
    parser.add_argument("--certificate-id")
    parser.add_argument("--wallet-address")


def _request_from_args(args: argparse.Namespace):
    return build_certificate_request(
        CertificateGenerationRequest(
            student_name=args.student_name,
            course_name=args.course_name,
            course_id=args.course_id,
            completion_date=args.completion_date,
            instructor_name=args.instructor_name,
            certificate_id=args.certificate_id,
            wallet_address=args.wallet_address,
        )
    )


async def _load_template(source: str) -> bytes:
    if source.startswith(("http://", "https://")):
        try:
            return await fetch_template(source)
        finally:
            await close_http_client()
    return Path(source).read_bytes()


def cmd_render(args: argparse.Namespace) -> int:
    """Render a certificate to a local PNG file."""
    settings = get_settings()
    request = _request_from_args(args)
    template = asyncio.run(_load_template(args.template or settings.template_url))

    raster = compose(
        template,
        request,
        fonts=FontSet(
            serif_bold=settings.serif_bold_font_path,
            sans=settings.sans_font_path,
            sans_bold=settings.sans_bold_font_path,
        ),
        qr_base_url=settings.qr_base_url,
        min_name_font_size=settings.min_name_font_size,
    )
    if not args.no_optimize:
        raster = optimize(raster)

    output = Path(args.output or f"certificate-{request.certificate_id}.png")
    output.write_bytes(raster.data)
    logger.info(
        "certificate.rendered",
        path=str(output),
        width=raster.width,
        height=raster.height,
        size_bytes=raster.size_bytes,
    )
    print(output)
    return 0


async def _generate(args: argparse.Namespace) -> int:
    request = _request_from_args(args)
    pipeline = get_certificate_pipeline()
    try:
        result = await generate_with_retry(pipeline, request, attempts=args.attempts)
    finally:
        await close_http_client()

    print(json.dumps(result.to_response().model_dump(mode="json", by_alias=True)))
    return 1 if isinstance(result, PipelineFailure) else 0


def cmd_generate(args: argparse.Namespace) -> int:
    """Generate and publish a certificate."""
    return asyncio.run(_generate(args))


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="EduVerse certificate CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    render_parser = subparsers.add_parser(
        "render",
        help="Render a certificate PNG locally without publishing it",
    )
    _add_request_arguments(render_parser)
    render_parser.add_argument(
        "--template", help="Template file path or URL (default: TEMPLATE_URL)"
    )
    render_parser.add_argument("--output", "-o", help="Output PNG path")
    render_parser.add_argument(
        "--no-optimize", action="store_true", help="Skip lossless re-encoding"
    )

    generate_parser = subparsers.add_parser(
        "generate",
        help="Run the full pipeline and print the JSON response envelope",
    )
    _add_request_arguments(generate_parser)
    generate_parser.add_argument(
        "--attempts", type=int, default=1, help="Attempts for retryable failures"
    )

    args = parser.parse_args(argv)

    try:
        if args.command == "render":
            return cmd_render(args)
        elif args.command == "generate":
            return cmd_generate(args)
    except ValidationError as e:
        logger.error("cli.invalid_request", errors=e.error_count())
        print(e, file=sys.stderr)
        return 1
    except (
        TemplateFetchError,
        NameTooLongError,
        QrEncodeError,
        CompositionError,
        OptimizeError,
        OSError,
    ) as e:
        logger.error("cli.render_failed", error_type=type(e).__name__, error=str(e))
        return 1

    parser.print_help()
    return 1


if __name__ == "__main__":
    sys.exit(main())
