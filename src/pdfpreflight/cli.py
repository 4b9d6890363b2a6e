# This Source Code Form is subject to the terms of the Mozilla Public
# License, v. 2.0. If a copy of the MPL was not distributed with this
# file, You can obtain one at https://mozilla.org/MPL/2.0/.

"""Click-based CLI for pdfpreflight.

Checks whether pages of a PDF are safe to rasterize as thumbnails and
prints the decision with its metrics.
"""

# Standard Library
import asyncio
import json
import logging
import sys
from pathlib import Path

# Third Party
import click
from colorama import Fore, Style, init
from tqdm import tqdm

# Local
from . import __version__
from .config import DeviceProfile, load_config
from .engine import open_document
from .exceptions import ConfigurationError, DocumentError
from .preflight import PageResult, preflight_document
from .utils import setup_logging

EXIT_SUCCESS = 0
EXIT_GENERAL_ERROR = 1
EXIT_FILE_NOT_FOUND = 2
EXIT_SKIPPED = 3
EXIT_INVALID_DOCUMENT = 4

logger = logging.getLogger(__name__)


def print_render(msg: str) -> None:
    """Prints a render verdict in green."""
    click.echo(f"{Fore.GREEN}\u2713{Style.RESET_ALL} {msg}")


def print_skip(msg: str) -> None:
    """Prints a skip verdict in yellow."""
    click.echo(f"{Fore.YELLOW}\u26a0{Style.RESET_ALL} {msg}")


def print_error(msg: str) -> None:
    """Prints an error message in red.

    Args:
        msg: The error message to output.
    """
    click.echo(f"{Fore.RED}\u2717 Error:{Style.RESET_ALL} {msg}", err=True)


def _format_bytes(value: float | int | None) -> str:
    if value is None:
        return "n/a"
    if value == float("inf"):
        return "inf"
    return f"{value / 1_000_000:.1f} MB"


def _print_result(result: PageResult, quiet: bool) -> None:
    decision = result.decision
    metrics = decision.metrics
    estimated = (
        metrics.estimated_bytes
        if metrics.estimated_bytes is not None
        else metrics.stage_a_estimated_bytes
    )
    msg = (
        f"Page {result.page_number}: {decision.decision.value} "
        f"({decision.reason}, estimated {_format_bytes(estimated)} "
        f"of {_format_bytes(metrics.budget_bytes)})"
    )
    if decision.should_render:
        if not quiet:
            print_render(msg)
    else:
        print_skip(msg)


@click.command()
@click.argument("input_path", required=False, type=click.Path())
@click.option(
    "-p",
    "--page",
    "pages",
    type=click.IntRange(min=1),
    multiple=True,
    help="1-based page number to check (repeatable, default: 1)",
)
@click.option(
    "-a",
    "--all-pages",
    is_flag=True,
    help="Check every page",
)
@click.option(
    "--profile",
    type=click.Choice([p.value for p in DeviceProfile]),
    default=DeviceProfile.DESKTOP.value,
    help="Default limits preset (default: desktop)",
)
@click.option(
    "--budget-bytes",
    type=click.IntRange(min=1),
    default=None,
    help="Worst-case byte budget (overrides the profile)",
)
@click.option(
    "--max-decoded-image-pixels",
    type=click.IntRange(min=1),
    default=None,
    help="Decoded image pixel ceiling (overrides the profile)",
)
@click.option(
    "--timeout-ms",
    type=click.IntRange(min=1),
    default=None,
    help="Operator list timeout in milliseconds (overrides the profile)",
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print decisions as JSON",
)
@click.option(
    "-q",
    "--quiet",
    is_flag=True,
    help="Only output skipped pages and errors",
)
@click.option(
    "--verbose",
    is_flag=True,
    help="Detailed output",
)
@click.version_option(version=__version__)
def main(
    input_path: str | None,
    pages: tuple[int, ...],
    all_pages: bool,
    profile: str,
    budget_bytes: int | None,
    max_decoded_image_pixels: int | None,
    timeout_ms: int | None,
    as_json: bool,
    quiet: bool,
    verbose: bool,
) -> None:
    """Decides whether PDF pages are safe to render as thumbnails.

    INPUT is the path to the PDF file.
    """
    # Initialize colorama for Windows compatibility
    init()

    if input_path is None:
        click.echo(click.get_current_context().get_help())
        sys.exit(EXIT_GENERAL_ERROR)

    if all_pages and pages:
        raise click.UsageError("--page and --all-pages cannot be used together")

    setup_logging(verbose=verbose, quiet=quiet)

    try:
        exit_code = _run(
            Path(input_path),
            pages=pages,
            all_pages=all_pages,
            profile=profile,
            budget_bytes=budget_bytes,
            max_decoded_image_pixels=max_decoded_image_pixels,
            timeout_ms=timeout_ms,
            as_json=as_json,
            quiet=quiet,
        )
    except FileNotFoundError as e:
        print_error(str(e))
        exit_code = EXIT_FILE_NOT_FOUND
    except PermissionError as e:
        print_error(f"Access denied: {e}")
        exit_code = EXIT_GENERAL_ERROR
    except ConfigurationError as e:
        print_error(str(e))
        exit_code = EXIT_GENERAL_ERROR
    except DocumentError as e:
        print_error(str(e))
        exit_code = EXIT_INVALID_DOCUMENT
    except Exception as e:
        logger.exception("Unexpected error")
        print_error(f"Unexpected error: {e}")
        exit_code = EXIT_GENERAL_ERROR

    sys.exit(exit_code)


def _run(
    input_path: Path,
    *,
    pages: tuple[int, ...],
    all_pages: bool,
    profile: str,
    budget_bytes: int | None,
    max_decoded_image_pixels: int | None,
    timeout_ms: int | None,
    as_json: bool,
    quiet: bool,
) -> int:
    """Runs the preflight for one file and prints the results.

    Returns:
        EXIT_SUCCESS if every page may render, EXIT_SKIPPED otherwise.
    """
    if not input_path.is_file():
        raise FileNotFoundError(f"File not found: {input_path}")

    config = load_config(
        profile,
        budget_bytes=budget_bytes,
        max_decoded_image_pixels=max_decoded_image_pixels,
        timeout_ms=timeout_ms,
    )
    data = input_path.read_bytes()

    page_numbers: list[int] | None
    if all_pages:
        pdf = open_document(data)
        try:
            page_numbers = list(range(1, len(pdf.pages) + 1))
        finally:
            pdf.close()
    else:
        page_numbers = list(pages) if pages else None

    progress_bar = None
    if page_numbers is not None and len(page_numbers) > 1 and not (quiet or as_json):
        progress_bar = tqdm(
            total=len(page_numbers),
            desc="Preflight",
            unit="page",
            ncols=80,
        )

    def _on_progress(current_idx: int, total: int, page_number: int) -> None:
        if progress_bar is not None:
            progress_bar.update(1)
            progress_bar.set_postfix_str(f"page {page_number}")

    try:
        results = asyncio.run(
            preflight_document(
                data,
                page_numbers=page_numbers,
                config=config,
                on_progress=_on_progress,
            )
        )
    finally:
        if progress_bar is not None:
            progress_bar.close()

    if as_json:
        payload = {
            "file": str(input_path),
            "pages": [
                {"page": r.page_number, **r.decision.to_dict()} for r in results
            ],
        }
        click.echo(json.dumps(payload, indent=2))
    else:
        for result in results:
            _print_result(result, quiet)

    if all(r.decision.should_render for r in results):
        return EXIT_SUCCESS
    return EXIT_SKIPPED


if __name__ == "__main__":
    main()
