"""
Command-line front end
Enhance a folder of listing photos through the remote service
"""
import sys
import signal
import asyncio
import logging
import argparse
from pathlib import Path
from typing import Callable, List, Optional

import httpx

from .config import get_config, ProcessingStatus
from .presets import cost, list_presets
from .records import ImageQueue, ImageRecord
from .enhance_client import EnhanceClient, EnhanceError
from .queue_controller import (
    EnhancementQueue,
    EnhancementSettings,
    CreditBalance,
    BatchSignal,
    BatchOutcome,
)
from .logging_config import setup_logging

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILED = 1
EXIT_CANCELLED = 130


def install_signal_handlers(queue: EnhancementQueue) -> Callable[[], None]:
    """Cancel the queue on SIGINT/SIGTERM; returns a function that removes the handlers"""
    loop = asyncio.get_running_loop()
    installed = []
    previous = {}

    def _handle_signal(signum):
        logger.info(f"Received signal {signum}, stopping after the current photo...")
        queue.cancel()

    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, _handle_signal, signum)
            installed.append(signum)
        except (NotImplementedError, RuntimeError):
            # Windows event loops lack add_signal_handler
            previous[signum] = signal.signal(
                signum, lambda s, frame: loop.call_soon_threadsafe(_handle_signal, s)
            )

    def _remove():
        for signum in installed:
            loop.remove_signal_handler(signum)
        for signum, handler in previous.items():
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)

    return _remove


def result_filename(record: ImageRecord) -> str:
    """Local file name for an enhanced result"""
    suffix = Path(httpx.URL(record.result_url).path).suffix if record.result_url else ""
    stem = Path(record.filename).stem
    return f"{stem}_enhanced{suffix or '.jpg'}"


def exit_code(outcome: BatchOutcome, images: ImageQueue) -> int:
    if outcome.signal == BatchSignal.CANCELLED:
        return EXIT_CANCELLED
    if not outcome.ran:
        return EXIT_FAILED
    if images.failed():
        return EXIT_FAILED
    return EXIT_OK


def print_summary(images: ImageQueue, outcome: BatchOutcome, balance: CreditBalance):
    print("\n" + "=" * 50)
    print("ENHANCEMENT SUMMARY")
    print("=" * 50)
    print(f"Result:      {outcome.signal.value}")
    if outcome.message:
        print(f"Details:     {outcome.message}")
    counts = images.counts()
    print(f"Completed:   {counts[ProcessingStatus.COMPLETED.value]}")
    print(f"Failed:      {counts[ProcessingStatus.FAILED.value]}")
    print(f"Pending:     {counts[ProcessingStatus.PENDING.value]}")
    print(f"Credits:     {balance.value if balance.value is not None else 'unknown'}")
    print("-" * 50)
    for record in images:
        if record.status == ProcessingStatus.COMPLETED:
            print(f"  ✅ {record.filename} -> {record.result_url}")
        elif record.status == ProcessingStatus.FAILED:
            print(f"  ❌ {record.filename}: {record.failure_reason}")
        else:
            print(f"  ⏸️  {record.filename}: {record.status.value}")
    print("=" * 50)


async def download_results(client: EnhanceClient, images: ImageQueue, output_dir: Path) -> int:
    """Download every completed result into ``output_dir``; returns how many were saved"""
    saved = 0
    for record in images.completed():
        try:
            await client.download(record.result_url, output_dir / result_filename(record))
            saved += 1
        except EnhanceError as e:
            logger.error(f"Download failed for {record.filename}: {e}")
    return saved


async def run_enhance(args: argparse.Namespace, client: Optional[EnhanceClient] = None) -> int:
    settings = EnhancementSettings(
        preset=args.preset,
        strength=args.strength,
        face_enhance=args.face_enhance,
    )

    with ImageQueue() as images:
        added = images.add_files(args.paths)
        if not added:
            print("No images found to enhance")
            return EXIT_FAILED
        logger.info(f"Queued {len(added)} photo(s), {cost(settings.preset)} credit(s) each")

        async with (client or EnhanceClient()) as api:
            balance = CreditBalance()
            if not args.skip_credit_check:
                try:
                    status = await api.fetch_credits()
                except EnhanceError as e:
                    logger.warning(f"Could not read credit balance: {e}")
                else:
                    if not status.logged_in:
                        print("Not logged in: set ENHANCE_SESSION_TOKEN")
                        return EXIT_FAILED
                    balance = CreditBalance(status.credits)

            queue = EnhancementQueue(api, balance)
            remove_handlers = install_signal_handlers(queue)
            try:
                outcome = await queue.start(images, settings)
                if args.retry and outcome.signal == BatchSignal.FINISHED and images.failed():
                    outcome = await queue.retry(images, settings)
            finally:
                remove_handlers()

            print_summary(images, outcome, balance)

            if args.output and images.completed():
                saved = await download_results(api, images, Path(args.output))
                print(f"Saved {saved} enhanced photo(s) to {args.output}")

        return exit_code(outcome, images)


async def run_credits(client: Optional[EnhanceClient] = None) -> int:
    async with (client or EnhanceClient()) as api:
        try:
            status = await api.fetch_credits()
        except EnhanceError as e:
            print(f"Could not read credit balance: {e}")
            return EXIT_FAILED
    if not status.logged_in:
        print("Not logged in")
        return EXIT_FAILED
    print(f"Credits: {status.credits}")
    return EXIT_OK


def run_presets() -> int:
    default = get_config().presets.default_preset
    for key, info in list_presets():
        marker = "*" if key == default else " "
        badge = f" [{info.badge}]" if info.badge else ""
        print(f"{marker} {key:<10} {info.credits} credit(s)  {info.name}{badge}: {info.description}")
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    config = get_config()
    parser = argparse.ArgumentParser(
        prog='realty-enhance',
        description='Enhance real-estate photos through the enhancement service'
    )
    parser.add_argument('--log-level', default=config.log_level, help='Logging level')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    enhance_parser = subparsers.add_parser('enhance', help='Enhance photos or folders of photos')
    enhance_parser.add_argument('paths', nargs='+', help='Image files or directories')
    enhance_parser.add_argument('--preset', default=config.presets.default_preset,
                                help='Enhancement preset (see the presets command)')
    enhance_parser.add_argument('--strength', type=int, default=config.strength.default,
                                help=f'Intensity {config.strength.minimum}-{config.strength.maximum}')
    enhance_parser.add_argument('--face-enhance', action='store_true', help='Enable face enhancement')
    enhance_parser.add_argument('--output', help='Directory to download enhanced photos into')
    enhance_parser.add_argument('--retry', action='store_true', help='Retry failed photos once')
    enhance_parser.add_argument('--skip-credit-check', action='store_true',
                                help='Do not read the balance before starting')

    subparsers.add_parser('presets', help='List presets and their credit cost')
    subparsers.add_parser('credits', help='Show the current credit balance')

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point"""
    parser = build_parser()
    args = parser.parse_args(argv)

    config = get_config()
    setup_logging(level=args.log_level, log_to_file=config.log_to_file)

    if not args.command:
        parser.print_help()
        return EXIT_FAILED

    if args.command == 'presets':
        return run_presets()
    if args.command == 'credits':
        return asyncio.run(run_credits())

    try:
        return asyncio.run(run_enhance(args))
    except ValueError as e:
        print(f"Invalid settings: {e}")
        return EXIT_FAILED


if __name__ == "__main__":
    sys.exit(main())
