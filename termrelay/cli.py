#!/usr/bin/env python3

# termrelay - Chat relay for long-lived interactive terminal programs
# Copyright (C) 2025 Robert Macrae
#
# This program is free software: you can redistribute it and/or modify
# it under the terms of the GNU Affero General Public License as published
# by the Free Software Foundation, either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE.  See the
# GNU Affero General Public License for more details.
#
# You should have received a copy of the GNU Affero General Public License
# along with this program.  If not, see <https://www.gnu.org/licenses/>.

"""termrelay CLI - run the Slack relay or inspect the frame filter against a live program"""

import argparse
import os
import select
import signal
import sys
import termios
import threading
import tty
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config import RelayConfig, set_config
from .errors import ProcessUnavailableError
from .filters import explain_frame, filter_frame, strip_ansi
from .ingest import OutputIngestor
from .logs import log_message, setup_logging
from .pty_process import PtyProcess
from .session import resolve_binary
from .window import StreamTicker

FILTER_TEST_INTERVAL = 0.5

# Set by signal handlers, checked by the serve loop
shutdown_event = threading.Event()


def signal_handler(signum, frame):
    log_message("INFO", f"Received signal {signum}, shutting down")
    shutdown_event.set()


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description='termrelay - Relay an interactive terminal program into chat',
        usage='%(prog)s [options] serve\n       %(prog)s [options] filter-test [program arguments...]'
    )

    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    parser.add_argument('-v', '--verbose', action='count', default=0,
                        help='Increase verbosity (-v, -vv)')
    parser.add_argument('--log-file', type=str, metavar='FILE',
                        help='Write debug logs to FILE')
    parser.add_argument('--data-dir', type=str, metavar='DIR',
                        help='Directory for session configs and secrets (default: data)')
    parser.add_argument('--binary', type=str, metavar='PATH',
                        help='Interactive program to run (default: auggie)')

    subparsers = parser.add_subparsers(dest='command')

    serve = subparsers.add_parser('serve', help='Relay Slack direct messages into sessions')
    serve.add_argument('--tick-interval', type=float, metavar='SECONDS',
                       help='Seconds between streaming updates')

    filter_test = subparsers.add_parser('filter-test',
                                        help='Run the program interactively and print raw vs filtered frames')
    filter_test.add_argument('--output-dir', type=str, metavar='DIR',
                             help='Where raw.txt and filtered.txt are written (default: <data-dir>/filter-test)')
    filter_test.add_argument('arguments', nargs=argparse.REMAINDER,
                             help='Arguments passed to the program')

    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        parser.exit(2)
    return args


def run_serve(config: RelayConfig) -> int:
    """Run the Slack relay until interrupted"""
    # Imported here so filter-test works without Slack credentials
    from .comms import SlackRelay
    from .manager import SessionManager
    from .storage import ConfigStore

    if not config.slack_bot_token or not config.slack_app_token:
        print("Error: SLACK_BOT_TOKEN and SLACK_APP_TOKEN must be set (environment or .env)", file=sys.stderr)
        return 1

    store = ConfigStore(config.data_dir)
    store.ensure_store()
    manager = SessionManager(store, config)
    relay = SlackRelay(manager, config.slack_bot_token, config.slack_app_token)

    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)

    try:
        relay.start()
    except Exception as e:
        print(f"Error: could not connect to Slack: {e}", file=sys.stderr)
        return 1

    print(f"termrelay {__version__} relaying Slack direct messages (Ctrl+C to stop)")
    try:
        while not shutdown_event.wait(1.0):
            pass
    finally:
        relay.stop()
    return 0


class FilterTest:
    """Interactive passthrough that shows what the frame filter keeps from the program's output"""

    def __init__(self, process: PtyProcess, output_dir: Path, interval: float = FILTER_TEST_INTERVAL,
                 explain: bool = False):
        self.process = process
        self.ingestor = OutputIngestor()
        self.output_dir = output_dir
        self.raw_file = output_dir / 'raw.txt'
        self.filtered_file = output_dir / 'filtered.txt'
        self.interval = interval
        self.explain = explain
        self.raw_mode = False
        process.on_data(self.ingestor.on_data)

    def prepare_files(self):
        self.output_dir.mkdir(parents=True, exist_ok=True)
        self.raw_file.write_text('', encoding='utf-8')
        self.filtered_file.write_text('', encoding='utf-8')

    def _print(self, text: str):
        # Raw mode disables output post-processing, so newlines need an explicit carriage return
        if self.raw_mode:
            text = text.replace('\n', '\r\n')
        sys.stdout.write(text + ('\r\n' if self.raw_mode else '\n'))
        sys.stdout.flush()

    def tick(self):
        if not self.ingestor.has_pending():
            return
        chunk = self.ingestor.drain()
        raw = strip_ansi(chunk)
        filtered = filter_frame(chunk)

        self._print('\n===== RAW (cleaned ANSI) =====')
        self._print(raw)
        self._print('===== FILTERED =====')
        self._print(filtered)
        if self.explain:
            self._print('===== DROPPED =====')
            for line, reason in explain_frame(chunk):
                self._print(f"[{reason}] {line}")

        with open(self.raw_file, 'a', encoding='utf-8') as f:
            f.write(raw + '\n')
        with open(self.filtered_file, 'a', encoding='utf-8') as f:
            f.write(filtered + '\n')

    def run(self) -> int:
        self.prepare_files()
        self.process.spawn()
        ticker = StreamTicker(self.tick, interval=self.interval, max_lifetime=None,
                              name='termrelay-filter-test').start()

        fd = sys.stdin.fileno()
        old_settings = None
        if os.isatty(fd):
            old_settings = termios.tcgetattr(fd)
            tty.setraw(fd)
            self.raw_mode = True
        try:
            # Keyboard passthrough; Ctrl+C reaches the program as a keystroke in raw mode
            while self.process.is_alive():
                ready, _, _ = select.select([fd], [], [], 0.1)
                if not ready:
                    continue
                data = os.read(fd, 1024)
                if not data:
                    break
                self.process.write(data.decode('utf-8', errors='replace'))
        except KeyboardInterrupt:
            self.process.interrupt()
        finally:
            if old_settings is not None:
                termios.tcsetattr(fd, termios.TCSADRAIN, old_settings)
                self.raw_mode = False
            if not self.process.wait(0.3):
                self.process.kill()
            ticker.cancel()
            self.tick()
        print(f"\nRaw frames written to {self.raw_file}")
        print(f"Filtered frames written to {self.filtered_file}")
        return 0


def run_filter_test(config: RelayConfig, arguments: List[str], output_dir: Optional[str] = None,
                    explain: bool = False) -> int:
    print('[filter-test] Starting the program with raw vs filtered capture. Exit the program to finish.')
    argv = [resolve_binary(config.binary)] + list(arguments)
    session_defaults = config.session_defaults
    process = PtyProcess(argv, cwd=os.getcwd(), env=os.environ,
                         cols=session_defaults.size['cols'], rows=session_defaults.size['rows'])
    target = Path(output_dir) if output_dir else Path(config.data_dir) / 'filter-test'
    try:
        return FilterTest(process, target, explain=explain).run()
    except ProcessUnavailableError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv: Optional[List[str]] = None):
    """Main entry point for the CLI"""
    args = parse_arguments(argv)

    config = RelayConfig.from_env()
    config.merge_with_args(args)
    set_config(config)

    # Set up logging early if a log file is configured
    if config.log_file:
        setup_logging(config.log_file, mode='w', verbosity=config.verbosity)
    log_message("INFO", f"termrelay {__version__} starting: {args.command}")

    try:
        if args.command == 'serve':
            exit_code = run_serve(config)
        else:
            arguments = [a for a in args.arguments if a != '--']
            exit_code = run_filter_test(config, arguments, args.output_dir, explain=args.verbose > 0)
    except KeyboardInterrupt:
        exit_code = 130
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        log_message("ERROR", f"Unhandled error: {type(e).__name__}: {e}")
        exit_code = 1
    sys.exit(exit_code)


if __name__ == '__main__':
    main()
