"""Command-line interface for torrent-console."""

import os
import sys
import logging
import argparse
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from rich.console import Console

from torrent_console import __version__
from torrent_console.config.loader import load_config, ConfigError, set_config_value
from torrent_console.config.validator import validate_config, ValidationError
from torrent_console.engine.protocol import EngineError, format_settings
from torrent_console.engine.types import AddJobParams, StorageMode
from torrent_console.ui.log_ring import LogRing, LogRingHandler
from torrent_console.ui.terminal import Terminal
from torrent_console.workflow.control_loop import ControlContext, ControlLoop, LoopOptions
from torrent_console.workflow.dir_monitor import DirectoryMonitor
from torrent_console.workflow.event_pump import EventPump, PumpOptions
from torrent_console.workflow.job_adder import JobAdder, JobOptions
from torrent_console.workflow.resume_store import ResumeLoader, ResumeStore, load_session_state

logger = logging.getLogger(__name__)

err_console = Console(stderr=True, highlight=False)

# Long options handled by argparse rather than passed to the engine
OWN_LONG_OPTIONS = {'config', 'version', 'list-settings', 'help'}


def create_parser() -> argparse.ArgumentParser:
    """Create and configure argument parser."""
    parser = argparse.ArgumentParser(
        prog='torrent-console',
        usage='%(prog)s [OPTIONS] [TORRENT|MAGNETURL ...]',
        description='Interactive terminal console for a BitTorrent engine',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
ENGINE SETTINGS
  --<name-of-setting>=<value>
                        set the engine setting <name> to <value>
  --list-settings       print all engine settings and exit

TORRENT is a path to a .torrent file
MAGNETURL is a magnet link

Examples:
  # Download into /srv/dl, watching /srv/incoming for new .torrent files
  torrent-console -s /srv/dl -m /srv/incoming ubuntu.torrent

  # Limit each torrent to 500 kB/s down, 20 connections
  torrent-console -D 500 -T 20 'magnet:?xt=urn:btih:...'

  # Override an engine setting
  torrent-console --connections_limit=400 ubuntu.torrent
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    parser.add_argument(
        '--config',
        type=Path,
        metavar='PATH',
        help='Path to torrent_console.yaml (default: ./torrent_console.yaml if present)'
    )

    parser.add_argument(
        '--list-settings',
        action='store_true',
        help='Print all engine settings and exit'
    )

    client = parser.add_argument_group('client options')
    client.add_argument('-f', dest='log_file', metavar='FILE',
                        help='Log all events to the given file')
    client.add_argument('-s', dest='save_path', metavar='PATH',
                        help='Save path for downloads; resume files live in PATH/.resume')
    client.add_argument('-m', dest='monitor_dir', metavar='PATH',
                        help='Monitor directory: .torrent files dropped here are added and removed')
    client.add_argument('-t', dest='poll_interval', type=int, metavar='SECONDS',
                        help='Scan interval of the monitor directory')
    client.add_argument('-F', dest='refresh_delay_ms', type=int, metavar='MILLISECONDS',
                        help='UI refresh delay')
    client.add_argument('-k', dest='high_performance', action='store_true',
                        help='Start from the high performance seed settings')
    client.add_argument('-G', dest='seed_mode', action='store_true',
                        help='Add torrents in seed mode (check hashes on demand)')

    bittorrent = parser.add_argument_group('bittorrent options')
    bittorrent.add_argument('-T', dest='max_connections_per_job', type=int, metavar='LIMIT',
                            help='Max connections per torrent')
    bittorrent.add_argument('-U', dest='upload_limit_kb', type=int, metavar='RATE',
                            help='Per-torrent upload rate limit (kB/s)')
    bittorrent.add_argument('-D', dest='download_limit_kb', type=int, metavar='RATE',
                            help='Per-torrent download rate limit (kB/s)')
    bittorrent.add_argument('-Q', dest='share_mode', action='store_true',
                            help='Share mode: maximize share ratio rather than downloading')
    bittorrent.add_argument('-r', dest='connect_peer', metavar='IP:PORT',
                            help='Connect every torrent to this peer')

    network = parser.add_argument_group('network options')
    network.add_argument('-x', dest='ip_filter', metavar='FILE',
                         help='Load an eMule IP-filter file')
    network.add_argument('-Y', dest='rate_limit_local_peers', action='store_true',
                         help='Rate limit local peers')

    disk = parser.add_argument_group('disk options')
    disk.add_argument('-a', dest='allocation_mode', choices=['sparse', 'allocate'],
                      help='Allocation mode')
    disk.add_argument('-0', dest='disable_disk_io', action='store_true',
                      help="Disable disk I/O, read garbage and don't flush to disk")

    parser.add_argument('targets', nargs='*', metavar='TORRENT|MAGNETURL',
                        help='.torrent files or magnet links to add')

    return parser


def split_setting_args(argv: List[str]) -> Tuple[Dict[str, str], List[str]]:
    """
    Separate ``--name=value`` engine settings from the rest of the arguments

    Returns:
        (settings, remaining arguments)
    """
    settings: Dict[str, str] = {}
    rest: List[str] = []
    for arg in argv:
        if arg.startswith('--') and '=' in arg:
            name, value = arg[2:].split('=', 1)
            if name not in OWN_LONG_OPTIONS:
                settings[name] = value
                continue
        rest.append(arg)
    return settings, rest


# argparse dest -> client config key, for options that override the config file
CLIENT_OVERRIDES = (
    'save_path', 'monitor_dir', 'poll_interval', 'refresh_delay_ms',
    'max_connections_per_job', 'upload_limit_kb', 'download_limit_kb',
    'connect_peer', 'ip_filter', 'allocation_mode',
)
CLIENT_SWITCHES = (
    'high_performance', 'seed_mode', 'share_mode', 'rate_limit_local_peers', 'disable_disk_io',
)


def apply_cli_overrides(config: dict, args: argparse.Namespace, settings: Dict[str, str]) -> None:
    """Apply command line options over the loaded configuration."""
    for key in CLIENT_OVERRIDES:
        value = getattr(args, key, None)
        if value is not None:
            set_config_value(config, f'client.{key}', value)

    for key in CLIENT_SWITCHES:
        if getattr(args, key, False):
            set_config_value(config, f'client.{key}', True)

    if args.log_file:
        set_config_value(config, 'logging.file', args.log_file)

    # Command line settings win over the config file's engine section
    config.setdefault('engine', {}).update(settings)


def _setup_logging(config: dict, log_ring: Optional[LogRing] = None) -> None:
    """
    Setup logging configuration from config.

    Args:
        config: Configuration dictionary
        log_ring: On-screen log; when given, warnings and errors go there
            instead of stderr (the console owns the terminal)
    """
    logging_config = config.get('logging', {})

    # Get log level
    level_str = (logging_config.get('level') or 'INFO').upper()
    level = getattr(logging, level_str, logging.INFO)

    handlers: List[logging.Handler] = []

    if log_ring is not None:
        ring_handler = LogRingHandler(log_ring, level=max(level, logging.WARNING))
        ring_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        handlers.append(ring_handler)
    else:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(logging.Formatter('%(levelname)s: %(message)s'))
        handlers.append(console_handler)

    # File handler (if configured); also receives every logged engine event
    log_file = logging_config.get('file')
    if log_file:
        try:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)

            # Truncate only on the first setup; later reconfigurations append
            file_handler = logging.FileHandler(
                log_file, mode='a' if _is_logging_to(log_path) else 'w'
            )
            file_handler.setLevel(level)
            formatter = logging.Formatter('%(asctime)s - %(name)s - %(levelname)s - %(message)s')
            file_handler.setFormatter(formatter)
            handlers.append(file_handler)
        except OSError as e:
            err_console.print(f"Error: Could not create log file '{log_file}': {e}",
                              style="red", markup=False)
            sys.exit(1)

    logging.basicConfig(
        level=level,
        handlers=handlers,
        force=True  # Override any existing configuration
    )


def _is_logging_to(log_path: Path) -> bool:
    target = os.path.abspath(log_path)
    return any(
        isinstance(h, logging.FileHandler) and h.baseFilename == target
        for h in logging.getLogger().handlers
    )


def _print_settings() -> int:
    from torrent_console.engine.libtorrent_engine import list_settings

    for line in format_settings(list_settings()):
        print(line)
    return 0


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for torrent-console CLI.

    Args:
        argv: Command-line arguments (default: sys.argv[1:])

    Returns:
        Exit code (0 for success, non-zero for failure)
    """
    if argv is None:
        argv = sys.argv[1:]

    parser = create_parser()
    if not argv:
        parser.print_help(sys.stderr)
        return 0

    settings, rest = split_setting_args(argv)
    # Unrecognised switches are ignored; targets may be mixed in with options
    args, _unknown = parser.parse_known_intermixed_args(rest)

    if args.list_settings:
        return _print_settings()

    # Load and validate configuration
    try:
        config = load_config(args.config)
        apply_cli_overrides(config, args, settings)
        validate_config(config)
    except (ConfigError, ValidationError) as e:
        err_console.print(f"Configuration error: {e}", style="red", markup=False)
        return 1

    _setup_logging(config)

    try:
        return run_console(config, args.targets)
    except EngineError as e:
        err_console.print(str(e), style="red", markup=False)
        return 1


def run_console(config: dict, targets: List[str]) -> int:
    """
    Start the engine and run the interactive console until quit.

    Args:
        config: Validated configuration
        targets: Torrent files / magnet links from the command line

    Returns:
        Exit code
    """
    from torrent_console.engine.libtorrent_engine import (
        LibtorrentEngine, build_settings, load_ip_filter, parse_setting,
    )

    client = config['client']

    # Raises EngineError for an unknown setting or a malformed value
    overrides = {name: parse_setting(name, value) for name, value in config['engine'].items()}

    ip_filter = None
    if client['ip_filter']:
        try:
            ip_filter = load_ip_filter(client['ip_filter'])
        except OSError as e:
            logger.error(f"Failed to load IP filter {client['ip_filter']}: {e}")

    engine = LibtorrentEngine(
        build_settings(client['high_performance'], overrides),
        session_state=load_session_state(client['session_state_file']),
        ip_filter=ip_filter,
        disable_disk_io=client['disable_disk_io'],
        rate_limit_local_peers=client['rate_limit_local_peers'],
    )

    save_path = str(Path(client['save_path']).expanduser().resolve())
    store = ResumeStore(save_path)
    store.ensure_dir()

    options = JobOptions(
        save_path=save_path,
        max_connections=client['max_connections_per_job'],
        upload_limit=client['upload_limit_kb'] * 1000,
        download_limit=client['download_limit_kb'] * 1000,
        storage_mode=StorageMode(client['allocation_mode']),
        seed_mode=client['seed_mode'],
        share_mode=client['share_mode'],
    )

    # From here on the console owns the terminal; log into the on-screen log
    ctx = ControlContext()
    _setup_logging(config, log_ring=ctx.log)

    adder = JobAdder(engine, store, options)
    for target in targets:
        adder.add(target)

    loader = ResumeLoader(store, engine, AddJobParams(
        save_path=save_path,
        max_connections=options.max_connections,
        upload_limit=options.upload_limit,
        download_limit=options.download_limit,
        storage_mode=options.storage_mode,
    ))
    loader.start()

    pump = EventPump(ctx, engine, store, PumpOptions(
        max_connections=options.max_connections,
        connect_peer=client['connect_peer'] or "",
    ))

    monitor = None
    if client['monitor_dir']:
        monitor_dir = str(Path(client['monitor_dir']).expanduser().resolve())
        monitor = DirectoryMonitor(monitor_dir, adder, poll_interval=client['poll_interval'])

    loop = ControlLoop(
        engine, Terminal(), ctx, pump, adder, store,
        monitor=monitor,
        loader=loader,
        options=LoopOptions(
            refresh_delay=client['refresh_delay_ms'] / 1000.0,
            shutdown_timeout=float(client['shutdown_timeout']),
            session_state_file=client['session_state_file'],
        ),
    )
    loop.run_interactive()

    # The screen is no longer redrawn; shutdown progress and errors go to stderr
    _setup_logging(config)
    return loop.shutdown()


if __name__ == '__main__':
    sys.exit(main())
