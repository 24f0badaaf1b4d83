import sys
import logging
from argparse import ArgumentParser
from typing import Optional, Sequence

from tandem.__about__ import __version__ as tandem_version
from tandem.errors import ConfigError
from tandem.config import TandemConfig
from tandem.session import SessionStatus, SessionResult, run_batch
from tandem.session_file import SessionFile

version_string = f"Tandem {tandem_version}"


def set_up_logging():
    logging.root.handlers = []
    handlers = [
        logging.StreamHandler(sys.stdout)
    ]
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        handlers=handlers
    )
    logging.info(version_string)


def run_check(tandem_config: TandemConfig) -> None:
    """Log what the config would do, without reading any session data."""
    logging.info(f"Code registry has {len(tandem_config.registry)} codes.")
    for spec in tandem_config.sessions:
        logging.info(
            f"  {spec.name}: {spec.event_log_reader.__class__.__name__} with {len(spec.control_files)} control files"
            + (f" -> {spec.output_file}" if spec.output_file else ""))


def run_convert(tandem_config: TandemConfig) -> list[SessionResult]:
    """Process all configured sessions and write any configured session files."""
    if not tandem_config.sessions:
        raise ConfigError("No sessions configured, nothing to convert.")

    results = run_batch(tandem_config.processor(), tandem_config.sessions)
    for spec, result in zip(tandem_config.sessions, results):
        if not spec.output_file:
            continue
        try:
            SessionFile(spec.output_file).write(result)
        except Exception as error:
            logging.error(f"Error writing session file {spec.output_file}:", exc_info=True)
            result.fail(f"Could not write session file: {error}", error)
    return results


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = ArgumentParser(description="Decode hardware strobe logs and align them with control software trials.")
    parser.add_argument("mode",
                        type=str,
                        choices=["check", "convert"],
                        help="mode to run in: check the configuration, or convert sessions"),
    parser.add_argument("--config", '-c',
                        type=str,
                        default=None,
                        help="Name of the config YAML file")
    parser.add_argument(
        "--sessions", '-s', type=str, nargs="+", default=[],
        help="One or more session overrides, like: --sessions session_name.event_log=events.csv session_name.control_files=a.jsonl,b.jsonl ...")
    parser.add_argument("--version", "-v", action="version", version=version_string)

    set_up_logging()

    cli_args = parser.parse_args(argv)

    try:
        tandem_config = TandemConfig.from_yaml_and_session_overrides(
            config_yaml=cli_args.config,
            session_overrides=cli_args.sessions
        )
    except ConfigError:
        logging.error(f"Error loading configuration:", exc_info=True)
        logging.error(f"Completed with errors.")
        return 2

    match cli_args.mode:
        case "check":
            try:
                run_check(tandem_config)
                exit_code = 0
            except Exception:
                logging.error(f"Error checking configuration:", exc_info=True)
                exit_code = 2

        case "convert":
            try:
                results = run_convert(tandem_config)
                failed = [result for result in results if result.status is SessionStatus.FAILED]
                exit_code = 1 if failed else 0
            except ConfigError:
                logging.error(f"Error in configuration:", exc_info=True)
                exit_code = 2
            except Exception:
                logging.error(f"Error running conversion:", exc_info=True)
                exit_code = 1

        case _:  # pragma: no cover
            # We don't expect this to happen -- argparse should error before we get here.
            logging.error(f"Unsupported mode: {cli_args.mode}")
            exit_code = -2

    if exit_code:
        logging.error(f"Completed with errors.")
    else:
        logging.info(f"OK.")

    return exit_code
