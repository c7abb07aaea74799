#!/usr/bin/env python
"""
The main module provides the executable entrypoint for the image clone
controller
"""

# Standard
from typing import Dict, List, Optional, Tuple
import argparse

# First Party
import aconfig
import alog

# Local
from . import config
from .cmd import CmdBase, RunControllerCmd
from .config import library_config
from .config.config import validation_config
from .config.validation import get_invalid_params
from .exceptions import assert_config
from .log_format import ImageCloneJsonFormatter

## Constants ###################################################################

log = alog.use_channel("MAIN")

## Helpers #####################################################################


def add_library_config_args(parser, config_obj=None, path=None):
    """Automatically add args for all elements of the library config"""
    path = path or []
    setters = {}
    config_obj = config_obj or library_config
    for key, val in config_obj.items():
        sub_path = path + [key]

        # If this is a nested arg, recurse
        if isinstance(val, aconfig.AttributeAccessDict):
            sub_setters = add_library_config_args(parser, config_obj=val, path=sub_path)
            setters.update(sub_setters)

        # Otherwise, add an argument explicitly
        else:
            arg_name = ".".join(sub_path)
            dest_name = "_".join(sub_path)
            kwargs = {
                "default": val,
                "dest": dest_name,
                "help": f"Library config override for {arg_name} (see imageclone.config)",
            }
            if isinstance(val, list):
                kwargs["nargs"] = "*"
            elif isinstance(val, bool):
                kwargs["action"] = "store_true"
            elif val is not None:
                kwargs["type"] = type(val)

            if (
                f"--{arg_name}"
                not in parser._option_string_actions  # pylint: disable=protected-access
            ):
                parser.add_argument(f"--{arg_name}", **kwargs)
                setters[dest_name] = sub_path
    return setters


def update_library_config(args, setters):
    """Update the library config values based on the parsed arguments and
    validate the result
    """
    for dest_name, config_path in setters.items():
        config_obj = library_config
        while len(config_path) > 1:
            config_obj = config_obj[config_path[0]]
            config_path = config_path[1:]
        config_obj[config_path[0]] = getattr(args, dest_name)

    invalid_params = get_invalid_params(library_config, validation_config)
    assert_config(
        not invalid_params, f"Invalid configuration overrides: {invalid_params}"
    )


def add_command(
    subparsers: argparse._SubParsersAction,
    cmd: CmdBase,
) -> Tuple[argparse.ArgumentParser, Dict[str, List[str]]]:
    """Add the subparser and set up the default fun call"""
    parser = cmd.add_subparser(subparsers)
    parser.set_defaults(func=cmd.cmd)
    library_args = parser.add_argument_group("Library Configuration")
    library_config_setters = add_library_config_args(library_args)
    return parser, library_config_setters


## Main ########################################################################


def main(argv: Optional[List[str]] = None):
    """The main module provides the executable entrypoint for the controller"""
    parser = argparse.ArgumentParser(description=__doc__)

    # Add the subcommands
    subparsers = parser.add_subparsers(help="Available commands", dest="command")
    run_controller_cmd = RunControllerCmd()
    run_controller_parser, library_config_setters = add_command(
        subparsers, run_controller_cmd
    )

    # Use a preliminary parser to check for the presence of a command and fall
    # back to the default command if not found
    check_parser = argparse.ArgumentParser(add_help=False)
    check_parser.add_argument("command", nargs="?")
    check_args, _ = check_parser.parse_known_args(argv)
    if check_args.command not in subparsers.choices:
        args = run_controller_parser.parse_args(argv)
    else:
        args = parser.parse_args(argv)

    # Provide overrides to the library configs
    update_library_config(args, library_config_setters)

    # Reconfigure logging
    alog.configure(
        default_level=config.log_level,
        filters=config.log_filters,
        formatter=ImageCloneJsonFormatter() if config.log_json else "pretty",
        thread_id=config.log_thread_id,
    )

    # Run the command's function
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    main()
