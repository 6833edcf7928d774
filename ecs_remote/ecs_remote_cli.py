#!/usr/bin/env python3

# Open an interactive shell in a running ECS container
#
# Resolves the cluster, task and container from partial hints, asks
# ECS for an execute-command session and hands it over to
# session-manager-plugin. Works with both Fargate and EC2 tasks that
# have execute-command enabled.

import argparse
import enum
import logging
import sys
from typing import Optional

import botocore.exceptions

from .common import Chooser, CredentialContext, TerminalMenuChooser, add_general_parameters, configure_logging, show_version
from .exceptions import EcsRemoteError
from .launcher import SessionLauncher
from .resolver import TargetResolver
from .session import DEFAULT_COMMAND, SessionRequester

logger = logging.getLogger("ecs-remote.cli")

# Operator interrupted us before the session was attached
EXIT_INTERRUPTED = 130


class State(enum.Enum):
    IDLE = "idle"
    RESOLVING = "resolving"
    REQUESTING = "requesting"
    LAUNCHING = "launching"
    ATTACHED = "attached"
    TERMINATED = "terminated"
    FAILED = "failed"


def parse_args(argv: list) -> argparse.Namespace:
    """
    Parse command line arguments.
    """

    parser = argparse.ArgumentParser(formatter_class=argparse.RawDescriptionHelpFormatter, add_help=False)

    add_general_parameters(parser)

    group_target = parser.add_argument_group("Target Selection")
    group_target.add_argument(
        "--cluster",
        "-l",
        dest="cluster",
        metavar="CLUSTER",
        help="ECS cluster name or ARN. Prompts for one if there are more clusters. (optional)",
    )
    group_target.add_argument(
        "--service",
        "-s",
        dest="service",
        metavar="SERVICE",
        help="Only consider tasks of this ECS service. (optional)",
    )
    group_target.add_argument(
        "--container",
        "-t",
        dest="container",
        metavar="CONTAINER",
        help="Container name, also used to narrow down the task selection. (optional)",
    )

    group_session = parser.add_argument_group("Session Parameters")
    group_session.add_argument(
        "--command",
        "-c",
        dest="command",
        metavar="COMMAND",
        default=DEFAULT_COMMAND,
        help=f"Interactive command to run inside the container. Default: {DEFAULT_COMMAND}",
    )

    parser.description = "Open an interactive shell in a running ECS container"
    parser.epilog = f"""
IMPORTANT: tasks must have "execute-command" enabled and be RUNNING or
they will not be offered by {parser.prog}. The session-manager-plugin
must be installed and in your PATH.

Example usage:
    {parser.prog} -p uat-admin -l uat -t app

Exit codes:
    10-19  target resolution failed
    20-29  execute-command session request failed
    30-39  session-manager-plugin missing or failed to start
    40     credentials error
    130    interrupted
    otherwise the exit code of the session
"""

    # Parse supplied arguments
    args = parser.parse_args(argv)

    # If --version do it now and exit
    if args.show_version:
        show_version(args)

    return args


def run(
    args: argparse.Namespace,
    context: Optional[CredentialContext] = None,
    chooser: Optional[Chooser] = None,
    launcher: Optional[SessionLauncher] = None,
) -> int:
    """
    Resolve the target, request the session and attach to it.
    Returns the exit code.
    """
    state = State.IDLE

    def _transition(new_state: State) -> State:
        logger.debug("State: %s -> %s", state.value, new_state.value)
        return new_state

    try:
        if context is None:
            context = CredentialContext(args.profile, args.region)
        context.verify()
        ecs_client = context.client("ecs")

        # Fail before creating a session that nothing could attach to
        if launcher is None:
            launcher = SessionLauncher()
        launcher.verify()

        if chooser is None and sys.stdin.isatty():
            chooser = TerminalMenuChooser()

        state = _transition(State.RESOLVING)
        target = TargetResolver(ecs_client, chooser).resolve(args.cluster, args.container, args.service)
        logger.info("Connecting to %s", target)

        state = _transition(State.REQUESTING)
        descriptor = SessionRequester(ecs_client, context.profile_name).request_session(target, args.command)

        state = _transition(State.LAUNCHING)
        state = _transition(State.ATTACHED)
        exit_code = launcher.launch(descriptor)

        state = _transition(State.TERMINATED)
        return exit_code

    except EcsRemoteError as e:
        state = _transition(State.FAILED)
        logger.error("%s", e)
        return e.exit_code

    except KeyboardInterrupt:
        logger.warning("Interrupted while %s, no session started.", state.value)
        state = _transition(State.FAILED)
        return EXIT_INTERRUPTED

    except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as e:
        state = _transition(State.FAILED)
        logger.error(e)
        return 1


def main() -> int:
    args = parse_args(sys.argv[1:])

    configure_logging(args.log_level)

    return run(args)


if __name__ == "__main__":
    sys.exit(main())
