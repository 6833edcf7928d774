import argparse
import logging
import pathlib
import subprocess
import sys
from typing import Optional, Protocol

import boto3
import botocore.config
import botocore.credentials
from botocore.exceptions import (
    ClientError,
    ConnectionClosedError,
    ConnectTimeoutError,
    EndpointConnectionError,
    NoCredentialsError,
    ProfileNotFound,
    ReadTimeoutError,
    SSOTokenLoadError,
    TokenRetrievalError,
    UnauthorizedSSOTokenError,
)

from . import __version__ as ecs_remote_version
from .exceptions import CredentialError

__all__ = []

DEFAULT_PROFILE = "default"

# Total attempts per API call, including the first one
MAX_ATTEMPTS = 5

# ---------------------------------------------------------

__all__.append("configure_logging")


def configure_logging(level: int) -> None:
    """
    Configure logging format and level.
    """
    if level == logging.DEBUG:
        logging_format = "[%(name)s] %(levelname)s: %(message)s"
    else:
        logging_format = "%(levelname)s: %(message)s"

    # Default log level is set to WARNING
    logging.basicConfig(level=logging.WARNING, format=logging_format)
    # Except for our modules
    logging.getLogger("ecs-remote").setLevel(level)


# ---------------------------------------------------------

__all__.append("add_general_parameters")


def add_general_parameters(parser: argparse.ArgumentParser) -> argparse._ArgumentGroup:
    """
    Add General Options: profile, region, verbosity, version and help.
    """
    group_general = parser.add_argument_group("General Options")
    group_general.add_argument(
        "--profile",
        "-p",
        dest="profile",
        type=str,
        default=DEFAULT_PROFILE,
        help=f"Configuration profile from ~/.aws/{{credentials,config}}. Default: {DEFAULT_PROFILE}",
    )
    group_general.add_argument("--region", "-g", dest="region", type=str, help="Set / override AWS region.")
    group_general.add_argument(
        "--verbose",
        "-v",
        action="store_const",
        dest="log_level",
        const=logging.INFO,
        default=logging.INFO,
        help="Default log level. Show informational messages only.",
    )
    group_general.add_argument(
        "--debug",
        "-d",
        action="store_const",
        dest="log_level",
        const=logging.DEBUG,
        help="Increase log level.",
    )
    group_general.add_argument(
        "--quiet",
        "-q",
        action="store_const",
        dest="log_level",
        const=logging.WARNING,
        help="Decrease log level. Only show warnings and errors.",
    )
    group_general.add_argument(
        "--version",
        "-V",
        action="store_true",
        dest="show_version",
        help=f"Show package version and exit. Version is {ecs_remote_version}",
    )
    group_general.add_argument("--help", "-h", action="help", help="Print this help and exit")

    return group_general


# ---------------------------------------------------------

__all__.append("show_version")


def show_version(args: argparse.Namespace) -> None:
    """
    Show package version and exit.
    """
    version_string = f"ecs-remote/{ecs_remote_version}"
    if args.log_level <= logging.INFO:
        version_string += f" python/{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        version_string += f" boto3/{boto3.__version__}"
    print(version_string)
    sys.exit(0)


# ---------------------------------------------------------

__all__.append("is_transient_error")

TRANSIENT_ERROR_CODES = {
    "Throttling",
    "ThrottlingException",
    "ThrottledException",
    "RequestLimitExceeded",
    "TooManyRequestsException",
    "ServerException",
    "ServiceUnavailable",
    "ServiceUnavailableException",
    "InternalError",
    "InternalFailure",
    "RequestTimeout",
    "RequestTimeoutException",
}


def is_transient_error(error: Exception) -> bool:
    """
    True for errors that botocore retries: throttling, 5xx and
    connection problems. When one of these reaches us the retries
    have already been used up.
    """
    if isinstance(error, (EndpointConnectionError, ConnectTimeoutError, ReadTimeoutError, ConnectionClosedError)):
        return True
    if isinstance(error, ClientError):
        if error.response.get("Error", {}).get("Code", "") in TRANSIENT_ERROR_CODES:
            return True
        return error.response.get("ResponseMetadata", {}).get("HTTPStatusCode", 0) >= 500
    return False


# ---------------------------------------------------------

__all__.append("Chooser")


class Chooser(Protocol):
    """
    Asks the operator to pick exactly one of the candidates.

    Returns the index of the selected candidate or None if the
    operator dismissed the prompt.
    """

    def choose(self, title: str, candidates: list[str]) -> Optional[int]: ...


__all__.append("TerminalMenuChooser")


class TerminalMenuChooser:
    def choose(self, title: str, candidates: list[str]) -> Optional[int]:
        # Simple term menu does not support windows as of 2025-08-14
        if not sys.platform.startswith("win"):
            from simple_term_menu import TerminalMenu

            terminal_menu = TerminalMenu(
                candidates,
                title=title,
                show_search_hint=True,
                show_search_hint_text="Press 'q' to quit, or '/' to search.",
            )
            selected_index = terminal_menu.show()
        else:
            print("  {}".format(title.replace("\n", "\n  ")))

            # Calculate padding for numbers
            width = len(str(len(candidates) - 1))

            for i, item in enumerate(candidates):
                print(f"{i:>{width}} | {item}")

            print()
            selected_index = input("Enter the number of your choice: ").strip()

        if selected_index is None or not str(selected_index).isdigit():
            return None

        index = int(selected_index)
        if index >= len(candidates):
            return None

        print(title)
        print(f"  {candidates[index]}")
        return index


# ---------------------------------------------------------

__all__.append("CredentialContext")


class CredentialContext:
    """
    Named profile resolved into a boto3 session.

    Clients created from here share the aws-cli compatible
    assume-role cache and a bounded retry policy.
    """

    def __init__(self, profile: str = DEFAULT_PROFILE, region: Optional[str] = None, max_attempts: int = MAX_ATTEMPTS) -> None:
        self.profile = profile
        self.region = region
        self.config = botocore.config.Config(retries={"max_attempts": max_attempts, "mode": "standard"})
        self._build_session()

    def _build_session(self) -> None:
        # Fall back to the default credential chain (env vars, AWS_PROFILE, instance role)
        # if the "default" profile isn't configured at all
        self._profile_name: Optional[str] = self.profile

        try:
            if self.profile == DEFAULT_PROFILE and DEFAULT_PROFILE not in boto3.session.Session().available_profiles:
                self._profile_name = None

            self.session = boto3.session.Session(profile_name=self._profile_name, region_name=self.region)

            # aws-cli compatible MFA cache
            cli_cache = pathlib.Path("~/.aws/cli/cache").expanduser()
            self.session._session.get_component("credential_provider").get_provider("assume-role").cache = (
                botocore.credentials.JSONFileCache(cli_cache)
            )
            region_name = self.session.region_name
        except ProfileNotFound as e:
            raise CredentialError(f"Please check your ~/.aws folder. {e}") from e

        if not region_name:
            raise CredentialError(f"No region configured for profile '{self.profile}'. Use --region to set one.")

    @property
    def profile_name(self) -> str:
        """
        Profile name as understood by aws-cli and session-manager-plugin,
        empty when running on the default credential chain.
        """
        return self._profile_name or ""

    def client(self, service_name: str):  # type: ignore[no-untyped-def]
        return self.session.client(service_name, config=self.config)

    def verify(self) -> None:
        """
        Check that the credentials work. Login to AWS SSO if the token has expired.
        """
        try:
            self.client("sts").get_caller_identity()

        except (SSOTokenLoadError, TokenRetrievalError, UnauthorizedSSOTokenError) as e:
            logging.getLogger("ecs-remote.credentials").warning(
                "SSO session for profile '%s' is likely expired or invalid: %s", self.profile, e
            )
            sso_login(self.profile_name)
            self._build_session()

        except NoCredentialsError as e:
            raise CredentialError(f"{e} Check profile '{self.profile}' or your AWS_* environment variables.") from e

        except ClientError as e:
            # Access denied means session is valid.
            if e.response.get("Error", {}).get("Code") != "AccessDenied":
                raise CredentialError(str(e)) from e


__all__.append("sso_login")


def sso_login(profile_name: Optional[str]) -> None:
    """
    Run 'aws sso login' for the profile, interactively.
    """
    command = ["aws", "sso", "login"]
    if profile_name:
        command.extend(["--profile", profile_name])

    try:
        subprocess.run(command, check=True)
    except FileNotFoundError as e:
        raise CredentialError("AWS-CLI is not installed, can't refresh the SSO session. Run 'aws sso login' manually.") from e
    except subprocess.CalledProcessError as e:
        raise CredentialError(f"'{' '.join(command)}' failed with exit code {e.returncode}") from e
