import json
import logging

from dataclasses import dataclass
from types import MappingProxyType
from typing import Any, List, Mapping

import botocore.exceptions

from .exceptions import STAGE_SESSION, SessionStartRejected
from .resolver import ResolutionTarget, control_plane

logger = logging.getLogger("ecs-remote.session")

DEFAULT_COMMAND = "/bin/bash"


@dataclass(frozen=True)
class SessionDescriptor:
    """
    Everything session-manager-plugin needs to open the session.

    `session` is passed through exactly as ExecuteCommand returned it.
    """

    session: Mapping[str, Any]
    ssm_target: str
    region: str
    endpoint_url: str
    profile: str = ""

    @property
    def session_id(self) -> str:
        return str(self.session.get("sessionId", ""))

    def plugin_args(self) -> List[str]:
        """
        Positional arguments of session-manager-plugin, in the order
        'aws ecs execute-command' uses.
        """
        # fmt: off
        return [
            json.dumps(dict(self.session)),
            self.region,
            "StartSession",
            self.profile,
            json.dumps({"Target": self.ssm_target}),
            self.endpoint_url,
        ]
        # fmt: on


class SessionRequester:
    def __init__(self, ecs_client: Any, profile: str = "") -> None:
        self.ecs_client = ecs_client
        self.profile = profile

    def request_session(self, target: ResolutionTarget, command: str = DEFAULT_COMMAND) -> SessionDescriptor:
        logger.debug("ExecuteCommand '%s' in %s", command, target)
        try:
            with control_plane(STAGE_SESSION):
                response = self.ecs_client.execute_command(
                    cluster=target.cluster.arn,
                    task=target.task.arn,
                    container=target.container.name,
                    command=command,
                    interactive=True,
                )
        except botocore.exceptions.ClientError as e:
            error = e.response.get("Error", {})
            raise SessionStartRejected(error.get("Message", str(e)), error.get("Code", "")) from e

        session = response.get("session")
        if not session:
            raise SessionStartRejected("Response contains no session")

        descriptor = SessionDescriptor(
            session=MappingProxyType(dict(session)),
            ssm_target=target.ssm_target,
            region=self.ecs_client.meta.region_name,
            endpoint_url=self.ecs_client.meta.endpoint_url,
            profile=self.profile,
        )
        logger.debug("Session %s started for %s", descriptor.session_id, descriptor.ssm_target)
        return descriptor
