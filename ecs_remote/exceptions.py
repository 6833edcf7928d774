from typing import Optional

__all__ = []

# Pipeline stages, used in error messages
STAGE_CREDENTIALS = "credentials"
STAGE_RESOLVE = "resolve"
STAGE_SESSION = "session"
STAGE_TRANSPORT = "transport"


# ---------------------------------------------------------

__all__.append("EcsRemoteError")


class EcsRemoteError(Exception):
    """
    Base class for all ecs-remote failures.

    Every error is terminal for the invocation. main() reports it
    and exits with `exit_code`.
    """

    stage = ""
    exit_code = 1

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def __str__(self) -> str:
        return f"[{self.stage}] {self.message}"


# ---------------------------------------------------------
# Target resolution: 10-19


class ResolutionError(EcsRemoteError):
    stage = STAGE_RESOLVE
    exit_code = 10


class NoClusterFound(ResolutionError):
    exit_code = 10

    def __init__(self) -> None:
        super().__init__("No ECS clusters found.")


class AmbiguousCluster(ResolutionError):
    exit_code = 11

    def __init__(self, candidates: list[str]) -> None:
        self.candidates = list(candidates)
        super().__init__(f"Found {len(self.candidates)} clusters, use --cluster to pick one: {', '.join(self.candidates)}")


class ClusterNotFound(ResolutionError):
    exit_code = 12

    def __init__(self, cluster_hint: str) -> None:
        self.cluster_hint = cluster_hint
        super().__init__(f"Cluster '{cluster_hint}' not found.")


class NoEligibleTask(ResolutionError):
    exit_code = 13

    def __init__(self, cluster: str, service: Optional[str] = None) -> None:
        self.cluster = cluster
        self.service = service
        where = f"service '{service}' in cluster '{cluster}'" if service else f"cluster '{cluster}'"
        super().__init__(f"No RUNNING tasks with execute-command enabled in {where}.")


class AmbiguousTask(ResolutionError):
    exit_code = 14

    def __init__(self, candidates: list[str], container_hint: Optional[str] = None) -> None:
        self.candidates = list(candidates)
        self.container_hint = container_hint
        if container_hint:
            what = f"{len(self.candidates)} tasks with container '{container_hint}'"
        else:
            what = f"{len(self.candidates)} eligible tasks"
        super().__init__(f"Found {what}: {', '.join(self.candidates)}")


class AmbiguousContainer(ResolutionError):
    exit_code = AmbiguousTask.exit_code

    def __init__(self, task_id: str, candidates: list[str]) -> None:
        self.task_id = task_id
        self.candidates = list(candidates)
        super().__init__(f"Task {task_id} has {len(self.candidates)} containers, use --container to pick one: {', '.join(self.candidates)}")


class ContainerNotFound(ResolutionError):
    exit_code = 15

    def __init__(self, container_hint: str, available: list[str]) -> None:
        self.container_hint = container_hint
        self.available = list(available)
        super().__init__(f"Container '{container_hint}' not found. Available containers: {', '.join(self.available) or 'none'}")


class SelectionCancelled(ResolutionError):
    exit_code = 16

    def __init__(self, what: str) -> None:
        super().__init__(f"No {what} selected.")


# ---------------------------------------------------------
# Control plane unavailable after retries: 19 / 29


class ControlPlaneUnavailable(EcsRemoteError):
    def __init__(self, stage: str, reason: str) -> None:
        self.stage = stage
        self.exit_code = 29 if stage == STAGE_SESSION else 19
        self.reason = reason
        super().__init__(f"ECS API unavailable after retries: {reason}")


# ---------------------------------------------------------
# Session request: 20-28


class SessionStartRejected(EcsRemoteError):
    stage = STAGE_SESSION
    exit_code = 20

    def __init__(self, reason: str, code: str = "") -> None:
        self.reason = reason
        self.code = code
        super().__init__(f"ExecuteCommand rejected{f' ({code})' if code else ''}: {reason}")


# ---------------------------------------------------------
# Transport: 30-39


class TransportPluginMissing(EcsRemoteError):
    stage = STAGE_TRANSPORT
    exit_code = 30


class TransportLaunchFailed(EcsRemoteError):
    stage = STAGE_TRANSPORT
    exit_code = 31


# ---------------------------------------------------------
# Credentials: 40


class CredentialError(EcsRemoteError):
    stage = STAGE_CREDENTIALS
    exit_code = 40


__all__.extend(
    [
        "ResolutionError",
        "NoClusterFound",
        "AmbiguousCluster",
        "ClusterNotFound",
        "NoEligibleTask",
        "AmbiguousTask",
        "AmbiguousContainer",
        "ContainerNotFound",
        "SelectionCancelled",
        "ControlPlaneUnavailable",
        "SessionStartRejected",
        "TransportPluginMissing",
        "TransportLaunchFailed",
        "CredentialError",
    ]
)
