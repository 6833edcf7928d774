#!/usr/bin/env python3

# Resolve operator hints (cluster, service, container) to exactly one
# RUNNING, execute-command enabled ECS task and one of its containers.

import logging
import contextlib
import concurrent.futures

from dataclasses import dataclass
from typing import Any, Dict, Iterator, List, Optional, Tuple

import botocore.exceptions

from .common import Chooser, is_transient_error
from .exceptions import (
    STAGE_RESOLVE,
    AmbiguousCluster,
    AmbiguousContainer,
    AmbiguousTask,
    ClusterNotFound,
    ContainerNotFound,
    ControlPlaneUnavailable,
    NoClusterFound,
    NoEligibleTask,
    SelectionCancelled,
)

logger = logging.getLogger("ecs-remote.resolver")

# describe_tasks() doesn't accept more than 100 tasks
DESCRIBE_TASKS_BATCH = 100


@dataclass(frozen=True)
class Cluster:
    arn: str

    @property
    def name(self) -> str:
        return self.arn.split("/")[-1]


@dataclass(frozen=True)
class Container:
    name: str
    last_status: str = ""
    runtime_id: str = ""
    exec_agent_running: bool = False

    @classmethod
    def from_api(cls, container: Dict[str, Any]) -> "Container":
        agent_running = any(
            agent.get("name") == "ExecuteCommandAgent" and agent.get("lastStatus") == "RUNNING"
            for agent in container.get("managedAgents", [])
        )
        return cls(
            name=container["name"],
            last_status=container.get("lastStatus", ""),
            runtime_id=container.get("runtimeId", ""),
            exec_agent_running=agent_running,
        )


@dataclass(frozen=True)
class Task:
    arn: str
    cluster_arn: str
    last_status: str
    exec_enabled: bool
    group: str = ""
    containers: Tuple[Container, ...] = ()

    @classmethod
    def from_api(cls, task: Dict[str, Any]) -> "Task":
        containers = sorted((Container.from_api(c) for c in task.get("containers", [])), key=lambda c: c.name)
        return cls(
            arn=task["taskArn"],
            cluster_arn=task.get("clusterArn", ""),
            last_status=task.get("lastStatus", ""),
            exec_enabled=bool(task.get("enableExecuteCommand", False)),
            group=task.get("group", ""),
            containers=tuple(containers),
        )

    @property
    def task_id(self) -> str:
        return self.arn.split("/")[-1]

    @property
    def eligible(self) -> bool:
        return self.last_status == "RUNNING" and self.exec_enabled

    @property
    def container_names(self) -> List[str]:
        return [container.name for container in self.containers]

    def get_container(self, name: str) -> Optional[Container]:
        for container in self.containers:
            if container.name == name:
                return container
        return None

    def summary(self) -> str:
        return f"{self.task_id}  {self.group or '-'}  [{', '.join(self.container_names)}]"


@dataclass(frozen=True)
class ResolutionTarget:
    cluster: Cluster
    task: Task
    container: Container

    @property
    def ssm_target(self) -> str:
        """
        Session Manager target of the container, the same that
        'aws ecs execute-command' passes to session-manager-plugin.
        """
        return f"ecs:{self.cluster.name}_{self.task.task_id}_{self.container.runtime_id}"

    def __str__(self) -> str:
        return f"{self.cluster.name}/{self.task.task_id}/{self.container.name}"


@contextlib.contextmanager
def control_plane(stage: str) -> Iterator[None]:
    """
    Convert exhausted botocore retries into ControlPlaneUnavailable.
    """
    try:
        yield
    except (botocore.exceptions.BotoCoreError, botocore.exceptions.ClientError) as e:
        if is_transient_error(e):
            raise ControlPlaneUnavailable(stage, str(e)) from e
        raise


class TargetResolver:
    def __init__(self, ecs_client: Any, chooser: Optional[Chooser] = None, max_workers: int = 4) -> None:
        self.ecs_client = ecs_client
        self.chooser = chooser
        self.max_workers = max_workers

    def _choose(self, title: str, candidates: List[str], what: str) -> int:
        assert self.chooser is not None
        selected = self.chooser.choose(title, candidates)
        if selected is None:
            raise SelectionCancelled(what)
        return selected

    # ---------------------------------------------------------
    # Clusters

    def list_clusters(self) -> List[Cluster]:
        logger.debug("Listing ECS Clusters")
        clusters = []
        with control_plane(STAGE_RESOLVE):
            paginator = self.ecs_client.get_paginator("list_clusters")
            for page in paginator.paginate():
                clusters.extend(page.get("clusterArns", []))
        return [Cluster(arn) for arn in sorted(set(clusters))]

    def resolve_cluster(self, cluster_hint: Optional[str] = None) -> Cluster:
        clusters = self.list_clusters()

        if cluster_hint:
            for cluster in clusters:
                if cluster_hint in (cluster.arn, cluster.name):
                    logger.debug("Cluster '%s' resolved to %s", cluster_hint, cluster.arn)
                    return cluster
            raise ClusterNotFound(cluster_hint)

        if not clusters:
            raise NoClusterFound()

        if len(clusters) == 1:
            return clusters[0]

        names = [cluster.name for cluster in clusters]
        if not self.chooser:
            raise AmbiguousCluster(names)
        return clusters[self._choose("Select Cluster", names, "cluster")]

    # ---------------------------------------------------------
    # Tasks

    def _describe_tasks(self, cluster: Cluster, task_arns: List[str]) -> List[Dict[str, Any]]:
        response = self.ecs_client.describe_tasks(cluster=cluster.arn, tasks=task_arns)
        return response.get("tasks", [])

    def list_tasks(self, cluster: Cluster, service_hint: Optional[str] = None) -> List[Task]:
        """
        Describe all tasks in the cluster (or service) that are meant to be RUNNING.
        """
        kwargs: Dict[str, Any] = {"cluster": cluster.arn, "desiredStatus": "RUNNING", "maxResults": DESCRIBE_TASKS_BATCH}
        if service_hint:
            kwargs["serviceName"] = service_hint

        logger.debug("Listing tasks in cluster: %s", cluster.arn)
        batches = []
        try:
            with control_plane(STAGE_RESOLVE):
                paginator = self.ecs_client.get_paginator("list_tasks")
                for page in paginator.paginate(**kwargs):
                    if page.get("taskArns"):
                        batches.append(page["taskArns"])

                with concurrent.futures.ThreadPoolExecutor(max_workers=self.max_workers) as executor:
                    described = list(executor.map(lambda batch: self._describe_tasks(cluster, batch), batches))
        except botocore.exceptions.ClientError as e:
            code = e.response.get("Error", {}).get("Code", "")
            if code == "ClusterNotFoundException":
                raise ClusterNotFound(cluster.name) from e
            if code == "ServiceNotFoundException":
                raise NoEligibleTask(cluster.name, service_hint) from e
            raise

        tasks = [Task.from_api(task) for batch in described for task in batch]
        tasks.sort(key=lambda task: task.arn)
        return tasks

    def eligible_tasks(self, cluster: Cluster, service_hint: Optional[str] = None) -> List[Task]:
        eligible = []
        for task in self.list_tasks(cluster, service_hint):
            if task.eligible:
                logger.debug("ADDED: Task %s is eligible: %s", task.task_id, task.summary())
                eligible.append(task)
            else:
                logger.debug(
                    "IGNORED: Task %s status=%s execute-command=%s", task.task_id, task.last_status, task.exec_enabled
                )
        return eligible

    def resolve_task(self, cluster: Cluster, container_hint: Optional[str] = None, service_hint: Optional[str] = None) -> Task:
        tasks = self.eligible_tasks(cluster, service_hint)
        if not tasks:
            raise NoEligibleTask(cluster.name, service_hint)

        if container_hint:
            candidates = [task for task in tasks if task.get_container(container_hint)]
            if not candidates:
                available = sorted({name for task in tasks for name in task.container_names})
                raise ContainerNotFound(container_hint, available)
        else:
            candidates = tasks

        if len(candidates) == 1:
            return candidates[0]

        if not self.chooser:
            raise AmbiguousTask([task.arn for task in candidates], container_hint)
        logger.info("Found %d tasks in cluster %s", len(candidates), cluster.name)
        selected = self._choose("Select Task for ECS Exec", [task.summary() for task in candidates], "task")
        return candidates[selected]

    # ---------------------------------------------------------
    # Containers

    def resolve_container(self, task: Task, container_hint: Optional[str] = None) -> Container:
        if container_hint:
            container = task.get_container(container_hint)
            if not container:
                raise ContainerNotFound(container_hint, task.container_names)
        elif len(task.containers) == 1:
            container = task.containers[0]
        elif not task.containers:
            raise ContainerNotFound("", [])
        elif not self.chooser:
            raise AmbiguousContainer(task.task_id, task.container_names)
        else:
            container = task.containers[self._choose("Select Container", task.container_names, "container")]

        if not container.exec_agent_running:
            logger.warning("ExecuteCommandAgent is not reported RUNNING in container '%s'", container.name)
        return container

    # ---------------------------------------------------------

    def resolve(
        self, cluster_hint: Optional[str] = None, container_hint: Optional[str] = None, service_hint: Optional[str] = None
    ) -> ResolutionTarget:
        cluster = self.resolve_cluster(cluster_hint)
        task = self.resolve_task(cluster, container_hint, service_hint)
        container = self.resolve_container(task, container_hint)
        target = ResolutionTarget(cluster, task, container)
        logger.debug("Resolved target: %s", target)
        return target
