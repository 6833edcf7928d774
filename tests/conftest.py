"""
Shared pytest fixtures for ecs-remote tests.

FakeEcsClient answers the handful of ECS calls ecs-remote makes
(list_clusters, list_tasks, describe_tasks, execute_command) from
in-memory clusters and tasks, and records every call.
"""

import threading
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from botocore.exceptions import ClientError

ACCOUNT = "123456789012"
REGION = "us-east-1"


def cluster_arn(name: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:cluster/{name}"


def task_arn(cluster: str, task_id: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:task/{cluster}/{task_id}"


def make_task(
    cluster: str,
    task_id: str,
    containers=("app",),
    status: str = "RUNNING",
    exec_enabled: bool = True,
    group: str = "service:web",
) -> Dict[str, Any]:
    return {
        "taskArn": task_arn(cluster, task_id),
        "clusterArn": cluster_arn(cluster),
        "lastStatus": status,
        "desiredStatus": "RUNNING",
        "enableExecuteCommand": exec_enabled,
        "group": group,
        "containers": [
            {
                "name": name,
                "lastStatus": status,
                "runtimeId": f"{task_id}-{i}",
                "managedAgents": [{"name": "ExecuteCommandAgent", "lastStatus": "RUNNING" if exec_enabled else "STOPPED"}],
            }
            for i, name in enumerate(containers)
        ],
    }


def client_error(code: str, message: str = "", operation: str = "Operation", status: int = 400) -> ClientError:
    return ClientError(
        {"Error": {"Code": code, "Message": message}, "ResponseMetadata": {"HTTPStatusCode": status}},
        operation,
    )


class FakePaginator:
    def __init__(self, client: "FakeEcsClient", operation: str) -> None:
        self.client = client
        self.operation = operation

    def paginate(self, **kwargs: Any):
        self.client.record(self.operation, kwargs)
        if self.operation == "list_clusters":
            return iter([{"clusterArns": list(self.client.clusters)}])

        arns = [task["taskArn"] for task in self.client.tasks.get(kwargs["cluster"], [])]
        if kwargs.get("serviceName"):
            arns = [
                task["taskArn"]
                for task in self.client.tasks.get(kwargs["cluster"], [])
                if task.get("group") == f"service:{kwargs['serviceName']}"
            ]
        page_size = kwargs.get("maxResults", 100)
        pages = [{"taskArns": arns[i : i + page_size]} for i in range(0, len(arns), page_size)]
        return iter(pages or [{"taskArns": []}])


class FakeEcsClient:
    def __init__(self, clusters=(), tasks: Optional[List[Dict[str, Any]]] = None) -> None:
        self.clusters = [cluster_arn(name) for name in clusters]
        # Tasks keyed by cluster ARN
        self.tasks: Dict[str, List[Dict[str, Any]]] = {}
        for task in tasks or []:
            self.tasks.setdefault(task["clusterArn"], []).append(task)
        self.errors: Dict[str, Exception] = {}
        self.calls: List[tuple] = []
        self._lock = threading.Lock()
        self.meta = SimpleNamespace(region_name=REGION, endpoint_url=f"https://ecs.{REGION}.amazonaws.com")
        self.session = {
            "sessionId": "ecs-execute-command-0123456789",
            "streamUrl": f"wss://ssmmessages.{REGION}.amazonaws.com/v1/data-channel/ecs-execute-command-0123456789",
            "tokenValue": "secret-token",
        }

    def record(self, operation: str, kwargs: Dict[str, Any]) -> None:
        with self._lock:
            self.calls.append((operation, kwargs))
        if operation in self.errors:
            raise self.errors[operation]

    def calls_to(self, operation: str) -> List[Dict[str, Any]]:
        return [kwargs for name, kwargs in self.calls if name == operation]

    def get_paginator(self, operation: str) -> FakePaginator:
        return FakePaginator(self, operation)

    def describe_tasks(self, cluster: str, tasks: List[str]) -> Dict[str, Any]:
        self.record("describe_tasks", {"cluster": cluster, "tasks": tasks})
        assert len(tasks) <= 100
        by_arn = {task["taskArn"]: task for task in self.tasks.get(cluster, [])}
        return {"tasks": [by_arn[arn] for arn in tasks if arn in by_arn], "failures": []}

    def execute_command(self, **kwargs: Any) -> Dict[str, Any]:
        self.record("execute_command", kwargs)
        return {
            "clusterArn": kwargs["cluster"],
            "taskArn": kwargs["task"],
            "containerName": kwargs["container"],
            "interactive": kwargs["interactive"],
            "session": dict(self.session),
        }


class StaticChooser:
    """Picks a preset index and remembers what it was offered."""

    def __init__(self, selection: Optional[int] = 0) -> None:
        self.selection = selection
        self.prompts: List[tuple] = []

    def choose(self, title: str, candidates: List[str]) -> Optional[int]:
        self.prompts.append((title, list(candidates)))
        return self.selection


class FailingChooser:
    def choose(self, title: str, candidates: List[str]) -> Optional[int]:
        raise AssertionError(f"Unexpected prompt '{title}': {candidates}")


@pytest.fixture()
def chooser() -> StaticChooser:
    return StaticChooser()


@pytest.fixture()
def no_prompt() -> FailingChooser:
    return FailingChooser()
