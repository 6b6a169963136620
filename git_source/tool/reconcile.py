"""Command line tool for reconciling GitRepository resources."""

import asyncio
from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
from datetime import timedelta
import json
import logging
import pathlib
from typing import Any, cast

import yaml

from git_source.config import SourceControllerConfig, StorageConfig
from git_source.exceptions import InputException
from git_source.manifest import GitRepository, read_resources
from git_source.source_controller import SourceController
from git_source.storage import LocalStorage
from git_source.store import InMemoryStore
from git_source.task import task_service_context

_LOGGER = logging.getLogger(__name__)

OUTPUT_FORMATS = ["yaml", "json"]


class ReconcileAction:
    """git-source reconcile action."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "reconcile",
                help="Reconcile GitRepository resources into artifacts",
                description=(
                    "Fetch every GitRepository in a file, publish each resolved "
                    "checkout as an artifact and print the resulting status."
                ),
            ),
        )
        args.add_argument(
            "--path",
            help="YAML file with GitRepository and Secret resources",
            type=pathlib.Path,
            required=True,
        )
        args.add_argument(
            "--storage-path",
            help="Directory artifacts are written to",
            type=pathlib.Path,
            required=True,
        )
        args.add_argument(
            "--storage-addr",
            help="Base URL the storage directory is served at",
            default="http://localhost",
        )
        args.add_argument(
            "--timeout",
            help="Deadline in seconds for a single reconciliation",
            type=float,
            default=SourceControllerConfig.timeout.total_seconds(),
        )
        args.add_argument(
            "--workers",
            help="Number of repositories reconciled concurrently with --watch",
            type=int,
            default=SourceControllerConfig.workers,
        )
        args.add_argument(
            "--watch",
            help="Keep reconciling each repository at its interval until interrupted",
            action="store_true",
        )
        args.add_argument(
            "--output",
            "-o",
            choices=OUTPUT_FORMATS,
            default="yaml",
            help="Output format of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        path: pathlib.Path,
        storage_path: pathlib.Path,
        storage_addr: str,
        timeout: float,
        workers: int,
        watch: bool,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if not path.exists():
            raise InputException(f"Resource file does not exist: {path}")
        store = InMemoryStore()
        for obj in await read_resources(path):
            store.add_object(obj)
        storage = LocalStorage(StorageConfig(base_dir=storage_path, base_url=storage_addr))
        config = SourceControllerConfig(
            timeout=timedelta(seconds=timeout), workers=workers
        )

        with task_service_context():
            controller = SourceController(store, storage, config)
            if watch:
                controller.start()
                try:
                    await asyncio.Event().wait()
                finally:
                    await controller.close()
                return

            results: list[dict[str, Any]] = []
            for obj in store.list_objects(GitRepository.kind):
                if not isinstance(obj, GitRepository):
                    continue
                await controller.reconcile(obj.resource_id)
                status = store.get_status(obj.resource_id)
                results.append(
                    {
                        "name": obj.name,
                        "namespace": obj.namespace,
                        "status": status.to_dict() if status else {},
                    }
                )

        if output == "json":
            print(json.dumps(results, indent=2))
        else:
            print(yaml.dump(results, sort_keys=False, explicit_start=True), end="")
