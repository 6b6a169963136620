"""Source Controller module.

This controller reconciles GitRepository resources. Each reconciliation
resolves the repository's reference to a commit, archives the checkout and
publishes it as an artifact, then records the outcome as the resource's
`Ready` condition.

Key Concepts:
    - GitRepository: The desired state, read from the store
    - GitRepositoryStatus: The observed state, written back to the store
    - Artifact: A content addressed archive of one resolved commit

Integration Points:
    - git_source.store.Store: For desired state, status and watch events
    - git_source.storage.ArtifactStorage: For archiving and publishing
    - git_source.task.WorkQueue: For per-resource single flight and requeue
"""

import asyncio
from collections.abc import AsyncGenerator, Callable
import contextlib
from dataclasses import dataclass
from datetime import timedelta
import logging
from pathlib import Path
import shutil
import tempfile
from typing import Any

from slugify import slugify

from git_source.config import SourceControllerConfig
from git_source.exceptions import (
    AuthenticationError,
    GitOperationError,
    ReconcileError,
    StatusUpdateError,
    StorageOperationError,
)
from git_source.manifest import GitRepository, NamedResource, Secret
from git_source.storage import Artifact, ArtifactStorage, artifact_filename
from git_source.store import Store, StoreEvent
from git_source.store.status import (
    GitRepositoryStatus,
    Reason,
    SourceCondition,
    initializing_status,
    not_ready_condition,
    now,
    ready_condition,
)
from git_source.task import QueueShutdown, WorkQueue, get_task_service
from git_source.task.threads import run_blocking

from .git import Checkout, fetch_checkout
from .reference import CheckoutStrategy, checkout_strategy
from .secret import Credentials, get_auth_from_secret, git_env

__all__ = ["SourceController", "ReconciliationOutcome"]

_LOGGER = logging.getLogger(__name__)


@dataclass
class ReconciliationOutcome:
    """Result of a single sync attempt."""

    condition: SourceCondition
    """The Ready condition to record."""

    artifact: str | None = None
    """URL of the published artifact, set only on success."""

    error: ReconcileError | None = None
    """The failure, if the sync did not succeed."""


class SourceController:
    """Controller reconciling GitRepository resources into artifacts.

    `reconcile` may be called directly for a single pass. `start` registers
    store listeners and launches workers that reconcile every GitRepository
    when it is added and again after each of its intervals.
    """

    def __init__(
        self,
        store: Store,
        storage: ArtifactStorage,
        config: SourceControllerConfig | None = None,
    ) -> None:
        """Initialize the source controller.

        Args:
            store: The control plane store holding resources and status
            storage: Where artifacts are archived and published
            config: The configuration for the controller
        """
        self._store = store
        self._storage = storage
        self._config = config or SourceControllerConfig()
        self._queue: WorkQueue[NamedResource] = WorkQueue()
        self._task_service = get_task_service()
        self._remove_listeners: list[Callable[[], None]] = []
        self._deleted: set[NamedResource] = set()

    def start(self) -> None:
        """Watch the store and start the reconciliation workers."""

        def on_added(resource_id: NamedResource, obj: Any) -> None:
            if isinstance(obj, GitRepository):
                self._queue.add(resource_id)
            elif isinstance(obj, Secret):
                for repo_id in self._repositories_using(resource_id):
                    _LOGGER.debug("Secret %s changed, requeue %s", resource_id, repo_id)
                    self._queue.add(repo_id)

        def on_deleted(resource_id: NamedResource, obj: Any) -> None:
            if isinstance(obj, GitRepository):
                # Removal runs through the queue, after any in-flight pass
                self._queue.forget(resource_id)
                self._deleted.add(resource_id)
                self._queue.add(resource_id)

        self._remove_listeners = [
            self._store.add_listener(StoreEvent.OBJECT_ADDED, on_added, flush=True),
            self._store.add_listener(StoreEvent.OBJECT_DELETED, on_deleted),
        ]
        for i in range(self._config.workers):
            self._task_service.create_background_task(
                self._worker(), name=f"source-controller-worker-{i}"
            )

    async def close(self) -> None:
        """Stop the workers and remove artifacts of deleted resources."""
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners = []
        self._queue.shutdown()
        await self._task_service.cancel_background_tasks()
        for resource_id in list(self._deleted):
            await self._remove_deleted(resource_id)
        await self._task_service.block_till_done()

    def _repositories_using(self, secret_id: NamedResource) -> list[NamedResource]:
        return [
            obj.resource_id
            for obj in self._store.list_objects(GitRepository.kind)
            if isinstance(obj, GitRepository)
            and obj.secret_ref is not None
            and obj.secret_ref.name == secret_id.name
            and obj.namespace == secret_id.namespace
        ]

    async def _worker(self) -> None:
        while True:
            try:
                resource_id = await self._queue.get()
            except QueueShutdown:
                return
            try:
                if resource_id in self._deleted:
                    await self._remove_deleted(resource_id)
                    continue
                delay = await self.reconcile(resource_id)
            except StatusUpdateError as err:
                _LOGGER.error("Unable to update status of %s: %s", resource_id, err)
                self._requeue_after(resource_id, self._config.retry_interval)
            except Exception:
                _LOGGER.exception("Unexpected error reconciling %s", resource_id)
                self._requeue_after(resource_id, self._config.retry_interval)
            else:
                if delay is not None:
                    self._requeue_after(resource_id, delay)
            finally:
                self._queue.done(resource_id)

    def _requeue_after(self, resource_id: NamedResource, delay: timedelta) -> None:
        if resource_id not in self._deleted:
            self._queue.add_after(resource_id, delay)

    async def _remove_deleted(self, resource_id: NamedResource) -> None:
        await self.remove_artifacts(resource_id)
        self._deleted.discard(resource_id)
        if self._store.get_object(resource_id, GitRepository) is not None:
            _LOGGER.debug("Repository %s was added again, requeue", resource_id)
            self._queue.add(resource_id)

    async def reconcile(self, resource_id: NamedResource) -> timedelta | None:
        """Run one reconciliation pass for a GitRepository.

        Returns the delay before the resource should be reconciled again, or
        None if the resource no longer exists.

        Raises:
            StatusUpdateError: If the store refused a status write.
        """
        if (obj := self._store.get_object(resource_id, GitRepository)) is None:
            _LOGGER.debug("GitRepository %s not found, skipping", resource_id)
            return None
        _LOGGER.info("Reconciling %s", resource_id)
        status = self._store.get_status(resource_id) or GitRepositoryStatus()

        reset, initial = await self.should_reset_status(obj, status)
        if reset:
            _LOGGER.info("Initializing repository %s", resource_id)
            status = initial
            self._store.update_status(resource_id, status)

        await self.gc(obj, status)

        outcome = await self.sync(obj)
        if outcome.error is not None:
            _LOGGER.error("Repository %s sync failed: %s", resource_id, outcome.error)
        else:
            if status.artifact != outcome.artifact:
                status.last_update_time = now()
                status.artifact = outcome.artifact
            _LOGGER.info(
                "Repository %s sync succeeded: %s",
                resource_id,
                outcome.condition.message,
            )

        outcome.condition.last_transition_time = now()
        status.conditions = [outcome.condition]
        self._store.update_status(resource_id, status)
        return obj.interval

    def _recorded_artifact(
        self, obj: GitRepository, status: GitRepositoryStatus
    ) -> Artifact | None:
        if not status.artifact:
            return None
        filename = status.artifact.rsplit("/", 1)[-1]
        return self._storage.artifact_for(obj.resource_id, filename)

    async def should_reset_status(
        self, obj: GitRepository, status: GitRepositoryStatus
    ) -> tuple[bool, GitRepositoryStatus]:
        """Decide whether the status must be reinitialized.

        This is the case when no condition was ever recorded, or when the
        recorded artifact is missing from storage.
        """
        reset = not status.conditions
        if (artifact := self._recorded_artifact(obj, status)) is not None:
            if not await self._storage.exists(artifact):
                _LOGGER.info("Artifact %s no longer exists", artifact.path)
                reset = True
        return reset, initializing_status()

    async def gc(self, obj: GitRepository, status: GitRepositoryStatus) -> None:
        """Remove every stored artifact except the one recorded in status."""
        if (artifact := self._recorded_artifact(obj, status)) is None:
            return
        try:
            await self._storage.retain_only(artifact)
        except StorageOperationError as err:
            _LOGGER.info("Artifacts GC failed for %s: %s", obj.resource_id, err)

    async def remove_artifacts(self, resource_id: NamedResource) -> None:
        """Remove every artifact of a deleted resource."""
        try:
            await self._storage.remove_all(resource_id)
        except StorageOperationError as err:
            _LOGGER.error("Unable to delete artifacts for %s: %s", resource_id, err)
        else:
            _LOGGER.info("Repository artifacts deleted for %s", resource_id)

    async def sync(self, obj: GitRepository) -> ReconciliationOutcome:
        """Fetch, archive and publish the repository.

        Every step runs under a single deadline. Failures are returned as a
        `Ready=False` outcome rather than raised.
        """
        timeout = self._config.timeout
        deadline = asyncio.get_running_loop().time() + timeout.total_seconds()
        try:
            strategy = checkout_strategy(obj.ref, self._config.default_branch)
            _LOGGER.debug("Using %s for %s", strategy, obj.resource_id)
            async with (
                self._scratch_dir(obj) as auth_dir,
                self._scratch_dir(obj) as repo_dir,
            ):
                try:
                    async with asyncio.timeout_at(deadline):
                        checkout = await self._checkout(
                            obj, strategy, auth_dir, repo_dir, deadline
                        )
                except TimeoutError as err:
                    raise GitOperationError(
                        f"git operation timed out after {timeout}"
                    ) from err
                try:
                    async with asyncio.timeout_at(deadline):
                        artifact = await self._publish(obj, checkout, repo_dir)
                except TimeoutError as err:
                    raise StorageOperationError(
                        f"storage operation timed out after {timeout}"
                    ) from err
        except ReconcileError as err:
            return ReconciliationOutcome(
                condition=not_ready_condition(Reason(err.reason), str(err)),
                error=err,
            )
        return ReconciliationOutcome(
            condition=ready_condition(
                Reason.GIT_OPERATION_SUCCEEDED,
                f"Artifact is available at: {artifact.path}",
            ),
            artifact=artifact.url,
        )

    @contextlib.asynccontextmanager
    async def _scratch_dir(self, obj: GitRepository) -> AsyncGenerator[Path, None]:
        """Yield a private directory that is removed on every exit path."""
        prefix = f"{slugify(obj.name, max_length=50)}-"
        try:
            path = Path(
                await run_blocking(
                    tempfile.mkdtemp, prefix=prefix, dir=self._config.scratch_dir
                )
            )
        except OSError as err:
            raise StorageOperationError(f"tmp dir error: {err}") from err
        try:
            yield path
        finally:
            try:
                await run_blocking(shutil.rmtree, path)
            except OSError as err:
                _LOGGER.warning("Unable to remove scratch dir %s: %s", path, err)

    async def _credentials(
        self, obj: GitRepository, auth_dir: Path
    ) -> Credentials:
        if obj.secret_ref is None:
            return None
        secret_id = NamedResource(Secret.kind, obj.namespace, obj.secret_ref.name)
        if (secret := self._store.get_object(secret_id, Secret)) is None:
            raise AuthenticationError(
                f"auth error: secret '{obj.secret_ref.name}' not found"
            )
        try:
            return await run_blocking(get_auth_from_secret, obj.url, secret, auth_dir)
        except AuthenticationError as err:
            raise AuthenticationError(f"auth error: {err}") from err

    async def _checkout(
        self,
        obj: GitRepository,
        strategy: CheckoutStrategy,
        auth_dir: Path,
        repo_dir: Path,
        deadline: float,
    ) -> Checkout:
        credentials = await self._credentials(obj, auth_dir)
        remaining = max(deadline - asyncio.get_running_loop().time(), 0.1)
        return await run_blocking(
            fetch_checkout,
            obj.url,
            repo_dir,
            strategy,
            git_env(credentials),
            remaining,
        )

    async def _publish(
        self, obj: GitRepository, checkout: Checkout, repo_dir: Path
    ) -> Artifact:
        """Archive the checkout and point the alias at it, under the artifact lock."""
        artifact = self._storage.artifact_for(
            obj.resource_id, artifact_filename(checkout.commit)
        )
        await self._storage.ensure_dir(artifact)
        async with self._storage.lock(artifact):
            await self._storage.archive(artifact, repo_dir)
            await self._storage.publish_alias(artifact, self._config.alias)
        return artifact
