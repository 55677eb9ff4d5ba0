"""Transfer workflow orchestrator — snapshot, clone, move disks, clean up."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional, Sequence

from pydantic import ValidationError
from rich.markup import escape

from vmdktransfer.config import FailurePolicy, TransferRequest, TransferSettings
from vmdktransfer.errors import (
    CloneError,
    PreconditionError,
    SnapshotError,
    TransferError,
    TransferWorkflowError,
)
from vmdktransfer.pipeline.cleanup import CleanupCoordinator
from vmdktransfer.pipeline.results import ResultAggregator, WorkflowResult
from vmdktransfer.pipeline.state import RunStage, RunState, RunStateStore
from vmdktransfer.pipeline.tracker import TransientResourceTracker
from vmdktransfer.pipeline.transfer import DiskTransferEngine, find_disk
from vmdktransfer.utils.logging import get_logger
from vmdktransfer.vmware.models import CloneHandle, DatastoreRef, SnapshotHandle, VmRef
from vmdktransfer.vmware.paths import DatastorePath

logger = get_logger(__name__)

TIMESTAMP_FORMAT = "%Y%m%d-%H%M%S"


def snapshot_name_for(source_vm: str, stamp: str) -> str:
    return f"{source_vm}-CopyVMDK-Script-{stamp}"


def clone_name_for(source_vm: str, stamp: str) -> str:
    return f"Clone_of_{source_vm}-{stamp}"


@dataclass
class _Targets:
    source: VmRef
    destination: VmRef
    destination_dir: DatastorePath
    datastore: DatastoreRef


class WorkflowOrchestrator:
    """Copies disks from a running VM to another VM without touching the source.

    Stages (executed in order):
    1. resolve      — Look up both VMs and the destination disk directory
    2. snapshot     — Snapshot the source VM
    3. clone        — Clone the snapshot into a powered-off scratch VM
    4. transfer     — Per disk: conflict check, copy, rename, attach
    5. cleanup      — Delete clone and snapshot, always

    Disks already attached stay attached when a later disk fails. With
    ``FailurePolicy.STOP`` the remaining disks are skipped; with
    ``FailurePolicy.CONTINUE`` they are still attempted.
    """

    def __init__(
        self,
        api,
        settings: Optional[TransferSettings] = None,
        state_store: Optional[RunStateStore] = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.api = api
        self.settings = settings or TransferSettings()
        self.state_store = state_store
        self.clock = clock
        self.engine = DiskTransferEngine(api)
        self.cleanup = CleanupCoordinator(api)

    def run(
        self,
        source_vm_name: str,
        disk_names: Sequence[str],
        destination_vm_name: str,
        overwrite: bool = False,
    ) -> WorkflowResult:
        """Transfer ``disk_names`` from the source VM to the destination VM.

        Returns:
            WorkflowResult with one record per migrated disk, in request order

        Raises:
            TransferWorkflowError: When nothing was migrated. ``error.leaked``
                lists transient resources cleanup could not remove.
        """
        request = self._validate(source_vm_name, disk_names, destination_vm_name, overwrite)
        run_id = str(uuid.uuid4())[:8]
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        snapshot_name = snapshot_name_for(request.source_vm, stamp)
        clone_name = clone_name_for(request.source_vm, stamp)
        start_time = time.time()

        state = RunState(
            run_id=run_id,
            source_vm=request.source_vm,
            destination_vm=request.destination_vm,
            disk_names=list(request.disk_names),
            overwrite=request.overwrite,
            started_at=self.clock(),
        )
        self._journal(state)

        logger.info(f"[bold]Starting transfer {run_id}[/bold]: "
                    f"{request.source_vm} ({', '.join(request.disk_names)}) → {request.destination_vm}")

        tracker = TransientResourceTracker()
        aggregator = ResultAggregator()
        error: Optional[TransferWorkflowError] = None
        try:
            targets = self._resolve(request, snapshot_name, clone_name)
            snapshot = self._snapshot(targets.source, snapshot_name, tracker, state)
            clone = self._clone(targets, snapshot, clone_name, tracker, state)
            self._transfer_disks(request, targets, snapshot, clone, aggregator, state)
        except TransferWorkflowError as e:
            error = e
        finally:
            state.stage = RunStage.CLEANING_UP
            report = self.cleanup.unwind(tracker)
            state.leaked = [f"{l.resource_kind}:{l.resource_name}" for l in report.leaked]
            self._journal(state)

        result = aggregator.result(run_id, leaked=report.leaked)
        state.records = [r.to_dict() for r in result.records]
        state.failures = [f.describe() for f in result.failures]
        state.finished_at = self.clock()
        elapsed = time.time() - start_time

        if error is None and not result.records and result.failures:
            error = result.failures[0]

        if error is not None:
            error.leaked = list(report.leaked)
            state.error = error.describe()
            self._set_stage(state, RunStage.FAILED)
            logger.error(f"[red]✗ Transfer {run_id} failed after {elapsed:.0f}s: {escape(error.describe())}[/red]")
            raise error

        self._set_stage(state, RunStage.COMPLETED)
        if result.partial:
            logger.warning(f"[yellow]Transfer {run_id} partially complete: "
                           f"{len(result.records)}/{len(request.disk_names)} disk(s) in {elapsed:.0f}s[/yellow]")
        else:
            logger.info(f"[bold green]Transfer {run_id} complete in {elapsed:.0f}s[/bold green]")
        return result

    def dry_run(
        self,
        source_vm_name: str,
        disk_names: Sequence[str],
        destination_vm_name: str,
        overwrite: bool = False,
    ) -> list[str]:
        """Resolve everything a run needs and describe it, creating nothing."""
        request = self._validate(source_vm_name, disk_names, destination_vm_name, overwrite)
        stamp = self.clock().strftime(TIMESTAMP_FORMAT)
        snapshot_name = snapshot_name_for(request.source_vm, stamp)
        clone_name = clone_name_for(request.source_vm, stamp)
        targets = self._resolve(request, snapshot_name, clone_name)

        source_disks = self.api.list_disks(targets.source)
        lines = [
            f"snapshot '{snapshot_name}' of '{targets.source.name}' (quiesce={self.settings.quiesce})",
            f"clone '{clone_name}' on datastore '{targets.datastore.name}'",
        ]
        for name in request.disk_names:
            disk = find_disk(source_disks, name)
            if disk is None:
                lines.append(f"'{name}': not found on '{targets.source.name}'")
            else:
                lines.append(f"'{name}' ({disk.path}) → {targets.destination_dir.directory} "
                             f"on '{targets.destination.name}'")
        lines.append(f"delete clone '{clone_name}' and snapshot '{snapshot_name}'")
        for line in lines:
            logger.info(f"  {escape(line)}")
        return lines

    # ─── Stages ──────────────────────────────────────────────────────

    def _validate(self, source_vm_name, disk_names, destination_vm_name, overwrite) -> TransferRequest:
        try:
            return TransferRequest(
                source_vm=source_vm_name,
                disk_names=list(disk_names),
                destination_vm=destination_vm_name,
                overwrite=overwrite,
            )
        except ValidationError as e:
            messages = "; ".join(err["msg"] for err in e.errors())
            raise PreconditionError(f"Invalid transfer request: {messages}") from e

    def _resolve(self, request: TransferRequest, snapshot_name: str, clone_name: str) -> _Targets:
        """Look up both VMs and derive where copied disks go."""
        try:
            source = self._find_vm(request.source_vm, "source")
            destination = self._find_vm(request.destination_vm, "destination")
            if source.moid and source.moid == destination.moid:
                raise PreconditionError(f"'{source.name}' and '{destination.name}' are the same VM")

            destination_disks = self.api.list_disks(destination)
            if not destination_disks:
                raise PreconditionError(
                    f"Destination VM '{destination.name}' has no disks; cannot infer target directory"
                )
            base_disk = destination_disks[0]
            datastore = self.api.resolve_datastore(base_disk)

            if snapshot_name in self.api.list_snapshot_names(source):
                raise PreconditionError(f"Snapshot '{snapshot_name}' already exists on '{source.name}'")
            if self.api.find_vm(clone_name) is not None:
                raise PreconditionError(f"A VM named '{clone_name}' already exists")
        except PreconditionError:
            raise
        except Exception as e:
            raise PreconditionError("Could not resolve source and destination", cause=e) from e

        logger.info(f"Destination directory {escape(base_disk.path.directory)} (from '{base_disk.name}'), "
                    f"datastore '{datastore.name}'")
        return _Targets(
            source=source,
            destination=destination,
            destination_dir=base_disk.path.parent,
            datastore=datastore,
        )

    def _find_vm(self, name: str, role: str) -> VmRef:
        vm = self.api.find_vm(name)
        if vm is None:
            raise PreconditionError(f"{role.capitalize()} VM '{name}' not found")
        return vm

    def _snapshot(self, source: VmRef, name: str, tracker: TransientResourceTracker,
                  state: RunState) -> SnapshotHandle:
        self._set_stage(state, RunStage.SNAPSHOTTING)
        logger.info(f"[cyan]▶ Stage: snapshot[/cyan] '{name}'")
        try:
            snapshot = self.api.create_snapshot(
                source, name, quiesce=self.settings.quiesce, memory=self.settings.snapshot_memory,
            )
        except Exception as e:
            raise SnapshotError(f"Could not snapshot '{source.name}'", cause=e) from e

        tracker.track_snapshot(snapshot, self.cleanup.snapshot_remover(snapshot))
        state.snapshot_name = snapshot.name
        self._journal(state)
        logger.info("[green]✓ Stage snapshot complete[/green]")
        return snapshot

    def _clone(self, targets: _Targets, snapshot: SnapshotHandle, name: str,
               tracker: TransientResourceTracker, state: RunState) -> CloneHandle:
        self._set_stage(state, RunStage.CLONING)
        logger.info(f"[cyan]▶ Stage: clone[/cyan] '{name}'")
        try:
            clone = self.api.clone_vm(
                targets.source,
                targets.source.folder,
                name,
                targets.datastore,
                snapshot,
                power_on=False,
                template=False,
            )
        except Exception as e:
            raise CloneError(f"Could not clone '{targets.source.name}' from '{snapshot.name}'", cause=e) from e

        tracker.track_clone(clone, self.cleanup.clone_remover(clone))
        state.clone_name = clone.name
        self._journal(state)
        logger.info("[green]✓ Stage clone complete[/green]")
        return clone

    def _transfer_disks(self, request: TransferRequest, targets: _Targets, snapshot: SnapshotHandle,
                        clone: CloneHandle, aggregator: ResultAggregator, state: RunState) -> None:
        self._set_stage(state, RunStage.TRANSFERRING_DISKS)
        total = len(request.disk_names)
        for index, disk_name in enumerate(request.disk_names, 1):
            logger.info(f"[cyan]▶ Disk {index}/{total}:[/cyan] '{disk_name}'")
            try:
                record = self.engine.transfer(
                    targets.source,
                    clone,
                    targets.destination,
                    disk_name,
                    targets.destination_dir,
                    overwrite=request.overwrite,
                    snapshot=snapshot,
                )
            except TransferError as e:
                aggregator.fail(e)
                logger.error(f"[red]✗ {escape(e.describe())}[/red]")
                if self.settings.failure_policy == FailurePolicy.STOP:
                    skipped = request.disk_names[index:]
                    if skipped:
                        logger.warning(f"Skipping remaining disk(s): {', '.join(skipped)}")
                    return
                continue

            aggregator.add(record)
            logger.info(f"[green]✓ '{disk_name}' → {escape(record.destination_disk_path)}[/green]")

    # ─── Journal ─────────────────────────────────────────────────────

    def _set_stage(self, state: RunState, stage: RunStage) -> None:
        state.stage = stage
        self._journal(state)

    def _journal(self, state: RunState) -> None:
        if self.state_store is None:
            return
        try:
            self.state_store.save(state)
        except OSError as e:
            logger.warning(f"Could not write run journal for {state.run_id}: {e}")
