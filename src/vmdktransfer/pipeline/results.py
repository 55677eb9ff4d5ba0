"""Transfer records and the aggregated workflow result."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field

from vmdktransfer.errors import DeletionError, TransferError


@dataclass(frozen=True)
class TransferRecord:
    """One successfully copied, renamed and attached disk."""
    source_vm: str
    source_disk_name: str
    source_disk_path: str
    snapshot_name: str
    clone_vm_name: str
    destination_vm: str
    destination_disk_name: str
    destination_disk_path: str

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass
class WorkflowResult:
    """Records for every migrated disk, in request order.

    ``failures`` is non-empty when some disks did not make it (partial
    success); ``leaked`` lists transient resources cleanup could not remove.
    """
    run_id: str
    records: list[TransferRecord] = field(default_factory=list)
    failures: list[TransferError] = field(default_factory=list)
    leaked: list[DeletionError] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.records) and not self.failures

    @property
    def partial(self) -> bool:
        return bool(self.records) and bool(self.failures)

    def to_dict(self) -> dict:
        return {
            "run_id": self.run_id,
            "records": [r.to_dict() for r in self.records],
            "failures": [f.describe() for f in self.failures],
            "leaked": [f"{l.resource_kind}:{l.resource_name}" for l in self.leaked],
        }


class ResultAggregator:
    """Append-only, order-preserving collection of transfer outcomes."""

    def __init__(self):
        self._records: list[TransferRecord] = []
        self._failures: list[TransferError] = []

    def add(self, record: TransferRecord) -> None:
        self._records.append(record)

    def fail(self, error: TransferError) -> None:
        self._failures.append(error)

    @property
    def records(self) -> list[TransferRecord]:
        return list(self._records)

    @property
    def failures(self) -> list[TransferError]:
        return list(self._failures)

    def result(self, run_id: str, leaked: list[DeletionError] | None = None) -> WorkflowResult:
        return WorkflowResult(
            run_id=run_id,
            records=self.records,
            failures=self.failures,
            leaked=list(leaked or []),
        )
