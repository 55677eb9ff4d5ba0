"""CLI entry point for vmdk-transfer."""

from __future__ import annotations

import json
import os
import sys

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from vmdktransfer import __version__
from vmdktransfer.config import AppConfig, FailurePolicy
from vmdktransfer.errors import TransferWorkflowError

console = Console()

EXIT_FAILED = 1
EXIT_LEAKED = 2


def load_config(config_path: str | None) -> AppConfig:
    """Load configuration from file or environment."""
    try:
        if config_path:
            return AppConfig.from_yaml(config_path)
        return AppConfig.from_env_and_args()
    except Exception as e:
        console.print(f"[red]Error loading config: {escape(str(e))}[/red]")
        console.print("Provide a --config file or set VCENTER_HOST / VCENTER_USERNAME / VCENTER_PASSWORD.")
        sys.exit(EXIT_FAILED)


def connect_api(config: AppConfig):
    """Open a vCenter session and wrap it in the management API."""
    from vmdktransfer.vmware.api import VSphereManagementApi
    from vmdktransfer.vmware.client import VSphereClient

    client = VSphereClient(task_timeout=config.transfer.task_timeout)
    pw = config.vmware.password.get_secret_value() if config.vmware.password else ""
    with console.status("[bold green]Connecting to vCenter..."):
        client.connect(
            config.vmware.vcenter,
            config.vmware.username,
            pw,
            port=config.vmware.port,
            insecure=config.vmware.insecure,
        )
    return client, VSphereManagementApi(client)


def open_state_store(state_dir=None, config_path: str | None = None):
    """Run journal at ``state_dir``, the config file's ``transfer.state_dir``,
    $VMDK_TRANSFER_STATE_DIR or the default location, in that order."""
    from vmdktransfer.config import TransferSettings
    from vmdktransfer.pipeline.state import RunStateStore

    if state_dir is None and config_path:
        state_dir = load_config(config_path).transfer.state_dir
    if state_dir is None:
        state_dir = os.environ.get("VMDK_TRANSFER_STATE_DIR") or TransferSettings().state_dir
    return RunStateStore(state_dir)


@click.group()
@click.version_option(version=__version__, prog_name="vmdk-transfer")
@click.option("--log-level", default="INFO",
              type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False))
def main(log_level: str):
    """Copy virtual disks from a running VMware VM to another VM.

    The source VM keeps running: disks are taken from a snapshot through a
    throw-away clone, which is removed again when the transfer ends.
    """
    from vmdktransfer.utils.logging import set_log_level

    set_log_level(log_level)


@main.command()
@click.option("--source-vm", required=True, help="VM to copy disks from")
@click.option("--disk", "disks", required=True, multiple=True,
              help="Disk label on the source VM (e.g. 'Hard disk 2'); repeat for several, order is kept")
@click.option("--dest-vm", required=True, help="VM to attach the copies to")
@click.option("--overwrite", is_flag=True, default=False,
              help="Delete a destination disk that has the same target file name")
@click.option("--continue-on-error", is_flag=True, default=False,
              help="Keep transferring later disks after one fails")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
@click.option("--dry-run", is_flag=True, default=False, help="Resolve and describe without changing anything")
@click.option("--format", "fmt", type=click.Choice(["table", "json"]), default="table")
def transfer(source_vm: str, disks: tuple[str, ...], dest_vm: str, overwrite: bool,
             continue_on_error: bool, config_path: str | None, dry_run: bool, fmt: str):
    """Transfer disks from SOURCE-VM to DEST-VM."""
    config = load_config(config_path)
    if continue_on_error:
        config.transfer.failure_policy = FailurePolicy.CONTINUE

    from vmdktransfer.pipeline.workflow import WorkflowOrchestrator

    client, api = connect_api(config)
    state_store = open_state_store(config.transfer.state_dir) if config.transfer.journal else None
    orchestrator = WorkflowOrchestrator(api, settings=config.transfer, state_store=state_store)

    try:
        if dry_run:
            console.print("[yellow]DRY RUN — No changes will be made[/yellow]")
            for line in orchestrator.dry_run(source_vm, list(disks), dest_vm, overwrite=overwrite):
                console.print(f"  • {escape(line)}")
            return
        result = orchestrator.run(source_vm, list(disks), dest_vm, overwrite=overwrite)
    except TransferWorkflowError as e:
        console.print(f"\n[bold red]❌ Transfer failed at stage '{e.stage}'[/bold red]")
        console.print(f"  Error: {escape(e.describe())}")
        _print_leaks(e.leaked)
        sys.exit(EXIT_FAILED)
    finally:
        client.disconnect()

    if fmt == "json":
        console.print_json(json.dumps(result.to_dict(), default=str))
    else:
        table = Table(title=f"Transfer {result.run_id}")
        table.add_column("Source disk", style="cyan")
        table.add_column("Source path")
        table.add_column("Destination VM", style="green")
        table.add_column("Destination disk", style="green")
        table.add_column("Destination path")
        for record in result.records:
            table.add_row(
                f"{record.source_vm}/{record.source_disk_name}",
                escape(record.source_disk_path),
                record.destination_vm,
                record.destination_disk_name,
                escape(record.destination_disk_path),
            )
        console.print(table)

    if result.failures:
        console.print(f"\n[bold yellow]⚠️  {len(result.failures)} disk(s) not transferred:[/bold yellow]")
        for failure in result.failures:
            console.print(f"  ❌ {escape(failure.describe())}")
    else:
        console.print(f"\n[bold green]✅ Transfer complete[/bold green] — {len(result.records)} disk(s)")

    _print_leaks(result.leaked)
    if result.failures:
        sys.exit(EXIT_FAILED)
    if result.leaked:
        sys.exit(EXIT_LEAKED)


def _print_leaks(leaked) -> None:
    if not leaked:
        return
    console.print("\n[bold red]Transient resources left behind (remove manually):[/bold red]")
    for leak in leaked:
        console.print(f"  • {leak.resource_kind} '{leak.resource_name}': {escape(str(leak.cause))}")


@main.command("disks")
@click.option("--vm", required=True, help="VM whose disks to list")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def list_disks(vm: str, config_path: str | None):
    """List the disks attached to a VM."""
    config = load_config(config_path)
    client, api = connect_api(config)
    try:
        vm_ref = api.find_vm(vm)
        if vm_ref is None:
            console.print(f"[red]VM '{vm}' not found[/red]")
            sys.exit(EXIT_FAILED)
        disks = api.list_disks(vm_ref)
    finally:
        client.disconnect()

    table = Table(title=f"Disks of '{vm}'")
    table.add_column("Name", style="cyan", no_wrap=True)
    table.add_column("Path")
    table.add_column("Datastore", style="magenta")
    table.add_column("Size (GB)", justify="right")
    for disk in disks:
        table.add_row(disk.name, escape(disk.path.render()), disk.datastore, f"{disk.capacity_kb / 1024 / 1024:.1f}")
    console.print(table)


@main.command()
@click.option("--run-id", required=True, help="Run ID to show")
@click.option("--state-dir", type=click.Path(file_okay=False), help="Run journal directory")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def status(run_id: str, state_dir: str | None, config_path: str | None):
    """Show the journaled state of a transfer run."""
    state = open_state_store(state_dir, config_path).load(run_id)

    if not state:
        console.print(f"[red]Run '{run_id}' not found[/red]")
        sys.exit(EXIT_FAILED)

    console.print(f"\n[bold]Run: {state.run_id}[/bold]")
    console.print(f"  {state.source_vm} → {state.destination_vm}: {', '.join(state.disk_names)}")
    console.print(f"  Stage: {state.stage.value}")
    console.print(f"  Started: {state.started_at}")
    console.print(f"  Snapshot: {state.snapshot_name or '-'}  Clone: {state.clone_name or '-'}")
    for record in state.records:
        console.print(f"  ✅ {record['source_disk_name']} → {escape(record['destination_disk_path'])}")
    for failure in state.failures:
        console.print(f"  ❌ {escape(failure)}")
    if state.error:
        console.print(f"  [red]Error: {escape(state.error)}[/red]")
    if state.leaked:
        console.print(f"  [red]Leaked: {', '.join(state.leaked)}[/red]")


@main.command()
@click.option("--state-dir", type=click.Path(file_okay=False), help="Run journal directory")
@click.option("--config", "config_path", type=click.Path(exists=True), help="Configuration file")
def leaks(state_dir: str | None, config_path: str | None):
    """List snapshots and clone VMs that cleanup could not remove."""
    states = open_state_store(state_dir, config_path).list_leaks()

    if not states:
        console.print("[green]No leaked transient resources recorded[/green]")
        return

    table = Table(title="Leaked transient resources")
    table.add_column("Run", style="cyan")
    table.add_column("Source VM")
    table.add_column("Started")
    table.add_column("Resources", style="red")
    for state in states:
        table.add_row(state.run_id, state.source_vm, str(state.started_at or ""), ", ".join(state.leaked))
    console.print(table)


if __name__ == "__main__":
    main()
