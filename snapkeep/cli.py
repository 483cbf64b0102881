"""Main CLI entry point for SnapKeep.

This module provides the command-line interface for SnapKeep: creating and
listing database backups, staging restores that are applied on the next
application start, managing the automatic backup schedule and the remote
replica, and checking the health of the backup subsystem.
"""

import os
import time
from typing import Optional

import click

from snapkeep import __version__
from snapkeep.utils.errors import (
    ConfigurationError,
    ErrorHandler,
    create_error_suggestions,
    format_validation_errors,
)
from snapkeep.utils.logging import setup_logging


@click.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.version_option(version=__version__)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output")
@click.option("--log-file", help="Log to file in addition to console")
@click.option(
    "--data-dir",
    envvar="SNAPKEEP_DATA_DIR",
    type=click.Path(file_okay=False),
    help="Application data directory (default: $SNAPKEEP_DATA_DIR or ~/.local/share/snapkeep)",
)
@click.pass_context
def cli(ctx: click.Context, verbose: bool, log_file: Optional[str], data_dir: Optional[str]) -> None:
    """SnapKeep - Durable backups and staged restores for an embedded database.

    Args:
        ctx: Click context object containing shared state
        verbose: Enable verbose output for detailed logging
        log_file: Optional path to log file for additional logging
        data_dir: Application data directory
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    ctx.obj["log_file"] = log_file
    ctx.obj["data_dir"] = data_dir
    ctx.obj["error_handler"] = ErrorHandler(verbose=verbose)

    # Setup logging
    setup_logging(verbose=verbose, log_file=log_file)


def _get_manager(ctx: click.Context):
    """Build the backup manager for the selected data directory."""
    if "manager" in ctx.obj:
        return ctx.obj["manager"]

    from snapkeep.backup import BackupManager
    from snapkeep.config import BackupConfigManager, ConfigValidationError

    try:
        config_manager = BackupConfigManager(ctx.obj["data_dir"])
        config_manager.load()
    except ConfigValidationError as e:
        raise ConfigurationError(
            format_validation_errors(e.errors),
            suggestions=create_error_suggestions("configuration_invalid"),
        ) from e

    manager = BackupManager(config_manager, verbose=ctx.obj["verbose"])
    ctx.obj["manager"] = manager
    return manager


def _format_size(size: int) -> str:
    if size >= 1024 * 1024:
        return f"{size / 1024 / 1024:.1f} MB"
    if size >= 1024:
        return f"{size / 1024:.1f} KB"
    return f"{size} B"


def _print_restore_result(result) -> None:
    if result.success:
        click.echo(f"✓ {result.message}")
    else:
        click.echo(f"✗ {result.error or result.message}")

    if result.safety_copy:
        click.echo(f"Previous database kept at: {result.safety_copy}")


# Backups


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def backup(ctx: click.Context) -> None:
    """Create, list and delete backups."""
    pass


@backup.command("create")
@click.option("--automatic", is_flag=True, help="Tag the backup as automatic instead of manual")
@click.pass_context
def backup_create(ctx: click.Context, automatic: bool) -> None:
    """Create a backup of the live database.

    Args:
        ctx: Click context object
        automatic: Tag the backup as automatic
    """
    try:
        manager = _get_manager(ctx)
        click.echo("Creating backup...")
        result = manager.create_backup("automatic" if automatic else "manual")
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup creation")

    if not result.success:
        click.echo(f"✗ {result.error}")
        ctx.exit(1)

    click.echo(f"✓ Backup created: {result.backup_id}")
    click.echo(f"Size: {_format_size(result.size)}")
    click.echo(f"Checksum: {result.checksum}")
    if result.remote_id:
        click.echo(f"Remote copy: {result.remote_id}")
    for warning in result.warnings:
        click.echo(f"⚠ {warning}")


@backup.command("list")
@click.option("--local-only", is_flag=True, help="Do not query the remote replica")
@click.pass_context
def backup_list(ctx: click.Context, local_only: bool) -> None:
    """List available backups, newest first.

    Args:
        ctx: Click context object
        local_only: Skip remote-only backups
    """
    try:
        records = _get_manager(ctx).list_backups(include_remote=not local_only)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup listing")

    if not records:
        click.echo("No backups found")
        return

    click.echo(f"Backups ({len(records)}):")
    for record in records:
        if record.is_local and record.is_remote:
            location = "local+remote"
        elif record.is_remote:
            location = "remote"
        else:
            location = "local"
        created = record.created_at.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"  {record.id}  {created}  {_format_size(record.size):>10}  {record.origin.value:<9}  {location}")

        if ctx.obj["verbose"] and record.checksum:
            click.echo(f"    Checksum: {record.checksum}")


@backup.command("delete")
@click.argument("backup_id")
@click.option("--remote", "delete_remote", is_flag=True, help="Also delete the remote copy")
@click.option("--yes", "-y", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def backup_delete(ctx: click.Context, backup_id: str, delete_remote: bool, yes: bool) -> None:
    """Delete a backup.

    Args:
        ctx: Click context object
        backup_id: Backup to delete
        delete_remote: Also delete the remote copy
        yes: Skip the confirmation prompt
    """
    if not yes:
        click.confirm(f"Delete backup {backup_id}?", abort=True)

    try:
        deleted = _get_manager(ctx).delete_backup(backup_id, delete_remote=delete_remote)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Backup deletion")

    if not deleted:
        click.echo(f"✗ Backup not found: {backup_id}")
        ctx.exit(1)

    click.echo(f"✓ Backup deleted: {backup_id}")


# Restores


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def restore(ctx: click.Context) -> None:
    """Stage, inspect and cancel restores."""
    pass


@restore.command("stage")
@click.argument("backup_id")
@click.option("--source", type=click.Choice(["local", "remote"]), help="Where to read the backup from")
@click.pass_context
def restore_stage(ctx: click.Context, backup_id: str, source: Optional[str]) -> None:
    """Stage a restore to be applied on the next application start.

    Args:
        ctx: Click context object
        backup_id: Backup to restore
        source: Read from local disk or the remote replica
    """
    try:
        result = _get_manager(ctx).stage_restore(backup_id, source)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore staging")

    _print_restore_result(result)
    click.echo("Restart the application, or run 'snapkeep recover' before it starts, to apply the restore")


@restore.command("now")
@click.argument("backup_id")
@click.option("--source", type=click.Choice(["local", "remote"]), help="Where to read the backup from")
@click.pass_context
def restore_now(ctx: click.Context, backup_id: str, source: Optional[str]) -> None:
    """Replace the database immediately (only while nothing holds it open).

    Args:
        ctx: Click context object
        backup_id: Backup to restore
        source: Read from local disk or the remote replica
    """
    try:
        result = _get_manager(ctx).restore_now(backup_id, source)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore")

    _print_restore_result(result)
    if not result.success:
        ctx.exit(1)


@restore.command("status")
@click.pass_context
def restore_status(ctx: click.Context) -> None:
    """Show the pending restore, if any."""
    try:
        manager = _get_manager(ctx)
        command = manager.get_pending_restore()
        command_exists = manager.recovery.command_exists()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore status")

    if command is None:
        if command_exists:
            click.echo("✗ A restore command is present but unreadable; run 'snapkeep restore cancel'")
        else:
            click.echo("No pending restore")
        return

    click.echo(f"Pending restore: {command.backup_id}")
    click.echo(f"Source: {command.source.value}")
    click.echo(f"Staged: {command.created_at.isoformat()}")
    click.echo(f"Expires: {command.expires_at.isoformat()}")
    if command.is_expired():
        click.echo("⚠ The staged restore has expired and will be discarded on the next start")


@restore.command("cancel")
@click.pass_context
def restore_cancel(ctx: click.Context) -> None:
    """Discard the pending restore and its staged payload."""
    try:
        removed = _get_manager(ctx).cancel_pending_restore()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Restore cancellation")

    if removed:
        click.echo("✓ Pending restore cancelled")
    else:
        click.echo("No pending restore")


@cli.command()
@click.pass_context
def recover(ctx: click.Context) -> None:
    """Apply a staged restore. Run before the application opens its database.

    Args:
        ctx: Click context object
    """
    try:
        result = _get_manager(ctx).bootstrap()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Boot recovery")

    _print_restore_result(result)
    if not result.success and result.state.value == "failed":
        ctx.exit(1)


# Schedule


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def schedule(ctx: click.Context) -> None:
    """Manage automatic backups."""
    pass


def _print_schedule(info) -> None:
    if not info["enabled"]:
        click.echo("Automatic backups: disabled")
        return

    click.echo("Automatic backups: enabled")
    click.echo(f"Frequency: {info['frequency']}")
    click.echo(f"Time: {info['time']}")
    if info.get("weekday") is not None:
        click.echo(f"Weekday: {info['weekday']} (0=Sunday)")
    if info.get("next_run"):
        click.echo(f"Next run: {info['next_run']}")


@schedule.command("show")
@click.pass_context
def schedule_show(ctx: click.Context) -> None:
    """Show the automatic backup schedule."""
    try:
        info = _get_manager(ctx).get_schedule_info()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Schedule lookup")

    _print_schedule(info)


@schedule.command("set")
@click.option("--frequency", type=click.Choice(["daily", "weekly"]), default="daily", help="How often to back up")
@click.option("--time", "time_of_day", default="02:00", help="Time of day, HH:MM")
@click.option("--weekday", type=click.IntRange(0, 6), help="Day of week for weekly backups (0=Sunday)")
@click.option("--disable", is_flag=True, help="Turn automatic backups off")
@click.pass_context
def schedule_set(
    ctx: click.Context,
    frequency: str,
    time_of_day: str,
    weekday: Optional[int],
    disable: bool,
) -> None:
    """Update the automatic backup schedule.

    Args:
        ctx: Click context object
        frequency: daily or weekly
        time_of_day: Time of day as HH:MM
        weekday: Day of week for weekly backups
        disable: Turn automatic backups off
    """
    new_schedule = {"enabled": not disable, "frequency": frequency, "time": time_of_day}
    if frequency == "weekly":
        new_schedule["weekday"] = weekday if weekday is not None else 0

    try:
        manager = _get_manager(ctx)
        manager.update_schedule(new_schedule)
        info = manager.get_schedule_info()
        manager.shutdown()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Schedule update")

    click.echo("✓ Schedule updated")
    _print_schedule(info)


@schedule.command("run")
@click.pass_context
def schedule_run(ctx: click.Context) -> None:
    """Run the scheduler in the foreground until interrupted."""
    try:
        manager = _get_manager(ctx)
        started = manager.scheduler.start()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Scheduler startup")

    if not started:
        click.echo("✗ Automatic backups are disabled; enable them with 'snapkeep schedule set'")
        ctx.exit(1)

    _print_schedule(manager.get_schedule_info())
    click.echo("Press Ctrl+C to stop")

    try:
        while not manager.scheduler.wait(timeout=1):
            pass
    except KeyboardInterrupt:
        click.echo("\nStopping scheduler...")
    finally:
        manager.shutdown()


# Remote replica


@cli.group(context_settings={"help_option_names": ["-h", "--help"]})
@click.pass_context
def remote(ctx: click.Context) -> None:
    """Configure and inspect the remote replica."""
    pass


@remote.command("configure")
@click.option("--enable/--disable", default=None, help="Turn remote replication on or off")
@click.option("--client-id", help="OAuth client id")
@click.option("--client-secret", help="OAuth client secret")
@click.option("--access-token", help="Bearer access token")
@click.option("--refresh-token", help="OAuth refresh token")
@click.option("--expires-in", type=int, help="Seconds until the access token expires")
@click.option("--folder-id", help="Remote folder to store backups in")
@click.pass_context
def remote_configure(
    ctx: click.Context,
    enable: Optional[bool],
    client_id: Optional[str],
    client_secret: Optional[str],
    access_token: Optional[str],
    refresh_token: Optional[str],
    expires_in: Optional[int],
    folder_id: Optional[str],
) -> None:
    """Store remote replica settings and credentials.

    Args:
        ctx: Click context object
        enable: Turn remote replication on or off
        client_id: OAuth client id
        client_secret: OAuth client secret
        access_token: Bearer access token
        refresh_token: OAuth refresh token
        expires_in: Seconds until the access token expires
        folder_id: Remote folder id
    """
    settings = {
        key: value
        for key, value in {
            "enabled": enable,
            "client_id": client_id,
            "client_secret": client_secret,
            "access_token": access_token,
            "refresh_token": refresh_token,
            "folder_id": folder_id,
        }.items()
        if value is not None
    }
    if expires_in is not None:
        settings["token_expires_at"] = time.time() + expires_in

    if not settings:
        click.echo("Nothing to configure; see 'snapkeep remote configure --help'")
        return

    try:
        stored = _get_manager(ctx).configure_remote(**settings)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Remote configuration")

    click.echo("✓ Remote settings saved")
    click.echo(f"Remote replication: {'enabled' if stored.get('enabled') else 'disabled'}")
    click.echo(f"Authenticated: {'yes' if stored.get('access_token') or stored.get('refresh_token') else 'no'}")


@remote.command("list")
@click.pass_context
def remote_list(ctx: click.Context) -> None:
    """List backups stored in the remote replica."""
    try:
        replica = _get_manager(ctx).get_remote()
        if replica is None:
            click.echo("Remote replication is disabled")
            return
        artifacts = replica.list()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Remote listing")

    if not artifacts:
        click.echo("No remote backups found")
        return

    click.echo(f"Remote backups ({len(artifacts)}):")
    for artifact in artifacts:
        created = artifact.created_at.strftime("%Y-%m-%d %H:%M:%S")
        click.echo(f"  {artifact.name}  {created}  {_format_size(artifact.size):>10}  id={artifact.id}")


@remote.command("quota")
@click.pass_context
def remote_quota(ctx: click.Context) -> None:
    """Show remote storage usage."""
    try:
        replica = _get_manager(ctx).get_remote()
        if replica is None:
            click.echo("Remote replication is disabled")
            return
        quota = replica.quota()
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Remote quota")

    click.echo(f"Used: {_format_size(quota.get('used', 0))}")
    if quota.get("total"):
        click.echo(f"Total: {_format_size(quota['total'])}")
        click.echo(f"Available: {_format_size(quota.get('available', 0))}")
    else:
        click.echo("Total: unlimited")


# Health


@cli.command()
@click.option("--cleanup", is_flag=True, help="Discard a stale restore command and staged payload")
@click.option("--probe-remote", is_flag=True, help="Contact the remote replica to confirm the credential")
@click.pass_context
def health(ctx: click.Context, cleanup: bool, probe_remote: bool) -> None:
    """Check the health of the backup system.

    Args:
        ctx: Click context object
        cleanup: Remove stale restore state before checking
        probe_remote: Make a request to the remote replica
    """
    try:
        manager = _get_manager(ctx)
        if cleanup:
            if manager.health.cleanup_stale_restore():
                click.echo("✓ Stale restore state removed")
            else:
                click.echo("No stale restore state found")
        report = manager.check_health(probe_remote=probe_remote)
    except Exception as e:
        ctx.obj["error_handler"].exit_with_error(e, "Health check")

    click.echo("SnapKeep Backup Health")
    click.echo("=" * 50)

    status_icon = "✓" if report.healthy else ("✗" if report.status == "error" else "⚠")
    click.echo(f"{status_icon} Status: {report.status}")
    click.echo(f"Backups: {report.total_backups} ({_format_size(report.total_size)})")
    if report.last_backup:
        click.echo(f"Last backup: {report.last_backup.isoformat()}")
    if report.next_scheduled:
        click.echo(f"Next scheduled: {report.next_scheduled.isoformat()}")
    click.echo(f"Data directory: {os.path.abspath(manager.config_manager.data_dir)}")

    if report.issues:
        click.echo(f"\nIssues ({len(report.issues)}):")
        for issue in report.issues:
            click.echo(f"  - {issue}")

    if report.recommendations:
        click.echo("\nRecommendations:")
        for recommendation in report.recommendations:
            click.echo(f"  • {recommendation}")

    if report.status == "error":
        ctx.exit(1)


if __name__ == "__main__":
    cli()
