"""CLI commands for running the compliance monitoring engine."""

import asyncio
import json
import logging
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click

from config.settings import settings
from vigil.adapters import AdapterRegistryStore
from vigil.db import check_database, dispose_engine
from vigil.errors import VigilError
from vigil.models import ServiceContext
from vigil.monitoring import MonitoringEngine
from vigil.persistence import (
    AdapterConfigStore,
    AlertStore,
    AssessmentStore,
    BaselineStore,
    EvidenceStore,
    MonitoringCheckStore,
    RemediationStore,
    YamlAdapterConfigStore,
    ensure_schema,
)
from vigil.scheduler import ComplianceScheduler, SchedulerServices, default_schedules
from vigil.supabase_client import check_supabase, get_async_supabase_client
from vigil.tracing import setup_tracing


async def _build_services(adapters_file: Path | None) -> SchedulerServices:
    """Wire stores and engines from Supabase/Postgres settings."""
    try:
        client = await get_async_supabase_client()
    except RuntimeError as e:
        raise click.ClickException(str(e)) from e
    await ensure_schema()

    config_store: Any = (
        YamlAdapterConfigStore(adapters_file) if adapters_file else AdapterConfigStore(client)
    )
    assessment_store = AssessmentStore(client)
    evidence_store = EvidenceStore(client)
    alert_store = AlertStore(client)
    remediation_store = RemediationStore(client)
    monitoring = MonitoringEngine(
        assessment_store=assessment_store,
        evidence_store=evidence_store,
        alert_store=alert_store,
        remediation_store=remediation_store,
        baseline_store=BaselineStore(),
        check_store=MonitoringCheckStore(),
    )
    return SchedulerServices(
        monitoring=monitoring,
        assessment_store=assessment_store,
        evidence_store=evidence_store,
        alert_store=alert_store,
        remediation_store=remediation_store,
        config_store=config_store,
        registries=AdapterRegistryStore(config_store),
    )


def _echo_json(data: Any) -> None:
    click.echo(json.dumps(data, indent=2, default=str))


@click.group()
@click.option(
    "--adapters-file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Read adapter configurations from a YAML file instead of Supabase",
)
@click.option("--log-level", default=settings.log_level, help="Logging level")
@click.pass_context
def vigil(ctx: click.Context, adapters_file: Path | None, log_level: str):
    """Continuous compliance monitoring and evidence collection."""
    logging.basicConfig(
        level=getattr(logging, log_level.upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s"
    )
    if settings.tracing_enabled:
        setup_tracing(log_level)
    ctx.obj = {"adapters_file": adapters_file}


@vigil.command()
@click.option(
    "--startup-delay",
    default=settings.scheduler_startup_delay_seconds,
    type=float,
    help="Seconds to wait before the initial run of every job",
)
@click.pass_obj
def scheduler(obj: dict, startup_delay: float):
    """Run the compliance scheduler until interrupted."""

    async def serve() -> None:
        services = await _build_services(obj["adapters_file"])
        runner = ComplianceScheduler(services, startup_delay_s=startup_delay)
        runner.start()
        click.echo(f"Scheduler running {len(runner.get_status()['active_jobs'])} jobs. "
                   "Press Ctrl+C to stop.")
        try:
            await asyncio.Event().wait()
        finally:
            await runner.stop()
            await services.registries.clear()
            await dispose_engine()

    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        click.echo("\nShutting down scheduler...")


@vigil.command()
@click.argument("job_id")
@click.pass_obj
def trigger(obj: dict, job_id: str):
    """Run one scheduler job now and print its result."""

    async def run() -> Any:
        services = await _build_services(obj["adapters_file"])
        try:
            return await ComplianceScheduler(services).trigger_job(job_id)
        finally:
            await services.registries.clear()
            await dispose_engine()

    try:
        result = asyncio.run(run())
    except VigilError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(asdict(result))
    if not result.success:
        raise SystemExit(1)


@vigil.command()
@click.argument("tenant_id")
@click.option("--store/--no-store", default=False, help="Persist collected evidence")
@click.pass_obj
def collect(obj: dict, tenant_id: str, store: bool):
    """Collect evidence from every enabled adapter of a tenant."""

    async def run() -> dict[str, Any]:
        services = await _build_services(obj["adapters_file"])
        registry = await services.registries.get_or_create(tenant_id)
        try:
            result = await registry.collect_all_evidence()
            stored = 0
            if store:
                for adapter_id, collection in result.results.items():
                    for item in collection.evidence:
                        await services.evidence_store.upsert_evidence(tenant_id, item, adapter_id)
                        stored += 1
        finally:
            await services.registries.clear()
            await dispose_engine()
        return {
            "success": result.success,
            "total_adapters": result.total_adapters,
            "successful_adapters": result.successful_adapters,
            "failed_adapters": result.failed_adapters,
            "total_evidence_collected": result.total_evidence_collected,
            "evidence_stored": stored,
            "duration_ms": round(result.duration_ms),
            "errors": {
                adapter_id: [asdict(e) for e in collection.errors]
                for adapter_id, collection in result.results.items()
                if collection.errors
            },
        }

    try:
        summary = asyncio.run(run())
    except VigilError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(summary)


@vigil.command()
@click.argument("tenant_id")
@click.argument("framework_id")
@click.pass_obj
def check(obj: dict, tenant_id: str, framework_id: str):
    """Run the scheduled compliance check for one tenant and framework."""

    async def run() -> Any:
        services = await _build_services(obj["adapters_file"])
        try:
            return await services.monitoring.run_scheduled_check(tenant_id, framework_id)
        finally:
            await dispose_engine()

    result = asyncio.run(run())
    _echo_json(
        {
            **asdict(result),
            "drifts": [d.to_dict() for d in result.drifts],
        }
    )


@vigil.command()
@click.argument("tenant_id")
@click.argument("assessment_id")
@click.option("--notes", default=None, help="Notes stored with the baseline")
@click.option("--user", "user_id", default="cli", help="Recorded as the baseline author")
@click.pass_obj
def baseline(obj: dict, tenant_id: str, assessment_id: str, notes: str | None, user_id: str):
    """Capture a baseline from a completed assessment."""

    async def run() -> Any:
        services = await _build_services(obj["adapters_file"])
        try:
            return await services.monitoring.capture_baseline(
                ServiceContext(tenant_id=tenant_id, user_id=user_id), assessment_id, notes
            )
        finally:
            await dispose_engine()

    try:
        captured = asyncio.run(run())
    except VigilError as e:
        raise click.ClickException(str(e)) from e
    _echo_json(asdict(captured))


@vigil.command()
def doctor():
    """Check that Supabase and Postgres are reachable."""

    async def run() -> dict[str, str | None]:
        try:
            return {"supabase": await check_supabase(), "database": await check_database()}
        finally:
            await dispose_engine()

    problems = asyncio.run(run())
    for name, error in problems.items():
        click.echo(f"{name:<10} {'ok' if error is None else 'FAILED: ' + error}")
    if any(problems.values()):
        raise SystemExit(1)


@vigil.command()
def jobs():
    """List scheduler jobs and their intervals."""
    for job_id, schedule in default_schedules().items():
        state = "enabled" if schedule.enabled else "disabled"
        minutes = schedule.interval_ms // 60000
        click.echo(f"{job_id.value:<24} every {minutes:>5} min  {state:<8}  {schedule.name}")


if __name__ == "__main__":
    vigil()
