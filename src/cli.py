#!/usr/bin/env python3
"""
gqlctl - command-line front end for the GraphQL reconciler.

Resources are described in YAML/JSON documents of the form
``{name: ..., spec: {...}}``. State is kept in the configured state store
between invocations.
"""

import asyncio
import json
import logging
import sys
from typing import Any, Optional, Tuple

import click
import yaml
from tabulate import tabulate

from config import Config, load_config
from errors import ConfigurationError, GraphQLApplicationError, ReconcileError
from executor import QueryExecutor
from lifecycle import LifecycleResult, MutationResource
from models import ResourceSpec
from stores import StateStore, create_store
from validation import validate_resource_document


def load_document(filename: str) -> Tuple[str, ResourceSpec]:
    """
    Read and validate a resource document.

    Returns:
        Tuple of (resource name, spec).

    Raises:
        ConfigurationError: If the file cannot be parsed or is invalid.
    """
    with open(filename, "r", encoding="utf-8") as f:
        try:
            if filename.endswith(".yaml") or filename.endswith(".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
        except (yaml.YAMLError, json.JSONDecodeError) as e:
            raise ConfigurationError(f"{filename}: unable to parse document: {e}")

    if not isinstance(data, dict):
        raise ConfigurationError(f"{filename}: document must be a mapping")

    is_valid, error = validate_resource_document(data)
    if not is_valid:
        raise ConfigurationError(f"{filename}: {error}")

    return data["name"], ResourceSpec.from_dict(data["spec"])


def _setup_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.logging.level, logging.INFO),
        format=config.logging.format,
        stream=sys.stderr,
    )


def _report_error(error: BaseException, name: Optional[str] = None) -> None:
    prefix = f"{name}: " if name else ""
    click.echo(f"Error: {prefix}{error}", err=True)
    if isinstance(error, GraphQLApplicationError):
        for diagnostic in error.diagnostics:
            click.echo(f"  - {diagnostic}", err=True)


def _echo_result(name: str, result: LifecycleResult) -> None:
    line = f"{name}: {result.operation.value}"
    if result.resource_id:
        line += f" (id {result.resource_id[:12]})"
    if result.replaced:
        line += " [replaced]"
    if result.drift_detected:
        line += " [drift detected]"
    click.echo(line)
    for miss in result.misses:
        click.echo(
            f"  warning: could not compute '{miss.variable}' "
            f"from '{miss.source_path}': {miss.reason}",
            err=True,
        )


def _exit_on_error(func, *args) -> Any:
    """Call func, exiting non-zero on reconciler errors."""
    try:
        return func(*args)
    except ReconcileError as e:
        _report_error(e)
        sys.exit(1)


def _run(coro) -> Any:
    """Run a coroutine, exiting non-zero on reconciler errors."""
    try:
        return asyncio.run(coro)
    except ReconcileError as e:
        _report_error(e)
        sys.exit(1)


async def _with_resources(config: Config, work) -> Any:
    """Open the state store and executor, run work(store, executor), close."""
    store = await create_store(config.state)
    try:
        executor = QueryExecutor.from_config(config)
        return await work(store, executor)
    finally:
        await store.close()


@click.group()
def cli():
    """gqlctl - manage GraphQL-backed objects declaratively"""
    try:
        config = load_config()
    except (ReconcileError, ValueError) as e:
        click.echo(f"Error: invalid configuration: {e}", err=True)
        sys.exit(1)
    _setup_logging(config)


@cli.command()
@click.option(
    "--filename",
    "-f",
    "filenames",
    multiple=True,
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Resource document (YAML or JSON); may be repeated",
)
@click.option(
    "--previous",
    type=click.Path(exists=True, dir_okay=False),
    help=(
        "Previously applied document. Overrides the stored create mutation "
        "when detecting replacement"
    ),
)
def apply(filenames, previous):
    """Create or update resources from documents"""
    config = load_config()
    documents = [_exit_on_error(load_document, filename) for filename in filenames]

    previous_spec = None
    if previous:
        if len(documents) != 1:
            raise click.UsageError("--previous can only be used with a single -f")
        previous_name, previous_spec = _exit_on_error(load_document, previous)
        if previous_name != documents[0][0]:
            raise click.UsageError(
                f"--previous describes '{previous_name}', "
                f"not '{documents[0][0]}'"
            )

    async def work(store: StateStore, executor: QueryExecutor):
        async def apply_one(name: str, spec: ResourceSpec):
            resource = await MutationResource.load(name, spec, executor, store)
            return await resource.apply(previous_spec)

        return await asyncio.gather(
            *(apply_one(name, spec) for name, spec in documents),
            return_exceptions=True,
        )

    results = _run(_with_resources(config, work))

    failed = 0
    for (name, _), result in zip(documents, results):
        if isinstance(result, BaseException):
            if not isinstance(result, ReconcileError):
                raise result
            _report_error(result, name)
            failed += 1
        else:
            _echo_result(name, result)

    if failed:
        click.echo(f"{failed} of {len(documents)} resource(s) failed", err=True)
        sys.exit(1)


@cli.command()
@click.argument("name")
@click.option(
    "--filename",
    "-f",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Resource document (YAML or JSON)",
)
def refresh(name, filename):
    """Re-read a resource and store the refreshed state"""
    config = load_config()
    spec = _spec_for(name, filename)

    async def work(store: StateStore, executor: QueryExecutor):
        resource = await MutationResource.load(name, spec, executor, store)
        return await resource.read()

    _echo_result(name, _run(_with_resources(config, work)))


@cli.command()
@click.argument("name")
@click.option(
    "--filename",
    "-f",
    required=True,
    type=click.Path(exists=True, dir_okay=False),
    help="Resource document (YAML or JSON)",
)
@click.confirmation_option(prompt="Are you sure you want to destroy this resource?")
def destroy(name, filename):
    """Delete a resource and forget its state"""
    config = load_config()
    spec = _spec_for(name, filename)

    async def work(store: StateStore, executor: QueryExecutor):
        resource = await MutationResource.load(name, spec, executor, store)
        return await resource.destroy()

    _echo_result(name, _run(_with_resources(config, work)))


@cli.command()
@click.argument("name")
@click.option("--output", "-o", type=click.Choice(["table", "json"]), default="table")
def show(name, output):
    """Show the stored state of a resource"""
    config = load_config()

    async def work(store: StateStore):
        return await store.load(name)

    state = _run(_with_store(config, work))
    if state is None:
        click.echo(f"No state stored for {name}", err=True)
        sys.exit(1)

    if output == "json":
        click.echo(json.dumps(state.to_dict(), indent=2, sort_keys=True))
        return

    click.echo(f"Resource: {name}")
    click.echo(f"ID: {state.resource_id or 'N/A'}")
    click.echo(f"Exists: {'yes' if state.exists else 'no'}")

    rows = []
    for operation, variables in (
        ("read", state.computed_read_variables),
        ("update", state.computed_update_variables),
        ("delete", state.computed_delete_variables),
    ):
        for variable, value in sorted(variables.items()):
            rows.append([operation, variable, value])
    if rows:
        click.echo(tabulate(rows, headers=["Operation", "Variable", "Value"]))
    else:
        click.echo("No computed variables")


@cli.command(name="list")
def list_resources():
    """List resources with stored state"""
    config = load_config()

    async def work(store: StateStore):
        rows = []
        for name in await store.list_names():
            state = await store.load(name)
            if state is None:
                continue
            rows.append(
                [
                    name,
                    state.resource_id[:12] or "-",
                    "yes" if state.exists else "no",
                    len(state.computed_read_variables),
                ]
            )
        return rows

    rows = _run(_with_store(config, work))
    if not rows:
        click.echo("No resources found")
        return
    click.echo(tabulate(rows, headers=["Name", "ID", "Exists", "Read Variables"]))


@cli.command()
def migrate():
    """Apply pending state schema migrations"""
    config = load_config()
    if config.state.backend != "postgres":
        click.echo("The file state backend has no schema to migrate")
        return

    # create_store() applies pending migrations when it connects
    async def work(store: StateStore):
        return None

    _run(_with_store(config, work))
    click.echo("State schema is up to date")


def _spec_for(name: str, filename: str) -> ResourceSpec:
    document_name, spec = _exit_on_error(load_document, filename)
    if document_name != name:
        raise click.UsageError(f"{filename} describes '{document_name}', not '{name}'")
    return spec


async def _with_store(config: Config, work) -> Any:
    store = await create_store(config.state)
    try:
        return await work(store)
    finally:
        await store.close()


if __name__ == "__main__":
    cli()
