"""reqrun CLI - replay request collections with variable chaining."""

import logging
import os
import subprocess
import sys

import click

from reqrun.errors import ReqrunError

TOOL_HELP = """\
reqrun: replay HTTP requests stored as YAML collections.

Requests are resolved against layered variables, sent in order, and values
extracted from each response are available to every later request.

\b
USAGE
─────
  reqrun run COLLECTION REQUEST [REQUEST ...] [-e ENV] [-v name=value]
  reqrun collections
  reqrun requests COLLECTION
  reqrun environments COLLECTION
  reqrun create collection NAME [--edit]
  reqrun create environment|request COLLECTION NAME [--edit]
  reqrun edit collection NAME
  reqrun edit environment|request COLLECTION NAME
  reqrun cd

\b
REQUEST FILE (collections/<collection>/<request>.yaml)
────────────────────────────────────────────────────
  \b
  depends:                        # run these requests first
    - login
  http:
    method: POST
    url: '{{host}}/item'
    headers:
      Accept: application/json
    params:
      query:
        - {key: page, value: '1'}
    body:
      type: json                  # text | json | graphql | form | binary
      json: {name: '{{name}}'}
    auth:
      type: bearer                # none | bearer | basic | api-key
      token: '{{auth_token}}'
  vars:
    pre-request:
      - {key: name, value: widget}
  extract:
    item_id: $.data.id

\b
VARIABLE PRECEDENCE (lowest to highest)
───────────────────────────────────────
  \b
  1. defaults.vars in config, REQRUN_VAR_<name> environment variables
  2. collection.yaml vars
  3. environments/<env>.yaml vars (-e)
  4. request vars.pre-request
  5. -v name=value
  6. values extracted earlier in the run

  {{name}} must match exactly; an unknown name stops the run.

\b
PATH QUERIES (extract, -j/--json-path)
──────────────────────────────────────
  \b
  $.a.b          Nested key
  $.a[0]         Index (negative from the end)
  $.a[*].b       Every element
  $.a[1:3]       Slice
  $['a b']       Quoted key
  $..id          Recursive descent

  When several nodes match, extract binds the first in document order.

\b
CONFIG FILE (.reqrun.yaml)
──────────────────────────
  \b
  defaults:
    collections_dir: collections  # relative to the config file
    env_file: .env
    timeout: 30
    user_agent: reqrun
    vars:
      host: ${API_HOST}
"""


def _configure_logging(level_name: str) -> None:
    level = getattr(logging, level_name.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    logging.getLogger("reqrun").setLevel(level)


def _fail(message: str) -> None:
    click.echo(f"ERROR: {message}", err=True)
    sys.exit(1)


@click.group(help=TOOL_HELP)
@click.option(
    "-c",
    "--config",
    "config_file",
    default=None,
    help="Path to config file. Default: .reqrun.yaml in CWD, then ~/.reqrun/config.yaml.",
)
@click.option(
    "--collections-dir",
    "collections_dir_override",
    default=None,
    help="Override collections directory.",
)
@click.option(
    "--log-level",
    default="WARNING",
    envvar="REQRUN_LOG_LEVEL",
    show_default=True,
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    help="Diagnostic log level (stderr).",
)
@click.pass_context
def main(ctx, config_file, collections_dir_override, log_level):
    from reqrun.core import load_config, load_env, resolve_collections_dir, resolve_config_path

    _configure_logging(log_level)

    try:
        config_path = resolve_config_path(config_file)
        config = load_config(config_path)
    except ReqrunError as e:
        _fail(str(e))

    base_dir = config.get("_config_dir") or "."
    env = load_env(config["defaults"].get("env_file"), base_dir)

    ctx.obj = {
        "config": config,
        "env": env,
        "collections_dir": resolve_collections_dir(collections_dir_override, config, env),
        "collections_dir_override": collections_dir_override,
    }


def _collections_dir(ctx):
    cdir = ctx.obj["collections_dir"]
    if cdir is None:
        _fail(
            "No collections directory found. "
            "Searched: --collections-dir, config collections_dir, "
            "$REQRUN_BASE_DIRECTORY, ./collections/, ~/.reqrun/collections/",
        )
    return cdir


def _parse_vars(var_specs):
    """Parse -v name=value pairs. Names are kept exactly as written."""
    variables = {}
    for spec in var_specs:
        if "=" not in spec:
            _fail(f"Invalid variable '{spec}', expected name=value.")
        k, val = spec.split("=", 1)
        variables[k] = val
    return variables


@main.command("run")
@click.argument("collection")
@click.argument("requests", nargs=-1, required=True)
@click.option("-e", "--environment", default=None, help="Environment of the collection to use.")
@click.option(
    "-v",
    "--var",
    multiple=True,
    help="Variable override as name=value. Repeatable.",
)
@click.option(
    "-j",
    "--json-path",
    default=None,
    help="Apply a path query to each response body before printing.",
)
@click.option("--no-headers", is_flag=True, default=False, help="Disable display of the headers.")
@click.option(
    "--headers-only",
    is_flag=True,
    default=False,
    help="Display only the headers of the response.",
)
@click.option(
    "--raw",
    is_flag=True,
    default=False,
    help="Output the response body only. Useful for piping.",
)
@click.option("--timeout", type=float, default=None, help="Request timeout in seconds. Default: 30.")
@click.pass_context
def run_cmd(ctx, collection, requests, environment, var, json_path, no_headers, headers_only, raw, timeout):
    """Run REQUESTS from COLLECTION in order (dependencies first)."""
    from reqrun.core import build_run_config, default_vars
    from reqrun.executor import HttpTransport
    from reqrun.filters import format_output
    from reqrun.loader import build_store, load_collection, load_environment, load_sequence
    from reqrun.query import compile_query
    from reqrun.runner import RunOrchestrator

    config = ctx.obj["config"]
    env = ctx.obj["env"]
    overrides = _parse_vars(var)

    try:
        if json_path:
            compile_query(json_path)
        run_config = build_run_config(config, env, timeout)
        coll = load_collection(_collections_dir(ctx), collection)
        environment_vars = load_environment(coll, environment) if environment else None
        definitions = load_sequence(coll, list(requests))
    except ReqrunError as e:
        _fail(str(e))

    store = build_store(default_vars(config, env), coll, environment_vars, overrides)

    printed = []

    def _sink(result):
        if printed and not raw:
            click.echo()
        click.echo(
            format_output(
                result,
                json_path=json_path,
                show_headers=not no_headers,
                headers_only=headers_only,
                raw=raw,
            ),
        )
        printed.append(result)

    with HttpTransport(run_config) as transport:
        report = RunOrchestrator(run_config, transport).run(definitions, store, sink=_sink)

    if not report.ok:
        if report.failed_index is None:
            _fail(str(report.error))
        name = definitions[report.failed_index].name
        _fail(f"request #{report.failed_index} ({name}): {report.error}")


@main.command("collections")
@click.pass_context
def collections_cmd(ctx):
    """List available collections."""
    from reqrun.core import list_collections

    cdir = _collections_dir(ctx)
    names = list_collections(cdir)
    if not names:
        click.echo(f"No collections found in: {cdir}")
        return
    for name in names:
        click.echo(name)


@main.command("requests")
@click.argument("collection")
@click.pass_context
def requests_cmd(ctx, collection):
    """List the requests of COLLECTION."""
    from reqrun.core import collection_dir, list_requests

    try:
        path = collection_dir(_collections_dir(ctx), collection)
    except ReqrunError as e:
        _fail(str(e))
    for name in list_requests(path):
        click.echo(name)


@main.command("environments")
@click.argument("collection")
@click.pass_context
def environments_cmd(ctx, collection):
    """List the environments of COLLECTION."""
    from reqrun.core import collection_dir, list_environments

    try:
        path = collection_dir(_collections_dir(ctx), collection)
    except ReqrunError as e:
        _fail(str(e))
    for name in list_environments(path):
        click.echo(name)


# ── Creating and editing definitions ────────────────────────────────────


def _open_in_editor(path):
    click.edit(filename=str(path))


def _created(path, open_editor):
    click.echo(f"Created {path}")
    if open_editor:
        _open_in_editor(path)


@main.group("create")
def create_grp():
    """Create a collection, environment or request from an empty skeleton."""


@create_grp.command("collection")
@click.argument("name")
@click.option("--edit", "open_editor", is_flag=True, default=False, help="Open the new file in $EDITOR.")
@click.pass_context
def create_collection_cmd(ctx, name, open_editor):
    """Create collection NAME (the collections directory is created if needed)."""
    from reqrun.core import create_collection, creation_collections_dir

    target = creation_collections_dir(ctx.obj["collections_dir_override"], ctx.obj["config"], ctx.obj["env"])
    try:
        path = create_collection(target, name)
    except ReqrunError as e:
        _fail(str(e))
    _created(path, open_editor)


@create_grp.command("environment")
@click.argument("collection")
@click.argument("name")
@click.option("--edit", "open_editor", is_flag=True, default=False, help="Open the new file in $EDITOR.")
@click.pass_context
def create_environment_cmd(ctx, collection, name, open_editor):
    """Create environment NAME in COLLECTION."""
    from reqrun.core import create_environment

    try:
        path = create_environment(_collections_dir(ctx), collection, name)
    except ReqrunError as e:
        _fail(str(e))
    _created(path, open_editor)


@create_grp.command("request")
@click.argument("collection")
@click.argument("name")
@click.option("--edit", "open_editor", is_flag=True, default=False, help="Open the new file in $EDITOR.")
@click.pass_context
def create_request_cmd(ctx, collection, name, open_editor):
    """Create request NAME in COLLECTION (NAME may include sub-directories)."""
    from reqrun.core import create_request

    try:
        path = create_request(_collections_dir(ctx), collection, name)
    except ReqrunError as e:
        _fail(str(e))
    _created(path, open_editor)


def _edit(ctx, collection, kind="collection", name=None):
    from reqrun.core import existing_definition

    try:
        path = existing_definition(_collections_dir(ctx), collection, kind, name)
    except ReqrunError as e:
        _fail(str(e))
    _open_in_editor(path)


@main.group("edit")
def edit_grp():
    """Open a collection, environment or request file in $EDITOR."""


@edit_grp.command("collection")
@click.argument("name")
@click.pass_context
def edit_collection_cmd(ctx, name):
    """Edit the collection.yaml of NAME."""
    _edit(ctx, name)


@edit_grp.command("environment")
@click.argument("collection")
@click.argument("name")
@click.pass_context
def edit_environment_cmd(ctx, collection, name):
    """Edit environment NAME of COLLECTION."""
    _edit(ctx, collection, "environment", name)


@edit_grp.command("request")
@click.argument("collection")
@click.argument("name")
@click.pass_context
def edit_request_cmd(ctx, collection, name):
    """Edit request NAME of COLLECTION."""
    _edit(ctx, collection, "request", name)


@main.command("cd")
@click.pass_context
def cd_cmd(ctx):
    """Open a shell ($SHELL) in the collections directory."""
    cdir = _collections_dir(ctx)
    shell = os.environ.get("SHELL", "/bin/sh")
    sys.exit(subprocess.call([shell], cwd=str(cdir)))
