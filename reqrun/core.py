"""reqrun core - config loading, environment, collection discovery and scaffolding."""

import os
import re
from pathlib import Path

import yaml
from dotenv import dotenv_values

from reqrun.errors import DefinitionError
from reqrun.models import RunConfig

GLOBAL_DIR = Path.home() / ".reqrun"
GLOBAL_CONFIG = GLOBAL_DIR / "config.yaml"
GLOBAL_COLLECTIONS_DIR = GLOBAL_DIR / "collections"

BASE_DIRECTORY_ENV = "REQRUN_BASE_DIRECTORY"
VAR_PREFIX = "REQRUN_VAR_"

CWD_CONFIG_CANDIDATES = [
    ".reqrun.yaml",
    ".reqrun.yml",
    "reqrun.yaml",
    "reqrun.yml",
]

COLLECTION_FILE = "collection.yaml"
ENVIRONMENTS_DIR = "environments"


def resolve_path(
    candidates: list[Path],
    default: Path | None = None,
) -> Path | None:
    """Return the first existing path from candidates.

    Works for both files and directories, only checks .exists().
    If none exist, returns default.
    """
    for p in candidates:
        if p.exists():
            return p.resolve()
    return default


def resolve_config_path(config_file: str | None) -> Path | None:
    """Find the config file to use.

    Resolution order:
      1. Explicit -c flag (no fallthrough if missing)
      2. .reqrun.yaml (variants) in CWD
      3. ~/.reqrun/config.yaml
    """
    if config_file:
        return resolve_path([Path(config_file)])
    return resolve_path([Path(c) for c in CWD_CONFIG_CANDIDATES] + [GLOBAL_CONFIG])


def load_config(config_path: str | Path | None) -> dict:
    """Load YAML config file. Returns empty defaults if not found.

    Stores '_config_dir' in the returned dict so collections_dir can be
    resolved relative to the config file.
    """
    if config_path is None:
        return {"defaults": {}, "_config_dir": None}
    path = Path(config_path)
    if not path.exists():
        return {"defaults": {}, "_config_dir": None}
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid config file {path}: {e}") from e
    if not isinstance(data, dict):
        raise DefinitionError(f"Invalid config file {path}: expected a mapping")
    return {
        "defaults": data.get("defaults") or {},
        "_config_dir": path.resolve().parent,
    }


def load_env(env_file: str | None, base_dir: str | Path = ".") -> dict[str, str]:
    """Load .env file and merge with os.environ.

    .env values take precedence over os.environ.
    """
    env = dict(os.environ)
    if env_file:
        dotenv_path = Path(base_dir) / env_file
        if dotenv_path.exists():
            dotenv_vars = dotenv_values(str(dotenv_path))
            env.update({k: v for k, v in dotenv_vars.items() if v is not None})
    return env


def resolve_value(value, env: dict[str, str]):
    """Resolve $VAR and ${VAR} references in a config value.

    Unknown names are left as written.
    """
    if not isinstance(value, str):
        return value

    def _replace(m: re.Match) -> str:
        var_name = m.group(1) or m.group(2)
        return env.get(var_name, m.group(0))

    return re.sub(r"\$\{([^}]+)\}|\$([A-Za-z_][A-Za-z0-9_]*)", _replace, value)


def prefixed_vars(env: dict[str, str], prefix: str = VAR_PREFIX) -> dict[str, str]:
    """REQRUN_VAR_host=x -> {"host": "x"}."""
    return {k[len(prefix) :]: v for k, v in env.items() if k.startswith(prefix) and len(k) > len(prefix)}


def default_vars(config: dict, env: dict[str, str]) -> dict[str, str]:
    """The lowest variable layer: config defaults.vars, then REQRUN_VAR_* entries."""
    values = {
        str(k): str(resolve_value(v, env))
        for k, v in (config.get("defaults", {}).get("vars") or {}).items()
    }
    values.update(prefixed_vars(env))
    return values


def build_run_config(
    config: dict,
    env: dict[str, str],
    timeout: float | None = None,
) -> RunConfig:
    """Build the RunConfig from CLI flags and config defaults."""
    defaults = config.get("defaults", {})
    base = RunConfig()
    if timeout is None:
        timeout = resolve_value(defaults.get("timeout"), env)
    if timeout is None or timeout == "":
        timeout = base.timeout
    try:
        timeout = float(timeout)
    except (TypeError, ValueError) as e:
        raise DefinitionError(f"Invalid timeout: {timeout!r}") from e
    if timeout <= 0:
        raise DefinitionError(f"Invalid timeout: {timeout!r}, must be greater than 0")
    user_agent = resolve_value(defaults.get("user_agent"), env) or base.user_agent
    verify = defaults.get("verify")
    verify = base.verify if verify is None else _parse_flag(resolve_value(verify, env), "verify")
    return RunConfig(timeout=timeout, user_agent=str(user_agent), verify=verify)


def _parse_flag(value, name: str) -> bool:
    """YAML booleans pass through; $VAR-expanded strings are read as true/false."""
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1", "yes", "on"):
        return True
    if text in ("false", "0", "no", "off"):
        return False
    raise DefinitionError(f"Invalid {name}: {value!r}, expected true or false")


def _collections_candidates(
    cli_override: str | None,
    config: dict,
    env: dict[str, str],
) -> list[Path]:
    """Build the ordered candidate list for the collections directory."""
    # CLI override, absolute or relative to CWD
    if cli_override:
        p = Path(cli_override)
        if not p.is_absolute():
            p = Path.cwd() / p
        return [p]  # no fallthrough

    candidates: list[Path] = []

    # Config value, relative to config file's directory
    config_value = resolve_value(config.get("defaults", {}).get("collections_dir"), env)
    config_dir = config.get("_config_dir")
    if config_value:
        p = Path(config_value)
        if not p.is_absolute() and config_dir:
            p = Path(config_dir) / p
        candidates.append(p)

    if env.get(BASE_DIRECTORY_ENV):
        candidates.append(Path(env[BASE_DIRECTORY_ENV]))

    # CWD
    candidates.append(Path("collections"))
    # Global
    candidates.append(GLOBAL_COLLECTIONS_DIR)

    return candidates


def resolve_collections_dir(
    cli_override: str | None,
    config: dict,
    env: dict[str, str] | None = None,
) -> Path | None:
    """Find the collections directory.

    Resolution order:
      1. --collections-dir (absolute or relative to CWD; no fallthrough)
      2. collections_dir from config defaults (relative to config file)
      3. $REQRUN_BASE_DIRECTORY
      4. ./collections/ in CWD
      5. ~/.reqrun/collections/
    """
    candidates = _collections_candidates(cli_override, config, env or {})
    return resolve_path(candidates)


def collection_dir(collections_dir: Path, name: str) -> Path:
    path = collections_dir / name
    if not (path / COLLECTION_FILE).is_file():
        raise DefinitionError(f"Collection '{name}' not found in {collections_dir}")
    return path


def request_path(collection: Path, name: str) -> Path:
    return collection / f"{name}.yaml"


def environment_path(collection: Path, name: str) -> Path:
    return collection / ENVIRONMENTS_DIR / f"{name}.yaml"


def list_collections(collections_dir: Path | None) -> list[str]:
    """Names of every sub-directory holding a collection.yaml."""
    if not collections_dir or not collections_dir.is_dir():
        return []
    return sorted(
        d.name for d in collections_dir.iterdir() if d.is_dir() and (d / COLLECTION_FILE).is_file()
    )


def list_requests(collection: Path) -> list[str]:
    """Request names in a collection, including sub-directories (e.g. GraphQL/GetUser)."""
    names = []
    for f in collection.rglob("*.yaml"):
        rel = f.relative_to(collection)
        if rel.parts[0] == ENVIRONMENTS_DIR or rel == Path(COLLECTION_FILE):
            continue
        names.append(rel.with_suffix("").as_posix())
    return sorted(names)


def list_environments(collection: Path) -> list[str]:
    env_dir = collection / ENVIRONMENTS_DIR
    if not env_dir.is_dir():
        return []
    return sorted(f.stem for f in env_dir.iterdir() if f.suffix == ".yaml" and f.is_file())


# ── Creating definitions ─────────────────────────────────────────────────

COLLECTION_SKELETON = {
    "headers": [],
    "auth": {"type": "none"},
    "vars": [],
}

ENVIRONMENT_SKELETON = {
    "vars": [],
}

REQUEST_SKELETON = {
    "depends": [],
    "http": {
        "method": "GET",
        "url": "{{host}}/",
        "headers": [],
        "params": {"query": []},
    },
    "vars": {"pre-request": []},
    "extract": {},
}


def creation_collections_dir(
    cli_override: str | None,
    config: dict,
    env: dict[str, str] | None = None,
) -> Path:
    """Where a new collection goes: the existing collections directory, or
    the first place one would be looked for."""
    env = env or {}
    return resolve_collections_dir(cli_override, config, env) or _collections_candidates(
        cli_override, config, env,
    )[0]


def _write_skeleton(path: Path, skeleton: dict, what: str) -> Path:
    if path.exists():
        raise DefinitionError(f"{what} already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(skeleton, f, sort_keys=False)
    return path


def create_collection(collections_dir: Path, name: str) -> Path:
    """Write collections_dir/<name>/collection.yaml from the empty skeleton."""
    path = collections_dir / name / COLLECTION_FILE
    return _write_skeleton(path, COLLECTION_SKELETON, f"Collection '{name}'")


def create_environment(collections_dir: Path, collection: str, name: str) -> Path:
    path = environment_path(collection_dir(collections_dir, collection), name)
    return _write_skeleton(path, ENVIRONMENT_SKELETON, f"Environment '{name}'")


def create_request(collections_dir: Path, collection: str, name: str) -> Path:
    path = request_path(collection_dir(collections_dir, collection), name)
    return _write_skeleton(path, REQUEST_SKELETON, f"Request '{name}'")


def existing_definition(
    collections_dir: Path,
    collection: str,
    kind: str = "collection",
    name: str | None = None,
) -> Path:
    """Path of an existing collection.yaml (kind "collection"), environment
    or request file. Missing files raise DefinitionError.
    """
    cdir = collection_dir(collections_dir, collection)
    if kind == "collection":
        return cdir / COLLECTION_FILE
    path = environment_path(cdir, name) if kind == "environment" else request_path(cdir, name)
    if not path.is_file():
        raise DefinitionError(f"{kind.capitalize()} '{name}' not found in collection '{collection}'")
    return path


def read_yaml(path: Path) -> dict:
    """Read one YAML definition file; missing or malformed files raise DefinitionError."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except FileNotFoundError as e:
        raise DefinitionError(f"File not found: {path}") from e
    except yaml.YAMLError as e:
        raise DefinitionError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise DefinitionError(f"Invalid file {path}: expected a mapping")
    return data
