"""getcerts configuration loader.

Lifecycle::

    # 1. The CLI loads the settings once per invocation
    settings = load_settings("/home/acme/etc/getcerts.yaml")

    # 2. ...and hands the value to every component explicitly
    lifecycle = CertificateLifecycle(settings)

The raw file is YAML or JSON.  ``${VAR}`` / ``${VAR:-default}``
strings are resolved from the environment *before* the bundled JSON
schema is applied, so substituted values are validated too.
"""

from __future__ import annotations

import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import jsonschema
import yaml

from getcerts.config.settings import GetcertsSettings, build_settings
from getcerts.core.errors import ConfigValidationError

_SCHEMA_PATH = Path(__file__).parent / "schema.json"

# a whole string value of the form ${NAME} or ${NAME:-fallback}
_ENV_REFERENCE = re.compile(
    r"\$\{(?P<name>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>.*))?\}",
    re.DOTALL,
)

_MIN_RSA_KEY_SIZE = 2048

log = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Environment references
# ---------------------------------------------------------------------------


def _substitute(value: str, where: str) -> str:
    ref = _ENV_REFERENCE.fullmatch(value)
    if ref is None:
        return value
    name, fallback = ref["name"], ref["fallback"]
    if name in os.environ:
        return os.environ[name]
    if fallback is not None:
        return fallback
    msg = f"{where}: environment variable {name} is not set and no default is given"
    raise ConfigValidationError([msg])


def resolve_env(data: Any, where: str = "") -> Any:  # noqa: ANN401
    """Return a copy of *data* with every ``${VAR}`` string substituted.

    Only strings that consist entirely of one reference are replaced;
    ``${VAR:-default}`` falls back to *default* when ``VAR`` is unset.
    """
    if isinstance(data, str):
        return _substitute(data, where or "<root>")
    if isinstance(data, dict):
        return {
            key: resolve_env(value, f"{where}.{key}" if where else key)
            for key, value in data.items()
        }
    if isinstance(data, list):
        return [resolve_env(item, f"{where}[{i}]") for i, item in enumerate(data)]
    return data


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _read_file(config_file: Path) -> dict:
    """Parse *config_file* as YAML or JSON depending on its suffix."""
    try:
        with config_file.open(encoding="utf-8") as f:
            if config_file.suffix in (".yaml", ".yml"):
                data = yaml.safe_load(f)
            else:
                data = json.load(f)
    except FileNotFoundError:
        msg = f"configuration file not found: {config_file}"
        raise ConfigValidationError([msg]) from None
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as exc:
        msg = f"cannot parse configuration file {config_file}: {exc}"
        raise ConfigValidationError([msg]) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"configuration file {config_file} must contain a mapping at top level"
        raise ConfigValidationError([msg])
    return data


def _load_schema() -> dict:
    with _SCHEMA_PATH.open(encoding="utf-8") as f:
        return json.load(f)


def validate_schema(data: dict) -> None:
    """Validate raw config *data* against the bundled JSON schema.

    All violations are collected and reported together.
    """
    validator = jsonschema.Draft202012Validator(_load_schema())
    errors = sorted(validator.iter_errors(data), key=lambda e: list(e.absolute_path))
    if errors:
        messages = []
        for err in errors:
            where = ".".join(str(p) for p in err.absolute_path) or "<root>"
            messages.append(f"{where}: {err.message}")
        raise ConfigValidationError(messages)


def additional_checks(data: dict) -> None:
    """Semantic & cross-field validation run after the schema passes."""
    errors: list[str] = []

    acme = data.get("acme") or {}
    keys = data.get("keys") or {}
    install = data.get("install") or {}

    prod = acme.get("directory_url")
    staging = acme.get("staging_directory_url")
    if prod is not None and staging is not None and prod == staging:
        errors.append(
            "acme.directory_url and acme.staging_directory_url must differ",
        )

    for key in ("directory_url", "staging_directory_url"):
        url = acme.get(key)
        if url is not None and not url.startswith(("https://", "http://")):
            errors.append(f"acme.{key} must be an http(s) URL (got '{url}')")

    key_size = keys.get("rsa_key_size")
    if key_size is not None and key_size < _MIN_RSA_KEY_SIZE:
        errors.append(
            f"keys.rsa_key_size must be at least {_MIN_RSA_KEY_SIZE} (got {key_size})",
        )

    if "reload_command" in install and not install["reload_command"]:
        errors.append("install.reload_command must not be empty")

    if errors:
        raise ConfigValidationError(errors)


def load_settings(
    config_file: str | Path | None = None,
    *,
    home: str | None = None,
) -> GetcertsSettings:
    """Load, validate and materialise the settings for one invocation.

    Parameters
    ----------
    config_file:
        Path to a YAML/JSON configuration file.  ``None`` means
        built-in defaults only.
    home:
        Installation home; overrides ``paths.home``.

    Raises
    ------
    ConfigValidationError
        On unreadable files, unresolved environment variables, schema
        violations, or cross-field inconsistencies.

    """
    data: dict = {}
    if config_file is not None:
        data = resolve_env(_read_file(Path(config_file)))

    validate_schema(data)
    additional_checks(data)

    settings = build_settings(data, home=home)
    log.debug(
        "Configuration loaded from %s (home=%s)",
        config_file or "defaults",
        settings.paths.home,
    )
    return settings
