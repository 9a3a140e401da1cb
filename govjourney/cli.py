"""
GovJourney CLI entry point.

Commands:
- govjourney validate: Validate a service artefact file
- govjourney evaluate: Evaluate a policy ruleset against a citizen context
- govjourney info: Show the states and transitions of a state model
- govjourney config: Show the resolved configuration
- govjourney version: Show version information
"""

import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional

import click
import yaml

from govjourney import __version__
from govjourney.artefacts import ARTEFACT_KINDS, ArtefactParser
from govjourney.cli_ui import (
    artefact_panel,
    console,
    error,
    journey_graph,
    operator_warnings,
    policy_result,
    policy_result_json,
    settings_panel,
    version_line,
)
from govjourney.exceptions import ArtefactError


def setup_logging(debug: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def infer_kind(path: Path) -> Optional[str]:
    """Guess the artefact kind from a file name such as ``state-model.json``."""
    stem = path.stem.lower().replace("_", "-")
    # Longest first so "state-instructions" is not mistaken for anything shorter
    for kind in sorted(ARTEFACT_KINDS, key=len, reverse=True):
        if kind in stem:
            return kind
    return None


def load_context(path: Path) -> Dict[str, Any]:
    """Load a citizen context mapping from a YAML or JSON file."""
    content = path.read_text(encoding="utf-8")
    if path.suffix == ".json":
        data = json.loads(content)
    elif path.suffix in (".yaml", ".yml"):
        data = yaml.safe_load(content)
    else:
        raise ValueError(f"Unsupported file format: {path.suffix}")

    if not isinstance(data, dict):
        raise ValueError("Context must be a mapping of field names to values")
    return data


@click.group()
@click.version_option(version=__version__, prog_name="govjourney")
def main() -> None:
    """GovJourney - Conversational orchestration for government services.

    Inspect and check the artefacts that describe a service journey.
    """
    pass


@main.command()
@click.argument(
    "artefact_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--kind",
    "-k",
    type=click.Choice(list(ARTEFACT_KINDS)),
    default=None,
    help="Artefact kind (default: inferred from the file name)",
)
@click.option(
    "--debug/--no-debug",
    default=False,
    help="Enable debug logging",
)
def validate(artefact_path: Path, kind: Optional[str], debug: bool) -> None:
    """Validate a service artefact file.

    Checks that the artefact parses and satisfies its load-time rules.

    Example:
        govjourney validate services/apply-uc/state-model.json
        govjourney validate rules.yaml --kind policy
    """
    if debug:
        setup_logging(debug)

    kind = kind or infer_kind(artefact_path)
    if kind is None:
        error(
            f"Cannot infer artefact kind from '{artefact_path.name}'",
            hint=f"Pass --kind ({', '.join(ARTEFACT_KINDS)})",
        )
        raise SystemExit(1)

    try:
        artefact = ArtefactParser.parse_file(artefact_path, kind=kind)
    except ArtefactError as e:
        error(f"Validation error: {e}")
        raise SystemExit(1)
    except (ValueError, yaml.YAMLError) as e:
        error(f"Invalid format: {e}")
        raise SystemExit(1)

    artefact_panel(kind, artefact)


@main.command()
@click.argument(
    "policy_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.argument(
    "context_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--json",
    "as_json",
    is_flag=True,
    help="Print the raw evaluation result as JSON",
)
def evaluate(policy_path: Path, context_path: Path, as_json: bool) -> None:
    """Evaluate a policy ruleset against a citizen context.

    CONTEXT_PATH is a YAML or JSON mapping of citizen data.

    Example:
        govjourney evaluate policy.json citizen.yaml
    """
    from govjourney.policy import PolicyEvaluator

    try:
        ruleset = ArtefactParser.parse_file(policy_path, kind="policy")
        context = load_context(context_path)
    except ArtefactError as e:
        error(f"Validation error: {e}")
        raise SystemExit(1)
    except (ValueError, yaml.YAMLError) as e:
        error(f"Invalid format: {e}")
        raise SystemExit(1)

    result = PolicyEvaluator().evaluate(ruleset, context)

    if as_json:
        policy_result_json(result)
        return

    operator_warnings(ruleset)
    policy_result(result)


@main.command()
@click.argument(
    "state_model_path",
    type=click.Path(exists=True, path_type=Path),
)
@click.option(
    "--instructions",
    "-i",
    "instructions_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="State instructions file to overlay forced and auto transitions",
)
def info(state_model_path: Path, instructions_path: Optional[Path]) -> None:
    """Show the states and transitions of a state model.

    Example:
        govjourney info state-model.json --instructions state-instructions.json
    """
    try:
        model = ArtefactParser.parse_file(state_model_path, kind="state-model")
        instructions = (
            ArtefactParser.parse_file(instructions_path, kind="instructions")
            if instructions_path
            else None
        )
    except ArtefactError as e:
        error(f"Validation error: {e}")
        raise SystemExit(1)
    except (ValueError, yaml.YAMLError) as e:
        error(f"Invalid format: {e}")
        raise SystemExit(1)

    journey_graph(model, instructions, name=state_model_path.stem)


@main.command()
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=True, path_type=Path),
    default=None,
    help="Path to govjourney.yaml config file",
)
def config(config_path: Optional[Path]) -> None:
    """Show the resolved configuration.

    Merges govjourney.yaml, GOVJ_* environment variables and defaults.
    """
    from govjourney.config import JourneySettings

    try:
        with console.status("  Loading configuration...", spinner="dots"):
            settings = JourneySettings(_config_path=str(config_path) if config_path else None)
    except Exception as e:
        error(str(e), hint="Check your govjourney.yaml")
        raise SystemExit(1)

    settings_panel(settings)


@main.command()
def version() -> None:
    """Show version information."""
    version_line(__version__)


if __name__ == "__main__":
    main()
