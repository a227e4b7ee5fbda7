"""
Suite file loading.

Reads declarative suite files (YAML, or JSON as a YAML subset) and turns them
into validated test cases. Steps may be written in a compact form where the
single key of a mapping names the action::

    - navigate: /tests
    - click: {test_id: run-tests}
    - fill: {test_id: search-tests, value: smoke}
    - assert_text: {test_id: search-results-info, pattern: /smoke/i}
    - capture: {css: html, attribute: data-theme, store_as: theme}
    - assert_changed: {css: html, attribute: data-theme, since: theme}
    - assert_visible: {test_id: status-badge, parent: {css: tr}, each: true}
    - screenshot: after-search

In the compact form, keys that are not fields of the step itself are read as
locator fields. Steps whose own fields clash with locator fields (the ``name``
of ``assert_attribute``) take an explicit ``locator`` mapping when a role name
is needed.
"""

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Union, get_args

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..core.exceptions import SuiteDefinitionError
from .models import Locator, STEP_ACTIONS, Step, SuiteDefinition, TestCase

logger = logging.getLogger(__name__)

SUITE_SUFFIXES = (".yaml", ".yml", ".json")

_STEP_FIELDS: Dict[str, set] = {
    variant.model_fields["action"].default: set(variant.model_fields)
    for variant in get_args(get_args(Step)[0])
}
_LOCATOR_FIELDS = set(Locator.model_fields)

# Compact form: which field a bare string value fills in
_SCALAR_FIELDS = {
    "navigate": "path",
    "screenshot": "label",
    "assert_url": "pattern",
    "assert_title": "pattern",
}


def _step_fields(action: str) -> set:
    return _STEP_FIELDS[action]


def normalize_step(raw: Any) -> Dict[str, Any]:
    """
    Convert a step written in compact form into its model form.

    Args:
        raw: Step as read from the suite file

    Returns:
        Mapping with an ``action`` key, ready for validation
    """
    if not isinstance(raw, dict):
        raise ValueError(f"Step must be a mapping, got {type(raw).__name__}: {raw!r}")

    if "action" in raw:
        return raw

    if len(raw) != 1:
        raise ValueError(
            f"Compact step must have exactly one key naming the action, got {sorted(raw)}"
        )

    action, value = next(iter(raw.items()))
    if action not in STEP_ACTIONS:
        raise ValueError(f"Unknown step action {action!r}. Must be one of {list(STEP_ACTIONS)}")

    if value is None:
        return {"action": action}

    if not isinstance(value, dict):
        if action in _SCALAR_FIELDS:
            return {"action": action, _SCALAR_FIELDS[action]: value}
        if "locator" in _step_fields(action) and isinstance(value, str):
            # A bare string is a CSS selector
            return {"action": action, "locator": {"css": value}}
        raise ValueError(f"Step {action!r} needs a mapping, got {value!r}")

    step: Dict[str, Any] = {"action": action}
    own_fields = _step_fields(action)
    if "locator" in own_fields and "locator" not in value:
        locator = {}
        for key, item in value.items():
            if key in own_fields:
                step[key] = item
            elif key in _LOCATOR_FIELDS:
                locator[key] = item
            else:
                raise ValueError(f"Unknown field {key!r} in {action!r} step")
        step["locator"] = locator
    else:
        step.update(value)
    return step


def parse_suite(data: Any, source: str = "<memory>") -> SuiteDefinition:
    """
    Validate raw suite data.

    Args:
        data: Parsed YAML/JSON document
        source: Name of the file the data came from, for error messages

    Returns:
        Validated suite definition
    """
    if not isinstance(data, dict):
        raise SuiteDefinitionError(f"Suite file must contain a mapping: {source}", source)

    try:
        document = dict(data)
        document["before_each"] = [
            normalize_step(step) for step in document.get("before_each") or []
        ]
        tests = []
        for test in document.get("tests") or []:
            if not isinstance(test, dict):
                raise ValueError(f"Test entry must be a mapping, got {test!r}")
            test = dict(test)
            test["steps"] = [normalize_step(step) for step in test.get("steps") or []]
            tests.append(test)
        document["tests"] = tests
        return SuiteDefinition.model_validate(document)
    except (ValueError, PydanticValidationError) as e:
        raise SuiteDefinitionError(f"Invalid suite {source}: {e}", source) from e


def load_suite_file(path: Union[str, Path]) -> SuiteDefinition:
    """Load and validate one suite file."""
    path = Path(path)
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise SuiteDefinitionError(f"Cannot read suite file {path}: {e}", str(path)) from e
    except yaml.YAMLError as e:
        raise SuiteDefinitionError(f"Cannot parse suite file {path}: {e}", str(path)) from e

    suite = parse_suite(data, str(path))
    logger.debug(
        f"Loaded suite '{suite.title}' with {len(suite.tests)} tests",
        extra={"metadata": {"suite_file": str(path), "tests": len(suite.tests)}},
    )
    return suite


def discover_suite_files(paths: Iterable[Union[str, Path]]) -> List[Path]:
    """
    Expand files and directories into a sorted list of suite files.

    Args:
        paths: Suite files or directories searched recursively
    """
    found: List[Path] = []
    for entry in paths:
        entry = Path(entry)
        if entry.is_dir():
            found.extend(
                sorted(p for p in entry.rglob("*") if p.is_file() and p.suffix in SUITE_SUFFIXES)
            )
        elif entry.is_file():
            found.append(entry)
        else:
            raise SuiteDefinitionError(f"Suite path does not exist: {entry}", str(entry))
    return found


def load_test_cases(paths: Iterable[Union[str, Path]]) -> List[TestCase]:
    """
    Load every test case declared under the given paths.

    Raises:
        SuiteDefinitionError: If a file is invalid or two tests share an id
    """
    test_cases: List[TestCase] = []
    seen: Dict[str, Path] = {}

    for suite_file in discover_suite_files(paths):
        for test_case in load_suite_file(suite_file).to_test_cases():
            if test_case.id in seen:
                raise SuiteDefinitionError(
                    f"Duplicate test id {test_case.id!r} in {suite_file} "
                    f"(first declared in {seen[test_case.id]})",
                    str(suite_file),
                )
            seen[test_case.id] = suite_file
            test_cases.append(test_case)

    logger.info(
        f"Loaded {len(test_cases)} test cases",
        extra={"metadata": {"suite_files": len(set(seen.values()))}},
    )
    return test_cases
