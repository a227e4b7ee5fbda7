"""
Data models for declarative test suites.

Defines Pydantic models for locators, text patterns, the step variants a test
case is made of, and the test cases themselves. All models are frozen: a test
case is built once when suites are loaded and never mutated while running.
"""

import re
from typing import Annotated, List, Literal, Optional, Pattern, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..core.config import is_valid_url

# "/source/" or "/source/i" is read as a regular expression
_REGEX_LITERAL = re.compile(r"^/(?P<source>.+)/(?P<flags>i?)$", re.DOTALL)

LOCATOR_STRATEGIES = ("role", "test_id", "css", "text", "label")

# Labels of the screenshots taken automatically after a test
RESERVED_SCREENSHOT_LABELS = ("failure", "final")


class TextPattern(BaseModel):
    """A literal string or a regular expression matched against page text."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    value: str = Field(..., description="Literal text or regex source")
    regex: bool = Field(False, description="Treat value as a regular expression")
    ignore_case: bool = Field(False, description="Case-insensitive regex matching")

    @model_validator(mode="before")
    @classmethod
    def parse_literal(cls, data):
        """Accept plain strings, reading ``/source/flags`` as a regex."""
        if isinstance(data, str):
            match = _REGEX_LITERAL.match(data)
            if match:
                return {
                    "value": match.group("source"),
                    "regex": True,
                    "ignore_case": match.group("flags") == "i",
                }
            return {"value": data}
        return data

    @model_validator(mode="after")
    def validate_regex(self):
        if self.regex:
            try:
                re.compile(self.value)
            except re.error as e:
                raise ValueError(f"Invalid regular expression /{self.value}/: {e}")
        return self

    def compile(self) -> Pattern:
        """Compile the pattern into a regular expression."""
        if self.regex:
            return re.compile(self.value, re.IGNORECASE if self.ignore_case else 0)
        return re.compile(re.escape(self.value))

    def matches(self, actual: Optional[str], substring: bool = False) -> bool:
        """
        Check an observed value against the pattern.

        Regular expressions search the value. Literals compare for equality,
        or for containment when ``substring`` is set.
        """
        if actual is None:
            return False
        if self.regex:
            return self.compile().search(actual) is not None
        if substring:
            return self.value in actual
        return actual == self.value

    def describe(self) -> str:
        if self.regex:
            return f"/{self.value}/{'i' if self.ignore_case else ''}"
        return repr(self.value)


class Locator(BaseModel):
    """Declarative description of how to find one element on the page."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    role: Optional[str] = Field(None, description="ARIA role")
    name: Optional[TextPattern] = Field(None, description="Accessible name (with role)")
    exact: bool = Field(False, description="Match the accessible name exactly")
    test_id: Optional[str] = Field(None, description="data-testid value")
    css: Optional[str] = Field(None, description="Raw CSS selector")
    text: Optional[TextPattern] = Field(None, description="Visible text")
    label: Optional[TextPattern] = Field(None, description="Associated label text")

    frame: Optional[str] = Field(None, description="Selector of the iframe to search in")
    parent: Optional["Locator"] = Field(None, description="Locator to search under")
    nth: Optional[int] = Field(None, ge=0, description="Pick the n-th match")

    @model_validator(mode="after")
    def validate_strategy(self):
        """A locator uses exactly one strategy."""
        strategies = [s for s in LOCATOR_STRATEGIES if getattr(self, s) is not None]
        if len(strategies) != 1:
            raise ValueError(
                f"Locator needs exactly one of {list(LOCATOR_STRATEGIES)}, got {strategies or 'none'}"
            )
        if self.name is not None and self.role is None:
            raise ValueError("Locator name is only valid together with role")
        if self.frame is not None and self.parent is not None:
            raise ValueError("Locator cannot set both frame and parent")
        return self

    @property
    def strategy(self) -> str:
        return next(s for s in LOCATOR_STRATEGIES if getattr(self, s) is not None)

    def describe(self) -> str:
        """Render the locator the way it would be written with Playwright."""
        if self.parent is not None:
            prefix = self.parent.describe() + "."
        elif self.frame is not None:
            prefix = f"frame_locator({self.frame!r})."
        else:
            prefix = ""

        if self.role is not None:
            args = [repr(self.role)]
            if self.name is not None:
                args.append(f"name={self.name.describe()}")
            if self.exact:
                args.append("exact=True")
            body = f"get_by_role({', '.join(args)})"
        elif self.test_id is not None:
            body = f"get_by_test_id({self.test_id!r})"
        elif self.css is not None:
            body = f"locator({self.css!r})"
        elif self.text is not None:
            body = f"get_by_text({self.text.describe()})"
        else:
            body = f"get_by_label({self.label.describe()})"

        if self.nth is not None:
            body += f".nth({self.nth})"
        return prefix + body


Locator.model_rebuild()


class StepBase(BaseModel):
    """Common configuration of all step variants."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    def describe(self) -> str:
        locator = getattr(self, "locator", None)
        if locator is not None:
            return f"{self.action} {locator.describe()}"
        return self.action


class AssertionStepBase(StepBase):
    """Assertions poll the page until they hold or their timeout elapses."""

    timeout_ms: Optional[int] = Field(
        None, gt=0, description="Override of the expectation timeout"
    )


class NavigateStep(StepBase):
    action: Literal["navigate"] = "navigate"
    path: str = Field("/", description="Path or URL, resolved against the base URL")

    def describe(self) -> str:
        return f"navigate {self.path}"


class FillStep(StepBase):
    action: Literal["fill"] = "fill"
    locator: Locator
    value: str


class ClickStep(StepBase):
    action: Literal["click"] = "click"
    locator: Locator


class PressStep(StepBase):
    action: Literal["press"] = "press"
    locator: Locator
    key: str


class AssertVisibleStep(AssertionStepBase):
    action: Literal["assert_visible"] = "assert_visible"
    locator: Locator
    each: bool = Field(False, description="Check every match instead of exactly one")


class AssertHiddenStep(AssertionStepBase):
    action: Literal["assert_hidden"] = "assert_hidden"
    locator: Locator


class AssertTextStep(AssertionStepBase):
    action: Literal["assert_text"] = "assert_text"
    locator: Locator
    pattern: TextPattern
    each: bool = Field(False, description="Check every match instead of exactly one")


class AssertAttributeStep(AssertionStepBase):
    action: Literal["assert_attribute"] = "assert_attribute"
    locator: Locator
    name: str = Field(..., min_length=1, description="Attribute name")
    pattern: TextPattern


class AssertCountStep(AssertionStepBase):
    action: Literal["assert_count"] = "assert_count"
    locator: Locator
    count: int = Field(..., ge=0)


class AssertUrlStep(AssertionStepBase):
    action: Literal["assert_url"] = "assert_url"
    pattern: TextPattern

    def describe(self) -> str:
        return f"assert_url {self.pattern.describe()}"


class AssertTitleStep(AssertionStepBase):
    action: Literal["assert_title"] = "assert_title"
    pattern: Optional[TextPattern] = Field(
        None, description="Expected title; any non-empty title when omitted"
    )


class CaptureStep(StepBase):
    """Remember an element's text, or one of its attributes, for a later comparison."""

    action: Literal["capture"] = "capture"
    locator: Locator
    attribute: Optional[str] = Field(None, min_length=1, description="Attribute to read instead of text")
    store_as: str = Field(..., min_length=1, description="Name the value is stored under")


class AssertChangedStep(AssertionStepBase):
    """Wait until a captured value differs from what the element shows now."""

    action: Literal["assert_changed"] = "assert_changed"
    locator: Locator
    attribute: Optional[str] = Field(None, min_length=1, description="Attribute to read instead of text")
    since: str = Field(..., min_length=1, description="Name of the captured value")


class ScreenshotStep(StepBase):
    action: Literal["screenshot"] = "screenshot"
    label: str = Field(..., min_length=1)

    @field_validator("label")
    @classmethod
    def validate_label(cls, v):
        if not v.strip():
            raise ValueError("Screenshot label cannot be empty")
        if v.strip() in RESERVED_SCREENSHOT_LABELS:
            raise ValueError(f"Screenshot label {v.strip()!r} is reserved")
        return v.strip()

    def describe(self) -> str:
        return f"screenshot {self.label}"


Step = Annotated[
    Union[
        NavigateStep,
        FillStep,
        ClickStep,
        PressStep,
        AssertVisibleStep,
        AssertHiddenStep,
        AssertTextStep,
        AssertAttributeStep,
        AssertCountStep,
        AssertUrlStep,
        AssertTitleStep,
        CaptureStep,
        AssertChangedStep,
        ScreenshotStep,
    ],
    Field(discriminator="action"),
]

STEP_ACTIONS = (
    "navigate",
    "fill",
    "click",
    "press",
    "assert_visible",
    "assert_hidden",
    "assert_text",
    "assert_attribute",
    "assert_count",
    "assert_url",
    "assert_title",
    "capture",
    "assert_changed",
    "screenshot",
)


def _validate_step_sequence(steps) -> None:
    """Screenshot labels are unique and every comparison refers to an earlier capture."""
    labels = set()
    captured = set()
    for step in steps:
        if step.action == "screenshot":
            if step.label in labels:
                raise ValueError(f"Duplicate screenshot label {step.label!r}")
            labels.add(step.label)
        elif step.action == "capture":
            captured.add(step.store_as)
        elif step.action == "assert_changed" and step.since not in captured:
            raise ValueError(f"assert_changed refers to {step.since!r}, which no earlier capture stores")


def _validate_base_url(v: Optional[str]) -> Optional[str]:
    if v is None:
        return v
    v = v.strip()
    if not is_valid_url(v):
        raise ValueError(f"base_url must be an absolute http(s) URL: {v!r}")
    return v


class TestCase(BaseModel):
    """An ordered sequence of steps run against one isolated session."""

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str = Field(..., description="Identifier, unique within a run")
    title: str = Field(..., description="Human readable title")
    steps: Tuple[Step, ...] = Field(..., description="Steps in execution order")
    suite: Optional[str] = Field(None, description="Title of the declaring suite")
    base_url: Optional[str] = Field(None, description="Overrides the configured base URL")
    tags: Tuple[str, ...] = Field(default_factory=tuple)
    skip: bool = Field(False, description="Report as skipped without running")
    only: bool = Field(False, description="Focus the run on this test")

    @field_validator("id", "title")
    @classmethod
    def validate_not_empty(cls, v):
        if not v or not v.strip():
            raise ValueError("Test id and title cannot be empty")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        return _validate_base_url(v)

    @model_validator(mode="after")
    def validate_steps(self):
        _validate_step_sequence(self.steps)
        return self

    @property
    def full_title(self) -> str:
        if self.suite:
            return f"{self.suite} › {self.title}"
        return self.title


class TestDefinition(BaseModel):
    """A test as declared inside a suite file."""

    __test__ = False

    model_config = ConfigDict(frozen=True, extra="forbid")

    id: str
    title: str
    steps: List[Step] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    skip: bool = False
    only: bool = False


class SuiteDefinition(BaseModel):
    """A group of tests sharing a title, an optional base URL and setup steps."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    title: str = Field(..., min_length=1)
    base_url: Optional[str] = Field(None, description="Fixed base URL for this suite")
    before_each: List[Step] = Field(
        default_factory=list, description="Steps prepended to every test"
    )
    tests: List[TestDefinition] = Field(..., min_length=1)

    @field_validator("base_url")
    @classmethod
    def validate_base_url(cls, v):
        return _validate_base_url(v)

    @model_validator(mode="after")
    def validate_steps(self):
        for test in self.tests:
            try:
                _validate_step_sequence(tuple(self.before_each) + tuple(test.steps))
            except ValueError as e:
                raise ValueError(f"Test {test.id}: {e}")
        return self

    def to_test_cases(self) -> List[TestCase]:
        """Flatten the suite into self-contained test cases."""
        return [
            TestCase(
                id=test.id,
                title=test.title,
                steps=tuple(self.before_each) + tuple(test.steps),
                suite=self.title,
                base_url=self.base_url,
                tags=tuple(test.tags),
                skip=test.skip,
                only=test.only,
            )
            for test in self.tests
        ]
