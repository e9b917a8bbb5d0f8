"""Error types for Kalamos.

Every failure the build engine can report is one of these. Only
ConfigError stops a build; the rest are attached to the single content item
or output they belong to and collected in the BuildReport.

Hierarchy:
- KalamosError
  - ConfigError
  - LoadError (MissingRequiredField, MalformedFrontMatter, UnsupportedContent)
  - LayoutError (CyclicLayout, UnknownLayout)
  - TemplateNotFound
  - RenderFailure
  - OutputWriteError
  - OutputConflict
"""

from __future__ import annotations

from collections.abc import Sequence


class KalamosError(Exception):
    """Base class for all Kalamos errors."""


class ConfigError(KalamosError):
    """Invalid site configuration. Raised before any build pass starts."""


class LoadError(KalamosError):
    """A content file could not be turned into a ContentItem.

    Attributes:
        source: ContentId (project-relative path) of the failing file.
        message: Human-readable reason.
    """

    def __init__(self, source: str, message: str):
        self.source = source
        self.message = message
        super().__init__(f"{source}: {message}")


class MissingRequiredField(LoadError):
    def __init__(self, source: str, field: str):
        self.field = field
        super().__init__(source, f"missing required field '{field}'")


class MalformedFrontMatter(LoadError):
    pass


class UnsupportedContent(LoadError):
    pass


class LayoutError(KalamosError):
    """Layout resolution failed.

    Attributes:
        layout_id: The layout where resolution stopped.
    """

    def __init__(self, layout_id: str, message: str):
        self.layout_id = layout_id
        super().__init__(message)


class CyclicLayout(LayoutError):
    def __init__(self, chain: Sequence[str]):
        self.chain = list(chain)
        super().__init__(
            self.chain[-1], "layout cycle: " + " -> ".join(self.chain)
        )


class UnknownLayout(LayoutError):
    def __init__(self, layout_id: str, referrer: str | None = None):
        self.referrer = referrer
        where = f" (referenced by {referrer})" if referrer else ""
        super().__init__(layout_id, f"unknown layout '{layout_id}'{where}")


class TemplateNotFound(KalamosError):
    """A resolved layout has no template source at render time."""

    def __init__(self, layout_id: str):
        self.layout_id = layout_id
        super().__init__(f"template not found for layout '{layout_id}'")


class RenderFailure(KalamosError):
    """Markdown or template expansion raised while rendering one output.

    Attributes:
        output_id: Output that failed.
        original_error: The exception raised by the expansion function.
    """

    def __init__(self, output_id: str, original_error: Exception):
        self.output_id = output_id
        self.original_error = original_error
        super().__init__(f"{output_id}: {format_error(original_error)}")


class OutputWriteError(KalamosError):
    """Writing or deleting an output file failed."""

    def __init__(self, output_id: str, original_error: OSError):
        self.output_id = output_id
        self.original_error = original_error
        super().__init__(f"{output_id}: {original_error}")


class OutputConflict(KalamosError):
    """Two content items render to the same output path."""

    def __init__(self, output_id: str, owner: str, other: str):
        self.output_id = output_id
        super().__init__(f"{other} renders to {output_id}, already produced by {owner}")


def format_error(exc: BaseException) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "TemplateSyntaxError":
        lineno = getattr(exc, "lineno", None)
        message = getattr(exc, "message", error_msg)
        return f"Template syntax error on line {lineno}: {message}"
    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if isinstance(exc, KalamosError):
        return error_msg

    return f"{error_type}: {error_msg}"
