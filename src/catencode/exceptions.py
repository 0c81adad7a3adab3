"""Error and warning types raised by catencode.

Every error carries a stable ``code`` (what the CLI prints and what callers
branch on), an optional ``location`` naming the function that failed, and a
free-form ``context`` dict with the column, method or counts involved.

    AppError
    ├── ConfigError
    ├── DataError
    │   ├── InsufficientDataError
    │   └── OutcomeTypeError
    ├── ModelError
    │   ├── TrainingError
    │   ├── ConvergenceError
    │   │   └── NonConvergenceError
    │   └── DeadlineExceededError
    └── PipelineError
"""

from __future__ import annotations

from typing import Any, Mapping


class AppError(Exception):
    """Root of the catencode error hierarchy.

    Attributes
    ----------
    message:
        Text shown to the user.
    code:
        Short identifier such as "insufficient_data"; falls back to the
        class's ``default_code``.
    cause:
        The lower-level exception being wrapped, if any. Also set as
        ``__cause__`` so tracebacks chain.
    context:
        Extra fields for debugging (column name, level counts, ...).
    location:
        Dotted path of the failing callable, e.g.
        "catencode.encoders.glm.NoPoolingEncoder.fit".
    """

    default_code: str = "app_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        cause: BaseException | None = None,
        context: Mapping[str, Any] | None = None,
        location: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code if code else self.default_code
        self.context = {} if context is None else dict(context)
        self.location = location
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause

    def __str__(self) -> str:
        text = f"[{self.code}] {self.message}"
        if self.location:
            text += f" (at {self.location})"
        if self.cause is not None:
            text += f" (cause: {self.cause!r})"
        return text

    def __repr__(self) -> str:
        return f"{type(self).__name__}(code={self.code!r}, message={self.message!r}, location={self.location!r})"

    def to_dict(self) -> dict[str, Any]:
        """Plain-dict form for JSON logs and CLI error output."""
        payload: dict[str, Any] = {
            "type": type(self).__name__,
            "code": self.code,
            "message": self.message,
        }
        optional = {
            "location": self.location,
            "context": dict(self.context) if self.context else None,
            "cause": (
                {"type": type(self.cause).__name__, "repr": repr(self.cause)}
                if self.cause is not None
                else None
            ),
        }
        payload.update({key: value for key, value in optional.items() if value})
        return payload

    def add_context(self, **extra: Any) -> AppError:
        """Merge ``extra`` into ``context`` and return the same error, for re-raising."""
        self.context.update(extra)
        return self

    @classmethod
    def from_exception(
        cls,
        exc: BaseException,
        *,
        message: str | None = None,
        code: str | None = None,
        context: Mapping[str, Any] | None = None,
        location: str | None = None,
    ) -> AppError:
        """Wrap a third-party exception in this error class.

        The message defaults to ``str(exc)``:

        >>> try:
        ...     result = model.fit()
        ... except np.linalg.LinAlgError as exc:
        ...     raise NonConvergenceError.from_exception(
        ...         exc, context={"column": "zip_code"}
        ...     ) from exc
        """
        return cls(
            message or str(exc) or cls.__name__,
            code=code,
            cause=exc,
            context=context,
            location=location,
        )


# ---------------------------------------------------------------------------
# Input problems
# ---------------------------------------------------------------------------


class ConfigError(AppError):
    """Bad or unreadable configuration."""

    default_code = "config_error"


class DataError(AppError):
    """The input frame or file cannot be used as given."""

    default_code = "data_error"


class InsufficientDataError(DataError):
    """Too few rows or distinct levels to fit an encoder.

    Raised for frames with fewer than two distinct levels, and by the
    embedding encoder when the number of levels does not exceed the
    requested embedding dimension.
    """

    default_code = "insufficient_data"


class OutcomeTypeError(DataError):
    """The outcome column type is not supported by the chosen estimator.

    For example a multi-class outcome given to a likelihood encoder, or a
    categorical outcome with a single observed class.
    """

    default_code = "unsupported_outcome_type"


# ---------------------------------------------------------------------------
# Fitting problems
# ---------------------------------------------------------------------------


class ModelError(AppError):
    """An estimator failed while fitting or predicting."""

    default_code = "model_error"


class TrainingError(ModelError):
    """The embedding network could not be trained (bad arguments, NaN loss, bad device)."""

    default_code = "training_error"


class ConvergenceError(ModelError):
    """A sampler or iterative solver did not reach an acceptable fit.

    Callers may catch this to retry with adjusted hyperparameters.
    """

    default_code = "convergence_error"


class NonConvergenceError(ConvergenceError):
    """The mixed-effects solver did not converge within its iteration budget."""

    default_code = "solver_not_converged"


class DeadlineExceededError(ModelError):
    """A fit ran past its deadline or was cancelled."""

    default_code = "deadline_exceeded"


class PipelineError(AppError):
    """CLI and experiment-tracking wiring failed."""

    default_code = "pipeline_error"


# ---------------------------------------------------------------------------
# Warnings
# ---------------------------------------------------------------------------


class UnknownLevelWarning(UserWarning):
    """Levels not seen at fit time were replaced by the fallback vector."""


class ConvergenceWarning(UserWarning):
    """Sampler diagnostics failed but the caller asked for a table anyway."""
