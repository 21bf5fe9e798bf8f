"""
Revalidation options and their defaults.

Every subscription carries its own RevalidateOptions, built from the
manager's defaults (which come from config.settings) merged with the
overrides passed to ``subscribe``.
"""
from typing import Any, Callable, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

from config.settings import Settings, settings as default_settings

from .middleware import Middleware


def default_compare(previous: Any, current: Any) -> bool:
    """Identity or primitive equality."""
    return previous is current or previous == current


class RevalidateOptions(BaseModel):
    """Validated configuration consumed by the scheduler, retry and dedup logic."""

    model_config = ConfigDict(
        arbitrary_types_allowed=True,
        extra="forbid",
        frozen=True,
    )

    fetcher: Optional[Callable[..., Any]] = None
    middlewares: Tuple[Middleware, ...] = ()

    # Dedup / polling (seconds)
    deduping_interval: float = Field(default=2.0, ge=0)
    refresh_interval: float = Field(default=0.0, ge=0)
    refresh_when_hidden: bool = False
    refresh_when_offline: bool = False

    # Triggers
    revalidate_on_mount: Optional[bool] = None  # None: only without initial_data
    revalidate_on_focus: bool = True
    revalidate_on_reconnect: bool = True
    focus_throttle_interval: float = Field(default=5.0, ge=0)

    # Errors
    should_retry_on_error: bool = True
    error_retry_interval: float = Field(default=5.0, ge=0)
    error_retry_count: Optional[int] = Field(default=None, ge=0)  # None: unbounded

    loading_timeout: float = Field(default=3.0, ge=0)
    initial_data: Any = None
    compare: Callable[[Any, Any], bool] = default_compare

    # Lifecycle callbacks
    on_success: Optional[Callable[[Any, str], Any]] = None
    on_error: Optional[Callable[[BaseException, str], Any]] = None
    on_loading_slow: Optional[Callable[[str], Any]] = None
    on_error_retry: Optional[Callable[..., Any]] = None

    @classmethod
    def from_settings(cls, settings: Optional[Settings] = None, **overrides: Any) -> "RevalidateOptions":
        """Build options from application settings plus explicit overrides."""
        settings = settings or default_settings
        values = {
            "deduping_interval": settings.deduping_interval,
            "refresh_interval": settings.refresh_interval,
            "refresh_when_hidden": settings.refresh_when_hidden,
            "refresh_when_offline": settings.refresh_when_offline,
            "revalidate_on_focus": settings.revalidate_on_focus,
            "revalidate_on_reconnect": settings.revalidate_on_reconnect,
            "focus_throttle_interval": settings.focus_throttle_interval,
            "should_retry_on_error": settings.should_retry_on_error,
            "error_retry_interval": settings.error_retry_interval,
            "error_retry_count": settings.error_retry_count,
            "loading_timeout": settings.loading_timeout,
        }
        values.update(overrides)
        return cls(**values)

    def merged(self, **overrides: Any) -> "RevalidateOptions":
        """
        Return a validated copy with ``overrides`` applied.

        ``middlewares`` are appended to the existing ones rather than
        replacing them.

        Raises:
            pydantic.ValidationError: On unknown names or invalid values
        """
        if not overrides:
            return self
        values = dict(self)
        if "middlewares" in overrides:
            overrides["middlewares"] = tuple(self.middlewares) + tuple(overrides["middlewares"])
        values.update(overrides)
        return type(self)(**values)

    def should_revalidate_on_mount(self) -> bool:
        if self.revalidate_on_mount is not None:
            return self.revalidate_on_mount
        return self.initial_data is None
