"""Configuration management for invoice-dispatch.

All settings can be supplied through environment variables with the
``INVOICING_`` prefix or a ``.env`` file, and are validated with
Pydantic Settings.
"""

from __future__ import annotations

import re
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from invoice_dispatch.core.types import DuplicateSendPolicy, InvoiceStatus

_FILENAME_UNSAFE = re.compile(r"[^A-Za-z0-9._-]+")


class InvoicingConfig(BaseSettings):
    """Main configuration for the invoice send pipeline.

    Example:
        ```python
        # INVOICING_DATABASE_URL=sqlite+aiosqlite:///./invoicing-app.db
        # INVOICING_SEND_DEADLINE=90
        config = InvoicingConfig()

        # Or programmatically
        config = InvoicingConfig(
            database_url="sqlite+aiosqlite:///:memory:",
            output_dir="/tmp/invoices",
            duplicate_send_policy="queue",
        )
        ```

    Attributes:
        database_url: Async SQLAlchemy URL of the local store
        output_dir: Directory receiving generated PDFs
        send_deadline: Overall watchdog for one send, in seconds
        audit_render_failures: Record render/rasterize failures in the email log
        sent_transition_from: Statuses that become ``Sent`` after delivery
        duplicate_send_policy: Reject or queue concurrent sends of one invoice
    """

    model_config = SettingsConfigDict(
        env_prefix="INVOICING_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    def __str__(self) -> str:
        """String representation with masked secrets."""
        result = super().__repr__()
        return re.sub(r"://([^:/]+):([^@]+)@", r"://\1:***@", result)

    ##########################
    # Database Configuration #
    ##########################

    database_url: str = Field(
        default="sqlite+aiosqlite:///./invoicing-app.db",
        description="Async SQLAlchemy URL of the local relational store",
    )

    database_echo: bool = Field(
        default=False,
        description="Enable SQL statement logging (development only)",
    )

    ###########################
    # Files and Template Path #
    ###########################

    output_dir: Path = Field(
        default=Path("invoices"),
        description="Directory where generated invoice PDFs are written",
    )

    attachments_dir: Path = Field(
        default=Path("attachments"),
        description="Directory where uploaded invoice attachments are stored",
    )

    template_path: Path | None = Field(
        default=None,
        description="Development-layout template; falls back to the packaged template",
    )

    #######################
    # PDF Rasterizer      #
    #######################

    browser_executable_path: str | None = Field(
        default=None,
        description="Chromium executable; defaults to the Playwright-managed browser",
    )

    browser_args: list[str] = Field(
        default_factory=lambda: ["--no-sandbox", "--disable-setuid-sandbox"],
        description="Extra command-line flags for the headless browser",
    )

    launch_timeout: float = Field(default=15.0, gt=0, description="Browser launch budget (s)")
    new_page_timeout: float = Field(default=8.0, gt=0, description="New page budget (s)")
    content_timeout: float = Field(default=10.0, gt=0, description="Content load budget (s)")
    pdf_timeout: float = Field(default=10.0, gt=0, description="PDF write budget (s)")

    ###################
    # Mail Dispatcher #
    ###################

    smtp_connect_timeout: float = Field(default=10.0, gt=0, description="TCP connect timeout (s)")
    smtp_greeting_timeout: float = Field(
        default=10.0, gt=0, description="Greeting and verification timeout (s)"
    )
    smtp_socket_timeout: float = Field(default=20.0, gt=0, description="Transmit timeout (s)")

    send_max_attempts: int = Field(
        default=3,
        ge=1,
        le=10,
        description="Delivery attempts before the send is reported as failed",
    )

    send_retry_delay: float = Field(
        default=1.0,
        ge=0,
        description="Linear backoff unit: wait delay x attempts made between attempts",
    )

    ####################
    # Send Orchestrator #
    ####################

    send_deadline: float = Field(
        default=60.0,
        gt=0,
        description="Overall watchdog for one send operation (s)",
    )

    audit_render_failures: bool = Field(
        default=False,
        description="Write a failed email log row when rendering or rasterizing fails",
    )

    sent_transition_from: list[InvoiceStatus] = Field(
        default_factory=lambda: [InvoiceStatus.DRAFT, InvoiceStatus.SENT, InvoiceStatus.OVERDUE],
        description="Statuses that move to Sent after a successful delivery",
    )

    duplicate_send_policy: DuplicateSendPolicy = Field(
        default=DuplicateSendPolicy.REJECT,
        description="Reject or queue a send for an invoice that is already being sent",
    )

    ##############
    # Validators #
    ##############

    @field_validator("database_url", mode="before")
    @classmethod
    def validate_database_url(cls, v: str) -> str:
        """Require an async driver scheme.

        Args:
            v: Database URL to validate

        Returns:
            Normalised URL string

        Raises:
            ValueError: If the URL uses a synchronous driver
        """
        url_str = str(v).strip().rstrip("/")
        scheme = url_str.split("://", 1)[0].lower()
        if "+" not in scheme:
            raise ValueError(
                "database_url must use an async driver (e.g. sqlite+aiosqlite, "
                "postgresql+asyncpg)"
            )
        return url_str

    @field_validator("browser_args", mode="before")
    @classmethod
    def validate_browser_args(cls, v: object) -> object:
        if isinstance(v, str):
            v = v.split(",")
        if isinstance(v, list):
            return [str(arg).strip() for arg in v if str(arg).strip()]
        return v

    @field_validator("sent_transition_from")
    @classmethod
    def validate_sent_transition_from(cls, v: list[InvoiceStatus]) -> list[InvoiceStatus]:
        """Refuse to let a successful send revert a settled invoice.

        Raises:
            ValueError: If Paid or Cancelled is listed
        """
        settled = {InvoiceStatus.PAID, InvoiceStatus.CANCELLED} & set(v)
        if settled:
            names = ", ".join(sorted(s.value for s in settled))
            raise ValueError(f"sent_transition_from may not include settled statuses: {names}")
        return list(dict.fromkeys(v))

    ##################
    # Helper Methods #
    ##################

    def pdf_filename(self, invoice_prefix: str | None, invoice_number: str) -> str:
        """Return the deterministic PDF file name for an invoice.

        Example:
            ```python
            config.pdf_filename("ACME", "1001")
            # Returns: "ACME-Invoice-1001.pdf"
            ```
        """
        number = _FILENAME_UNSAFE.sub("_", invoice_number.strip()) or "unnumbered"
        prefix = _FILENAME_UNSAFE.sub("_", (invoice_prefix or "").strip())
        if prefix:
            return f"{prefix}-Invoice-{number}.pdf"
        return f"Invoice-{number}.pdf"

    def pdf_output_path(self, invoice_prefix: str | None, invoice_number: str) -> Path:
        """Return the per-invoice PDF path under :attr:`output_dir`."""
        return self.output_dir / self.pdf_filename(invoice_prefix, invoice_number)

    def retry_backoff_total(self) -> float:
        """Total time spent sleeping between attempts when every attempt fails."""
        return sum(self.send_retry_delay * made for made in range(1, self.send_max_attempts))

    def model_post_init(self, __context: object) -> None:
        """Run cross-field validation after model construction."""
        self.validate_configuration()

    def validate_configuration(self) -> None:
        """Validate complete configuration consistency.

        Raises:
            ValueError: If configuration is inconsistent
        """
        if self.retry_backoff_total() >= self.send_deadline:
            raise ValueError(
                "send_deadline must exceed the total retry backoff "
                f"({self.retry_backoff_total():g}s for {self.send_max_attempts} attempts)"
            )

        if self.output_dir.resolve() == self.attachments_dir.resolve():
            raise ValueError("output_dir and attachments_dir must be different directories")


__all__ = ["InvoicingConfig"]
