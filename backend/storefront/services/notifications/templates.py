"""
Email template engine with Jinja2.

Every notification kind has three templates in the template directory:
``{kind}_subject.txt``, ``{kind}.html`` and an optional ``{kind}.txt``.
"""

from datetime import datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from jinja2 import (
    Environment,
    FileSystemLoader,
    Template,
    TemplateError,
    TemplateNotFound,
    select_autoescape,
)

from storefront.core.logging import get_logger
from storefront.services.payments.currency import is_zero_decimal

logger = get_logger(__name__)

DEFAULT_TEMPLATE_DIR = Path(__file__).resolve().parent.parent.parent / "templates" / "emails"

CURRENCY_SYMBOLS = {"USD": "$", "EUR": "€", "GBP": "£", "JPY": "¥"}


class TemplateEngineError(Exception):
    """Base exception for template engine errors."""

    def __init__(self, message: str, template_name: Optional[str] = None):
        super().__init__(message)
        self.template_name = template_name


class TemplateNotFoundError(TemplateEngineError):
    """Raised when a template cannot be found."""

    pass


class TemplateRenderError(TemplateEngineError):
    """Raised when template rendering fails."""

    pass


class TemplateEngine:
    """
    Template engine for rendering order emails.

    Args:
        template_dir: Directory containing template files, defaults to the
            package's ``templates/emails``
        cache_size: Size of the Jinja2 template cache
    """

    def __init__(self, template_dir: Optional[str] = None, cache_size: int = 400):
        self.template_dir = Path(template_dir) if template_dir else DEFAULT_TEMPLATE_DIR

        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            cache_size=cache_size,
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["money"] = format_money
        self.env.filters["date"] = format_date

    def render_email(self, template_name: str, context: dict[str, Any]) -> dict[str, str]:
        """
        Render an email template.

        Args:
            template_name: Template base name, the notification kind
            context: Variables to substitute in the template

        Returns:
            Dictionary containing 'subject', 'html_body' and 'text_body'
            (the latter only when a text template exists)

        Raises:
            TemplateNotFoundError: If the subject or HTML template is missing
            TemplateRenderError: If rendering fails
        """
        try:
            subject = self._load_template(f"{template_name}_subject.txt").render(**context).strip()
            html_body = self._load_template(f"{template_name}.html").render(**context)

            result = {"subject": subject, "html_body": html_body}
            try:
                result["text_body"] = self._load_template(f"{template_name}.txt").render(**context)
            except TemplateNotFound:
                logger.debug("Text template not found, using HTML only", template_name=template_name)

            return result

        except TemplateNotFound as e:
            logger.error("Email template not found", template_name=template_name, error=str(e))
            raise TemplateNotFoundError(
                f"Email template not found: {template_name}",
                template_name=template_name,
            ) from e
        except TemplateError as e:
            logger.error(
                "Email template rendering failed",
                template_name=template_name,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise TemplateRenderError(
                f"Failed to render email template: {str(e)}",
                template_name=template_name,
            ) from e

    def _load_template(self, template_path: str) -> Template:
        return self.env.get_template(template_path)


def format_money(value: Any, currency: str = "USD") -> str:
    """Format a major-unit amount with the currency's symbol or code."""
    amount = Decimal(str(value or 0))
    code = (currency or "USD").upper()
    symbol = CURRENCY_SYMBOLS.get(code)
    number = f"{amount:,.0f}" if is_zero_decimal(code) else f"{amount:,.2f}"
    return f"{symbol}{number}" if symbol else f"{number} {code}"


def format_date(value: Any) -> str:
    """Format a datetime or ISO date string."""
    if isinstance(value, datetime):
        return value.strftime("%B %d, %Y")
    try:
        return datetime.fromisoformat(str(value).replace("Z", "+00:00")).strftime("%B %d, %Y")
    except ValueError:
        return str(value)
