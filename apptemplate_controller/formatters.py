"""Output formatting and display utilities using rich library."""

from io import StringIO
from typing import List, Sequence

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.text import Text

from apptemplate_controller.models import ReconciliationResult, TemplateDocument
from apptemplate_controller.ordering import order_documents


class Formatters:
    """Output formatters for CLI display."""

    @staticmethod
    def _console(buffer: StringIO) -> Console:
        return Console(file=buffer, force_terminal=True, width=120)

    @staticmethod
    def format_documents(documents: Sequence[TemplateDocument], show_content: bool = False) -> str:
        """Format rendered documents as a table, in apply order.

        Args:
            documents: Rendered template documents
            show_content: Also print the rendered YAML of every document

        Returns:
            Formatted table string
        """
        buffer = StringIO()
        console = Formatters._console(buffer)

        table = Table(
            title="Rendered Templates",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan"
        )

        table.add_column("Phase", justify="center")
        table.add_column("Type", style="white", no_wrap=True)
        table.add_column("File", style="dim")

        ordered: List[TemplateDocument] = []
        for phase_number, phase in enumerate(order_documents(documents), start=1):
            for document in phase:
                table.add_row(str(phase_number), document.type, str(document.path))
                ordered.append(document)

        if not documents:
            table.add_row("", "No templates selected", "")

        console.print(table)

        if show_content:
            for document in ordered:
                console.print(Panel(
                    Syntax(document.rendered_content, "yaml", theme="ansi_dark"),
                    title=str(document.path),
                    box=box.ROUNDED,
                ))

        return buffer.getvalue()

    @staticmethod
    def format_result(result: ReconciliationResult) -> str:
        """Format a reconciliation result with one row per resource.

        Args:
            result: Result of a reconciliation pass

        Returns:
            Formatted table string
        """
        buffer = StringIO()
        console = Formatters._console(buffer)

        table = Table(
            title="Applied Resources",
            box=box.ROUNDED,
            show_header=True,
            header_style="bold cyan"
        )

        table.add_column("Resource", style="white", no_wrap=True)
        table.add_column("Status", justify="center")
        table.add_column("Message", style="dim")

        outcome = result.outcome
        for ref in outcome.created:
            table.add_row(str(ref), Text("✓ Created", style="green"), "")
        for ref in outcome.patched:
            table.add_row(str(ref), Text("✓ Patched", style="blue"), "")
        for failure in outcome.failures:
            table.add_row(str(failure.resource), Text(f"✗ {failure.operation} failed", style="red"),
                          failure.message)

        if not (outcome.created or outcome.patched or outcome.failures):
            table.add_row("No resources applied", "", "")

        console.print(table)

        for message in result.render_errors:
            console.print(f"[red]✗ {message}[/red]")
        if result.error:
            console.print(f"[red]✗ {result.error}[/red]")

        color = "green" if result.succeeded else "yellow"
        console.print(f"[bold {color}]{result.phase}[/bold {color}]: "
                      f"{result.documents} documents, {len(outcome.created)} created, "
                      f"{len(outcome.patched)} patched, {len(outcome.failures)} failed")

        return buffer.getvalue()
