"""Error handling utilities for CLI commands."""

from functools import wraps

import click
from rich.console import Console

from apptemplate_controller.exceptions import AppTemplateControllerError

console = Console(stderr=True)


def handle_cli_errors(func):
    """Decorator to handle CLI errors with consistent formatting.

    This decorator catches all custom exceptions and formats them
    with error messages and troubleshooting guidance.
    """
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except AppTemplateControllerError as e:
            console.print("\n[bold red]✗ Error[/bold red]\n")
            console.print(f"[red]{e.message}[/red]\n")

            # Display troubleshooting steps if available
            troubleshooting = e.get_troubleshooting_text()
            if troubleshooting:
                console.print(f"[bold yellow]{troubleshooting}[/bold yellow]\n")

            raise click.ClickException(e.message)

        except click.ClickException:
            raise

        except KeyboardInterrupt:
            console.print("\n\n[dim]Stopped by user[/dim]\n")
            raise click.Abort()

        except Exception as e:
            console.print("\n[bold red]✗ Unexpected Error[/bold red]\n")
            console.print(f"[red]{str(e)}[/red]\n")
            console.print("[bold yellow]Troubleshooting:[/bold yellow]")
            console.print("• Re-run with --log-level DEBUG for details.")
            console.print("• Verify your environment and configuration.\n")
            raise click.ClickException(f"Unexpected error: {str(e)}")

    return wrapper


def print_success(message: str):
    """Print a success message.

    Args:
        message: Success message to display
    """
    console.print(f"[bold green]✓ {message}[/bold green]")
