import json
import os
import sys

import click
from rich.console import Console
from rich.table import Table

from .analysis import BillAnalysis
from .client import DEFAULT_BASE_URL, ApiError, MediGuardClient

console = Console()


def render_analysis(analysis: BillAnalysis) -> None:
    console.print(f"\n[bold]Summary[/bold]\n{analysis.summary}")
    if analysis.insurance_plan:
        console.print(f"Insurance plan: {analysis.insurance_plan}")

    table = Table(title="Line Items")
    table.add_column("CPT")
    table.add_column("Description")
    table.add_column("Billed", justify="right")
    table.add_column("Reasonable", justify="right")
    table.add_column("Status")
    for item in analysis.items:
        status = "[red]incorrect[/red]" if item.is_issue else "[green]correct[/green]"
        estimate = item.estimated_reasonable_amount
        table.add_row(
            item.cpt_code,
            item.description,
            f"${item.amount:,.2f}",
            f"${estimate:,.2f}" if estimate is not None else "-",
            status,
        )
    console.print(table)

    console.print(f"\n Total billed: [bold]${analysis.total_billed:,.2f}[/bold]")
    console.print(f" Issues found: [bold]{analysis.issues_found}[/bold]")
    console.print(f" Potential savings: [bold green]${analysis.potential_savings:,.2f}[/bold green]")

    if analysis.question_answer:
        console.print(f"\n[bold]Answer[/bold]\n{analysis.question_answer}")
    if analysis.dispute_letter:
        console.print(f"\n[bold]Dispute letter[/bold]\n{analysis.dispute_letter}")


@click.group()
def cli():
    """MediGuard bill analysis"""


@cli.command()
@click.option("--host", default="127.0.0.1", help="Bind address")
@click.option("--port", default=8000, type=int, help="Port")
@click.option("--reload", is_flag=True, help="Reload on code changes")
def serve(host, port, reload):
    """Run the API server."""
    import uvicorn

    uvicorn.run("mediguard.main:app", host=host, port=port, reload=reload)


@cli.command()
@click.argument("bill_file", required=False, type=click.Path(exists=True, dir_okay=False))
@click.option("--text", "bill_text", help="Bill text instead of a file")
@click.option("--insurance", default="", help="Insurance provider")
@click.option("--question", default=None, help="Question to ask about the bill")
@click.option("--url", default=lambda: os.environ.get("MEDIGUARD_URL", DEFAULT_BASE_URL), help="API base URL")
@click.option("--token", envvar="MEDIGUARD_TOKEN", default=None, help="Supabase access token")
@click.option("--json", "as_json", is_flag=True, help="Print raw JSON")
def analyze(bill_file, bill_text, insurance, question, url, token, as_json):
    """Analyze a bill image/PDF or pasted bill text."""
    if not bill_file and not bill_text:
        console.print("[red]Pass a bill file or --text[/red]")
        sys.exit(2)

    client = MediGuardClient(base_url=url, access_token=token)
    try:
        with console.status("Analyzing your bill..."):
            if bill_file:
                analysis = client.analyze_file(bill_file, insurance_provider=insurance, user_question=question)
            else:
                analysis = client.analyze_text(bill_text, insurance_provider=insurance, user_question=question)
    except ApiError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    if as_json:
        console.print_json(json.dumps(analysis.to_dict()))
    else:
        render_analysis(analysis)


@cli.command()
@click.option("--url", default=lambda: os.environ.get("MEDIGUARD_URL", DEFAULT_BASE_URL), help="API base URL")
@click.option("--token", envvar="MEDIGUARD_TOKEN", required=True, help="Supabase access token")
def history(url, token):
    """List saved analyses."""
    client = MediGuardClient(base_url=url, access_token=token)
    try:
        items = client.history()
    except ApiError as e:
        console.print(f"[red]{e.message}[/red]")
        sys.exit(1)

    if not items:
        console.print("[green]No saved analyses yet[/green]")
        return

    table = Table(title=f"Saved analyses ({len(items)})")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Issues", justify="right")
    table.add_column("Savings", justify="right")
    for item in items:
        table.add_row(
            item.id,
            item.title,
            str(item.analysis.issues_found),
            f"${item.analysis.potential_savings:,.2f}",
        )
    console.print(table)


if __name__ == "__main__":
    cli()
