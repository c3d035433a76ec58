"""Command line tools for working on the CERFA template and mapping"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .pdf_utils import CerfaPrefillError, fill_pdf_template
from .template_scanner import TemplateScanner

app = typer.Typer(
    name="cerfa-prefill",
    help="Fill and inspect the CERFA apprenticeship contract template",
    add_completion=False,
)

console = Console()


def _read_json(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as f:
        return json.load(f)


@app.command("fields")
def fields(
    template: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF template"),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the field list to this JSON file"),
):
    """List the form fields of a template with their type"""
    entries = TemplateScanner().scan_template(template.read_bytes())
    if output:
        output.write_text(json.dumps(entries, indent=2, ensure_ascii=False), encoding="utf-8")
        console.print(f"[green][OK] {len(entries)} fields written to {output}[/green]")
        return
    if json_output:
        typer.echo(json.dumps(entries, indent=2, ensure_ascii=False))
        return

    table = Table(title=f"{template.name} ({len(entries)} fields)")
    table.add_column("Name")
    table.add_column("Type")
    for entry in entries:
        table.add_row(entry["name"], entry["type"])
    console.print(table)


@app.command("fill")
def fill(
    data: Path = typer.Argument(..., exists=True, dir_okay=False, help="Business data JSON"),
    mapping: Path = typer.Argument(..., exists=True, dir_okay=False, help="Field mapping JSON"),
    template: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF template"),
    output: Path = typer.Argument(..., help="Where to write the filled PDF"),
):
    """Fill the template from a data file and a mapping file"""
    try:
        pdf_bytes, report = fill_pdf_template(template.read_bytes(), _read_json(mapping), _read_json(data))
    except CerfaPrefillError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=1)

    output.write_bytes(pdf_bytes)
    for name in report.missing:
        console.print(f"[yellow]Field not in template: {name}[/yellow]")
    for name, error in report.errors.items():
        console.print(f"[red]Error on field {name}: {error}[/red]")
    console.print(f"[green][OK] {report.filled_count} fields filled -> {output}[/green]")


@app.command("mapping-pdf")
def mapping_pdf(
    template: Path = typer.Argument(..., exists=True, dir_okay=False, help="PDF template"),
    output: Path = typer.Argument(Path("cerfa_mapping_numeros.pdf"), help="Where to write the debug PDF"),
):
    """Write a copy of the template showing each field's short identifier"""
    try:
        pdf_bytes = TemplateScanner().build_mapping_pdf(template.read_bytes())
    except CerfaPrefillError as exc:
        console.print(f"[red]Error: {exc}[/red]")
        raise typer.Exit(code=1)
    output.write_bytes(pdf_bytes)
    console.print(f"[green][OK] Open {output} to see which id sits where[/green]")

