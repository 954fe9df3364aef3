"""Rich console output and file saves for chat, image and waterfall results."""

import base64
import logging
import mimetypes
import re
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.markdown import Markdown
from rich.panel import Panel
from rich.rule import Rule
from rich.table import Table
from rich.text import Text

from solvent.models import GeneratedImage, ResourceEstimate, UsageCounters, WaterfallResult, WaterfallStageResult

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_RISK_STYLES = {"low": "green", "medium": "yellow", "high": "red", "critical": "bold red"}


def _slug(text: str, max_len: int = 40) -> str:
    """Convert text to a filename-safe slug."""
    slug = re.sub(r"[^\w\s-]", "", text.lower())
    slug = re.sub(r"[\s_-]+", "-", slug).strip("-")
    return slug[:max_len]


def _preview(text: str, words: int = 50) -> str:
    """Return first N words of a stage output."""
    all_words = text.split()
    preview = " ".join(all_words[:words])
    if len(all_words) > words:
        preview += "..."
    return preview


def print_response(text: str, model: str, info: str | None = None) -> None:
    """Print a chat answer as markdown with the serving model underneath."""
    console.print(Rule(f"[bold cyan]{model}[/bold cyan]"))
    console.print(Markdown(text))
    if info:
        console.print(Text(f"Note: {info}", style="yellow"))


def print_error(payload: dict) -> None:
    details = payload.get("details") or {}
    suffix = f" ({details['code']})" if "code" in details else ""
    console.print(f"[bold red]Error:[/bold red] {payload['error']}{suffix}")


def print_stage(stage: WaterfallStageResult) -> None:
    console.print(
        Panel(
            _preview(stage.output),
            title=f"[bold]{stage.role.title()}[/bold]",
            subtitle=stage.model,
            border_style="dim",
        )
    )


def print_estimate(estimate: ResourceEstimate) -> None:
    style = _RISK_STYLES.get(estimate.risk_level, "white")
    console.print(
        Text(
            f"Estimated tokens: {estimate.estimated_tokens} | "
            f"Cost: ${estimate.estimated_cost_usd:.6f} | "
            f"Risk: {estimate.risk_level}",
            style=style,
        )
    )
    if estimate.reason:
        console.print(Text(estimate.reason, style="dim"))


def print_waterfall(result: WaterfallResult) -> None:
    """Print the final status and the reviewer's verdict, if the chain got that far."""
    console.print(Rule("[bold green]Waterfall[/bold green]"))
    if result.estimate is not None:
        print_estimate(result.estimate)
    if result.status == "paused":
        console.print("[yellow]Paused by the resource gate.[/yellow] Re-run with --force to proceed.")
    elif result.status == "failed":
        console.print(f"[bold red]Failed at {result.failed_stage}:[/bold red] {result.error}")
    reviewer = result.stage("reviewer")
    if reviewer is not None:
        console.print(Markdown(reviewer.output))


def print_usage(usage: UsageCounters) -> None:
    table = Table(title="Usage", show_header=False)
    table.add_row("Requests", str(usage.request_count))
    table.add_row("Tokens", str(usage.tokens_consumed))
    table.add_row("Cost (USD)", f"{usage.cost_usd_accrued:.4f}")
    console.print(table)


def print_health(results: dict[str, tuple[bool, str]]) -> None:
    for name in sorted(results):
        ok, err = results[name]
        if ok:
            console.print(f"  [green]OK  [/green] {name}")
        else:
            short_err = err.splitlines()[0][:120] if err else "unknown error"
            console.print(f"  [red]FAIL[/red] {name}: {short_err}")


def save_image(image: GeneratedImage, output_path: Path) -> Path:
    """Decode a generated image to disk. A path without suffix gets one from the MIME type."""
    if not output_path.suffix:
        output_path = output_path.with_suffix(mimetypes.guess_extension(image.mime_type) or ".png")
    output_path.parent.mkdir(parents=True, exist_ok=True)
    output_path.write_bytes(base64.b64decode(image.base64))
    logger.info("Image saved to: %s", output_path)
    return output_path


def save_waterfall(prompt: str, result: WaterfallResult, output_dir: Path) -> Path:
    """Save the full waterfall transcript as a markdown file.

    Returns:
        Path to the saved file.
    """
    output_dir.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    filepath = output_dir / f"{timestamp}_{_slug(prompt)}.md"

    lines: list[str] = [
        f"# Waterfall: {prompt[:80]}",
        "",
        f"**Date:** {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"**Status:** {result.status}",
    ]
    if result.estimate is not None:
        lines.append(
            f"**Estimate:** {result.estimate.estimated_tokens} tokens, "
            f"${result.estimate.estimated_cost_usd:.6f}, {result.estimate.risk_level} risk"
        )
    if result.failed_stage:
        lines.append(f"**Failed stage:** {result.failed_stage} ({result.error})")
    lines += ["", "---", ""]

    for stage in result.stages:
        lines += [f"## {stage.role.title()} ({stage.model})", "", stage.output, ""]

    filepath.write_text("\n".join(lines), encoding="utf-8")
    logger.info("Waterfall saved to: %s", filepath)
    return filepath
