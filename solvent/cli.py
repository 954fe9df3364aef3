"""Click CLI: config loading, service wiring and console output for every route."""

import asyncio
import base64
import logging
import mimetypes
import sys
from collections.abc import Awaitable, Callable
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.logging import RichHandler
from rich.progress import Progress, SpinnerColumn, TextColumn, TimeElapsedColumn

from config.config_loader import AppConfig, load_config
from solvent.errors import ProviderError, classify_exception
from solvent.estimator import estimate
from solvent.healthcheck import run_health_checks
from solvent.models import ChatRequest, GeneratedImage, Mode, UsageCounters, WaterfallStageResult
from solvent.output import (
    print_error,
    print_estimate,
    print_health,
    print_response,
    print_stage,
    print_usage,
    print_waterfall,
    save_image,
    save_waterfall,
)
from solvent.service import ChatService, error_payload

logger = logging.getLogger(__name__)

console = Console(legacy_windows=False)

_MODES = [mode.value for mode in Mode]


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
    )


def _config(ctx: click.Context) -> AppConfig:
    if "config" not in ctx.obj:
        try:
            ctx.obj["config"] = load_config()
        except (FileNotFoundError, ValueError) as exc:
            console.print(f"[bold red]Config error:[/bold red] {exc}")
            sys.exit(1)
    return ctx.obj["config"]


def _with_service(config: AppConfig, handler: Callable[[ChatService], Awaitable]):
    """Run ``handler`` against a fresh ChatService and close it afterwards."""

    async def runner():
        service = ChatService.from_config(config)
        try:
            return await handler(service)
        finally:
            await service.aclose()

    return asyncio.run(runner())


def _exit_on_error(payload: dict) -> None:
    if "error" in payload:
        print_error(payload)
        sys.exit(1)


def _image_data_uri(path: str) -> str:
    mime_type = mimetypes.guess_type(path)[0] or "image/png"
    encoded = base64.b64encode(Path(path).read_bytes()).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def _default_model(config: AppConfig, provider: str) -> str:
    provider_cfg = config.providers.get(provider)
    if provider != config.defaults.provider and provider_cfg is not None and provider_cfg.default_model:
        return provider_cfg.default_model
    return config.defaults.model


def _chat_payload(
    config: AppConfig,
    prompt: str,
    provider: str | None,
    model: str | None,
    mode: str,
    fallback: str | None,
    no_smart_router: bool,
    image: str | None,
) -> dict:
    provider = provider or config.defaults.provider
    return {
        "messages": [{"role": "user", "content": prompt}],
        "provider": provider,
        "model": model or _default_model(config, provider),
        "mode": mode,
        "smartRouter": not no_smart_router,
        "fallbackModel": fallback if fallback is not None else config.defaults.fallback_model,
        "temperature": config.defaults.temperature,
        "maxTokens": config.defaults.max_tokens,
        "image": _image_data_uri(image) if image else None,
    }


def _chat_options(command):
    options = [
        click.option("--provider", default=None, help="Provider name (default: from config)"),
        click.option("--model", default=None, help="Model name (default: the provider's default_model from config)"),
        click.option("--mode", type=click.Choice(_MODES), default=Mode.PLAIN.value, show_default=True),
        click.option("--tier", default=None, help="Route through a stored tier preference instead"),
        click.option("--fallback", default=None, help="Fallback model reference, e.g. ollama/llama3"),
        click.option("--no-smart-router", is_flag=True, help="Disable cloud search grounding"),
    ]
    for option in reversed(options):
        command = option(command)
    return command


@click.group()
@click.option("--verbose", is_flag=True, help="Enable DEBUG-level logging")
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """Solvent -- route prompts across cloud, local and hosted models.

    \b
    Examples:
      solvent chat "Explain CRDTs" --mode deep_thought
      solvent chat "Latest Rust release?" --mode browser --fallback ollama/llama3
      solvent stream "Write a haiku" --provider groq --model llama-3.3-70b-versatile
      solvent waterfall "Build a URL shortener" --force
      solvent estimate --complexity high --prompt "..."
    """
    load_dotenv()
    _setup_logging(verbose)
    ctx.ensure_object(dict)


@main.command()
@click.argument("prompt")
@_chat_options
@click.option("--image", type=click.Path(exists=True, dir_okay=False), default=None, help="Image for vision mode")
@click.pass_context
def chat(
    ctx: click.Context,
    prompt: str,
    provider: str | None,
    model: str | None,
    mode: str,
    tier: str | None,
    fallback: str | None,
    no_smart_router: bool,
    image: str | None,
) -> None:
    """Send one prompt and print the answer."""
    config = _config(ctx)
    payload = _chat_payload(config, prompt, provider, model, mode, fallback, no_smart_router, image)
    if image and mode == Mode.PLAIN.value:
        payload["mode"] = Mode.VISION.value

    with console.status("Thinking..."):
        result = _with_service(config, lambda service: service.process_chat(payload, tier=tier))
    _exit_on_error(result)
    print_response(result["response"], result["model"], result.get("info"))


@main.command()
@click.argument("prompt")
@_chat_options
@click.pass_context
def stream(
    ctx: click.Context,
    prompt: str,
    provider: str | None,
    model: str | None,
    mode: str,
    tier: str | None,
    fallback: str | None,
    no_smart_router: bool,
) -> None:
    """Stream an answer fragment by fragment. Ctrl-C cancels."""
    config = _config(ctx)
    payload = _chat_payload(config, prompt, provider, model, mode, fallback, no_smart_router, None)

    async def handler(service: ChatService) -> dict | None:
        try:
            request = ChatRequest.from_payload(payload, service.router.known_providers())
            fragments = await service.router.stream(request, tier=tier)
            async with fragments:
                async for fragment in fragments:
                    console.print(fragment, end="", markup=False, highlight=False)
        except ProviderError as exc:
            return error_payload(exc)
        except Exception as exc:
            return error_payload(classify_exception(exc, payload["provider"]))
        console.print()
        return None

    try:
        result = _with_service(config, handler)
    except KeyboardInterrupt:
        console.print("\n[yellow]Cancelled.[/yellow]")
        sys.exit(130)
    if result is not None:
        console.print()
        _exit_on_error(result)


@main.command()
@click.argument("prompt")
@click.option("--model", default=None, help="Image model reference (default: configured route)")
@click.option("--out", "output_path", default="image", show_default=True, help="Output file path")
@click.pass_context
def image(ctx: click.Context, prompt: str, model: str | None, output_path: str) -> None:
    """Generate an image and save it to disk."""
    config = _config(ctx)
    with console.status("Generating image..."):
        result = _with_service(config, lambda service: service.process_image({"prompt": prompt, "model": model}))
    _exit_on_error(result)

    body = result["response"]
    saved = save_image(GeneratedImage(base64=body["base64"], mime_type=body["mimeType"]), Path(output_path))
    console.print(f"Generated by {result['model']}" + (f" ({result['info']})" if result.get("info") else ""))
    console.print(f"[dim]Saved to: {saved}[/dim]")


@main.command()
@click.argument("prompt", required=False)
@click.option("--file", "prompt_file", type=click.Path(exists=True), help="Read requirements from a file")
@click.option("--force", is_flag=True, help="Proceed past a high-risk resource estimate")
@click.option("--output", "output_dir", default=None, help="Directory to save the transcript to")
@click.pass_context
def waterfall(
    ctx: click.Context,
    prompt: str | None,
    prompt_file: str | None,
    force: bool,
    output_dir: str | None,
) -> None:
    """Run the Architect -> Reasoner -> Executor -> Reviewer pipeline."""
    if prompt_file:
        prompt = Path(prompt_file).read_text(encoding="utf-8").strip()
    if not prompt:
        console.print("[bold red]Error:[/bold red] Provide a PROMPT argument or --file.")
        sys.exit(1)
    config = _config(ctx)

    async def handler(service: ChatService):
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        ) as progress:

            def on_stage(stage: WaterfallStageResult) -> None:
                progress.print(f"[green]OK[/green] {stage.role.title()} complete ({stage.model})")

            progress.add_task("Running waterfall stages...", total=None)
            return await service.pipeline.run(prompt, force_proceed=force, on_stage=on_stage)

    result = _with_service(config, handler)
    for stage in result.stages:
        print_stage(stage)
    print_waterfall(result)

    if output_dir:
        saved = save_waterfall(prompt, result, Path(output_dir))
        console.print(f"\n[dim]Saved to: {saved}[/dim]")
    if result.status == "failed":
        sys.exit(1)


@main.command(name="estimate")
@click.option("--complexity", type=click.Choice(["low", "medium", "high"]), default="medium", show_default=True)
@click.option("--prompt", default="", help="Prompt text whose length is counted")
@click.option("--length", "prompt_length", type=int, default=None, help="Prompt length in characters")
def estimate_command(complexity: str, prompt: str, prompt_length: int | None) -> None:
    """Estimate tokens, cost and risk for a task."""
    print_estimate(estimate(complexity, prompt_length if prompt_length is not None else len(prompt)))


@main.command()
@click.argument("provider")
@click.pass_context
def models(ctx: click.Context, provider: str) -> None:
    """List the models a provider offers."""
    config = _config(ctx)

    async def handler(service: ChatService):
        return sorted(await service.router.list_models(provider))

    try:
        names = _with_service(config, handler)
    except ProviderError as exc:
        _exit_on_error(error_payload(exc))
    for name in names:
        console.print(name)


@main.command()
@click.option("--reset", is_flag=True, help="Reset all usage counters to zero")
@click.pass_context
def usage(ctx: click.Context, reset: bool) -> None:
    """Show (or reset) accumulated token and cost usage."""
    config = _config(ctx)
    handler = (lambda service: service.reset_usage()) if reset else (lambda service: service.get_usage())
    print_usage(UsageCounters(**_with_service(config, handler)))


@main.command()
@click.option("--timeout", "timeout_sec", type=float, default=15.0, show_default=True)
@click.pass_context
def health(ctx: click.Context, timeout_sec: float) -> None:
    """Check that every configured provider answers."""
    config = _config(ctx)
    console.print("\n[bold]Checking providers...[/bold]")
    results = _with_service(config, lambda service: run_health_checks(service.router.adapters(), timeout_sec))
    print_health(results)
    if not any(ok for ok, _ in results.values()):
        console.print("\n[bold red]Error:[/bold red] No providers passed the health check.")
        sys.exit(1)


@main.command()
@click.argument("tier")
@click.option("--primary", default=None, help="Primary model reference, e.g. openrouter/anthropic/claude-3-opus")
@click.option("--fallback", default=None, help="Fallback model reference")
@click.option("--auto-shift/--no-auto-shift", default=True, show_default=True)
@click.pass_context
def prefs(ctx: click.Context, tier: str, primary: str | None, fallback: str | None, auto_shift: bool) -> None:
    """Show a tier's model preference, or set it with --primary."""
    config = _config(ctx)
    if primary:
        payload = {"primary": primary, "fallback": fallback, "autoShift": auto_shift}
        result = _with_service(config, lambda service: service.set_preference(tier, payload))
    else:
        result = _with_service(config, lambda service: service.get_preference(tier))
    _exit_on_error(result)
    console.print(f"[bold]{tier}[/bold]: {result['primary']}")
    console.print(f"  fallback: {result['fallback'] or '-'} (auto-shift {'on' if result['autoShift'] else 'off'})")


if __name__ == "__main__":
    main()
